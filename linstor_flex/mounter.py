"""
Attach, mount, unmount and detach resources on this node.

Every step is idempotent, so a failed operation is simply retried from scratch
by the caller - nothing here rolls back partial progress.
"""

from time import sleep
from contextlib import contextmanager

from plumbum import local, ProcessExecutionError

from .logging import logger
from .utils import get_mount
from .control_plane import get_control_plane
from .convergence import AssignmentConvergence
from .devices import DevicePathResolver
from .filesystem import FilesystemGuard, FormatOptions
from .flex_types import Resource
from .exceptions import MountFailed, UnmountFailed, MountStepFailed, AlreadyMounted, PromotionFailed


def mount(src, tgt, flags=()):
    executable = local.cmd.mount
    flags = list(filter(None, (f.strip() for f in flags)))
    if flags:
        executable = executable["-o", ",".join(flags)]
    try:
        executable["-v", src, tgt] & logger.pipe_info("mount >>")
    except ProcessExecutionError as exc:
        raise MountFailed(detail=exc.stderr, src=src, tgt=tgt, mount_options=flags)


def umount(tgt):
    try:
        local.cmd.umount[tgt] & logger.pipe_info("umount >>")
    except ProcessExecutionError as exc:
        if "not mounted" in exc.stderr:
            logger.info(f"umount failed - {tgt} is not mounted (race?)")
            return
        raise UnmountFailed(target=tgt, detail=exc.stderr.strip())


def set_role(resource: str, role: str):
    """Promote ('primary') or demote ('secondary') the local DRBD resource"""
    try:
        local.cmd.drbdadm[role, resource] & logger.pipe_info(f"drbdadm {role} >>")
    except ProcessExecutionError as exc:
        raise PromotionFailed(resource=resource, role=role, detail=(exc.stderr or exc.stdout).strip())


class MountOrchestrator:

    def __init__(
        self,
        convergence: AssignmentConvergence,
        resolver: DevicePathResolver,
        guard: FilesystemGuard,
        mount_options=("defaults",),
        device_retries=4,
        mount_device_retries=3,
        attached_retries=4,
        promote=False,
        promote_delay=0.2,
    ):
        self.convergence = convergence
        self.resolver = resolver
        self.guard = guard
        self.mount_options = list(mount_options)
        self.device_retries = device_retries
        self.mount_device_retries = mount_device_retries
        self.attached_retries = attached_retries
        self.promote = promote
        self.promote_delay = promote_delay

    @classmethod
    def from_config(cls, config, client=None):
        client = client or get_control_plane(config)
        return cls(
            convergence=AssignmentConvergence.from_config(client, config),
            resolver=DevicePathResolver.from_config(client, config),
            guard=FilesystemGuard(),
            mount_options=config.mount_options,
            device_retries=config.device_retries,
            mount_device_retries=config.mount_device_retries,
            attached_retries=config.attached_retries,
            promote=config.promote,
            promote_delay=config.promote_delay,
        )

    @contextmanager
    def _step(self, step, resource, target):
        logger.info(f"{resource}: {step}")
        try:
            yield
        except Exception as exc:
            raise MountStepFailed(resource=resource, target=target, step=step, detail=str(exc)) from exc

    def attach(self, resource: Resource, node: str) -> str:
        """Assign the resource to `node` (disklessly, unless the node holds its storage) and return its device"""
        self.convergence.assign(resource, node, diskless=not resource.has_local_storage_on(node))
        if self.promote:
            # give the resource a moment to establish its disk state
            sleep(self.promote_delay)
            set_role(resource.name, "primary")
        return self.resolver.wait_for_device_path(resource.name, self.device_retries)

    def wait_for_attach(self, resource: str) -> str:
        return self.resolver.wait_for_device_path(resource, self.device_retries)

    def is_attached(self, resource: str, node: str) -> bool:
        return self.convergence.wait_for_assignment(resource, node, self.attached_retries)

    def detach(self, resource: str, node: str) -> bool:
        """
        Unassign the resource from `node` if it is attached there as a client.
        Assignments with local storage are left alone. Returns whether anything was removed.
        """
        if not self.convergence.is_client_only(resource, node):
            logger.info(f"{resource!r} has local storage on {node!r} (or isn't assigned there), not unassigning")
            return False
        if self.promote:
            set_role(resource, "secondary")
        self.convergence.unassign(resource, node)
        return True

    def mount(self, resource: Resource, node: str, target, options: FormatOptions, mount_options=(), readonly=False):
        target = local.path(target)
        name = resource.name

        with self._step("assign", name, target):
            self.convergence.assign(resource, node, diskless=not resource.has_local_storage_on(node))

        with self._step("resolve device", name, target):
            device = self.resolver.wait_for_device_path(name, self.mount_device_retries)

        if target.is_dir() and (found := get_mount(target)):
            if found.device != device:
                raise AlreadyMounted(target=target, found=found.device, device=device)
            logger.info(f"{name} is already mounted: {found}")
            return device

        with self._step("check filesystem", name, target):
            self.guard.ensure_filesystem(device, options)

        with self._step("create mount point", name, target):
            target.mkdir()

        flags = list(mount_options) or self.mount_options
        if readonly:
            flags = ["ro"] + [f for f in flags if f not in ("ro", "rw")]

        with self._step("mount", name, target):
            mount(device, target, flags=flags)
        logger.info(f"mounted: {device} at {target} flags: {flags}")
        return device

    def unmount(self, target, node: str):
        target = local.path(target)

        if not target.is_dir():
            logger.info(f"{target} is not a directory - nothing to unmount")
            return
        found = get_mount(target)
        if not found:
            logger.info(f"{target} is not mounted")
            return

        umount(target)
        logger.info(f"unmounted: {found.device} from {target}")

        resource = self.resolver.resolve_resource_from_device(found.device)
        if not resource:
            logger.warning(f"No resource owns {found.device}, leaving assignments alone")
            return
        self.detach(resource, node)
