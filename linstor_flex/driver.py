"""
FlexVolume calling convention.

The kubelet invokes the driver once per operation as `<driver> <verb> [args...]`,
where options are passed as a JSON object, and expects a single JSON status object
on stdout together with a matching exit code.
"""

import json
import inspect
from functools import wraps
from pprint import pformat

from easypy.caching import cached_property
from easypy.exceptions import TException

from .logging import logger
from .configuration import Config
from .exceptions import BadCall, InvalidParameter, NotAttached
from .filesystem import FormatOptions
from .flex_types import Resource
from .mounter import MountOrchestrator
from .utils import normalize_mount_options, to_bool


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_BAD_CALL = 2

SUCCESS = "Success"
FAILURE = "Failure"
NOT_SUPPORTED = "Not supported"


def parse_options(s: str) -> dict:
    try:
        options = json.loads(s)
    except ValueError:
        raise BadCall(f"couldn't parse options from {s}")
    if not isinstance(options, dict):
        raise BadCall(f"couldn't parse options from {s}")
    return options


def _list(value):
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


def _int(options, key):
    value = options.get(key) or 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(param=key, value=value)


def _bool(options, key):
    value = options.get(key, False)
    try:
        return to_bool(value)
    except ValueError:
        raise InvalidParameter(param=key, value=value)


def resource_name(options: dict) -> str:
    return options.get("resource") or options.get("kubernetes.io/pvOrVolumeName", "")


def resource_from_options(options: dict, config) -> Resource:
    return Resource(
        name=resource_name(options),
        node_list=_list(options.get("nodeList")),
        client_list=_list(options.get("clientList")),
        auto_place=_int(options, "autoPlace"),
        do_not_place_with_regex=options.get("doNotPlaceWithRegex", ""),
        size_kib=_int(options, "sizeKiB"),
        storage_pool=options.get("storagePool") or config.storage_pool,
        diskless_storage_pool=options.get("disklessStoragePool") or config.diskless_storage_pool,
        encryption=_bool(options, "encryption"),
    )


def format_options_from_options(options: dict, config) -> FormatOptions:
    return FormatOptions(
        fs_type=options.get("kubernetes.io/fsType") or options.get("fsType") or config.default_fs_type,
        block_size=_int(options, "blockSize"),
        force=_bool(options, "force"),
        xfs_data_su=options.get("xfsDataSU", ""),
        xfs_data_sw=_int(options, "xfsDataSW"),
        xfs_log_dev=options.get("xfsLogDev", ""),
    )


class Instrumented:

    @classmethod
    def logged(cls, func):

        verb = func.__name__
        parameters = inspect.signature(func).parameters
        required_params = [
            name for name, p in parameters.items() if name != "self" and p.default is inspect.Parameter.empty
        ]

        @wraps(func)
        def wrapper(self, *args):
            logger.info(f">>> {verb}:")
            for line in pformat(args).splitlines():
                logger.info(f"({verb})    {line}")

            try:
                if len(args) < len(required_params):
                    raise BadCall(f"too few arguments passed: {[verb, *args]} (expected {', '.join(required_params)})")
                # the kubelet may pass trailing arguments we have no use for
                ret = func(self, *args[:len(required_params)])
            except BadCall as exc:
                logger.error(f"<<< {verb}: {exc.message}")
                return dict(status=FAILURE, message=f"{verb}: {exc.message}"), EXIT_BAD_CALL
            except InvalidParameter as exc:
                logger.error(f"<<< {verb}: {exc}")
                return dict(status=FAILURE, message=f"{verb}: {exc.render(color=False)}"), EXIT_BAD_CALL
            except TException as exc:
                logger.exception(f"Exception during {verb}")
                return dict(status=FAILURE, message=f"{verb}: {exc.render(color=False)}"), EXIT_FAILURE
            except Exception as exc:
                logger.exception(f"Exception during {verb}")
                return dict(status=FAILURE, message=f"{verb}: {exc}"), EXIT_FAILURE

            response = dict(status=SUCCESS, **(ret or {}))
            logger.info(f"<<< {verb}: {response}")
            return response, EXIT_SUCCESS

        return wrapper

    @classmethod
    def __init_subclass__(cls):
        for name, _ in inspect.getmembers(cls.__base__, inspect.isfunction):
            if name.startswith("_"):
                continue
            func = getattr(cls, name)
            setattr(cls, name, cls.logged(func))
        super().__init_subclass__()


class FlexVolumeApi:
    """The verbs of the FlexVolume protocol"""

    def init(self):
        raise NotImplementedError

    def attach(self, options, node):
        raise NotImplementedError

    def waitforattach(self, device, options):
        raise NotImplementedError

    def detach(self, volume, node):
        raise NotImplementedError

    def mountdevice(self, target, device, options):
        raise NotImplementedError

    def unmountdevice(self, target):
        raise NotImplementedError

    def unmount(self, target):
        raise NotImplementedError

    def getvolumename(self, options):
        raise NotImplementedError

    def isattached(self, options, node):
        raise NotImplementedError


VERBS = sorted(name for name, _ in inspect.getmembers(FlexVolumeApi, inspect.isfunction) if not name.startswith("_"))


class FlexVolumeDriver(FlexVolumeApi, Instrumented):

    def __init__(self, config=None, orchestrator=None):
        self.config = config or Config()
        self._orchestrator = orchestrator

    @cached_property
    def orchestrator(self):
        return self._orchestrator or MountOrchestrator.from_config(self.config)

    def call(self, argv):
        """Dispatch `argv` (verb first) and return the JSON response text and the exit code"""
        if not argv:
            response, code = dict(
                status=FAILURE, message=f"No driver action! Valid actions are: {', '.join(VERBS)}"
            ), EXIT_BAD_CALL
        elif argv[0] not in VERBS:
            response, code = dict(
                status=NOT_SUPPORTED, message=f"Unsupported driver action: {argv[0]}"
            ), EXIT_BAD_CALL
        else:
            response, code = getattr(self, argv[0])(*argv[1:])
        return json.dumps(response), code

    def init(self):
        return dict(capabilities=dict(attach=True))

    def attach(self, options, node):
        resource = resource_from_options(parse_options(options), self.config)
        return dict(device=self.orchestrator.attach(resource, node))

    def waitforattach(self, device, options):
        name = resource_name(parse_options(options))
        if not name:
            raise BadCall("missing resource name in options")
        return dict(device=self.orchestrator.wait_for_attach(name))

    def detach(self, volume, node):
        self.orchestrator.detach(volume, node)

    def mountdevice(self, target, device, options):
        options = parse_options(options)
        self.orchestrator.mount(
            resource_from_options(options, self.config),
            self.config.node_name,
            target,
            format_options_from_options(options, self.config),
            mount_options=normalize_mount_options(options.get("mountOpts", "")),
            readonly=options.get("kubernetes.io/readwrite") == "ro",
        )

    def unmountdevice(self, target):
        self.orchestrator.unmount(target, self.config.node_name)

    def unmount(self, target):
        self.orchestrator.unmount(target, self.config.node_name)

    def getvolumename(self, options):
        name = resource_name(parse_options(options))
        if not name:
            raise BadCall("missing resource name in options")
        return dict(volumeName=name)

    def isattached(self, options, node):
        name = resource_name(parse_options(options))
        if not self.orchestrator.is_attached(name, node):
            raise NotAttached(resource=name, node=node)
        return dict(attached=True)
