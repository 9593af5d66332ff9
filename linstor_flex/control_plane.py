"""
Clients for the storage control plane.

Both backends drive an external command line tool and translate its machine-readable
output into the records defined in `flex_types`. No state is kept between calls -
every query goes back to the control plane, since that is the only authority on
what is assigned where.
"""

import json
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

from plumbum import local, ProcessExecutionError, CommandNotFound
from easypy.tokens import LINSTOR, DRBDMANAGE

from .logging import logger
from .exceptions import ControlPlaneParseError, ControlPlaneCommandError
from .flex_types import (
    Resource,
    ResourceList,
    VolumeRecord,
    AssignmentRecord,
    DISKLESS,
    parse_state,
    uniq,
)


# Any of these bits set means the entry is an error or warning rather than a plain success
LINSTOR_MASK_ERROR = 0xC000000000000000

DEPLOYED = frozenset({"connect", "deploy"})


def get_control_plane(config) -> "ControlPlaneClient":
    client_cls = {LINSTOR: LinstorClient, DRBDMANAGE: DrbdmanageClient}[config.backend]
    return client_cls(config)


class ControlPlaneClient(ABC):
    """Common interface of the control plane backends"""

    binary = None

    def __init__(self, config):
        self.config = config

    def prepend_opts(self, *args) -> List[str]:
        return list(args)

    def _run(self, *args) -> str:
        args = self.prepend_opts(*args)
        command_line = " ".join([self.binary, *args])
        logger.debug(f">>> {command_line}")
        try:
            out = local[self.binary](*args)
        except ProcessExecutionError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            raise ControlPlaneCommandError(command=command_line, detail=detail, retcode=exc.retcode)
        except CommandNotFound:
            raise ControlPlaneCommandError(command=command_line, detail=f"{self.binary} not found")
        logger.debug(f"<<< {command_line}")
        return out

    @abstractmethod
    def list_resources(self, resource: Optional[str] = None) -> ResourceList:
        """Fetch definitions, volumes and assignments (optionally limited to one resource)"""

    @abstractmethod
    def create_assignment(self, resource: str, node: str, storage_pool: str, diskless: bool = False):
        """Assign `resource` to `node`, disklessly when `diskless` is set"""

    @abstractmethod
    def delete_assignment(self, resource: str, node: str):
        """Remove the assignment of `resource` from `node`"""

    @abstractmethod
    def define_resource(self, resource: Resource):
        """Reserve the resource name and its volume 0, skipping whatever already exists"""

    @abstractmethod
    def delete_resource(self, resource: str):
        """Remove the resource from all nodes"""

    @abstractmethod
    def resume_actions(self):
        """Ask the control plane to resume stalled or failed actions"""

    def place(self, resource: Resource):
        """
        Deploy `resource` as requested: with storage on every node of `node_list`,
        disklessly on every node of `client_list`, and automatically placed if requested.
        """
        listing = self.list_resources(resource.name)
        for node in resource.node_list:
            if not listing.assignment(resource.name, node):
                self.create_assignment(resource.name, node, resource.storage_pool)
        for node in resource.client_list:
            if not listing.assignment(resource.name, node):
                self.create_assignment(resource.name, node, resource.diskless_storage_pool, diskless=True)
        if resource.auto_placed:
            self.auto_place(resource)

    @abstractmethod
    def auto_place(self, resource: Resource):
        """Let the control plane pick `resource.auto_place` nodes to hold the resource"""


################################################################
#
# LINSTOR
#
################################################################


def _load_json(command: str, output: str):
    try:
        return json.loads(output)
    except ValueError:
        raise ControlPlaneParseError(command=command, output=output)


def validate_statuses(command: str, output: str) -> list:
    """
    Check the status records printed by a LINSTOR mutation.
    Returns the records if all of them succeeded; a record without a numeric
    ret_code invalidates the whole response.
    """
    statuses = _load_json(command, output)
    if not isinstance(statuses, list) or not all(
        isinstance(s, dict) and isinstance(s.get("ret_code"), int) for s in statuses
    ):
        raise ControlPlaneParseError(command=command, output=output)

    failed = [s for s in statuses if s["ret_code"] & LINSTOR_MASK_ERROR]
    if failed:
        detail = "; ".join(s.get("message_format") or hex(s["ret_code"]) for s in failed)
        raise ControlPlaneCommandError(command=command, detail=detail, statuses=failed)
    return statuses


def _first_listing(command: str, output: str) -> dict:
    listing = _load_json(command, output)
    if not (isinstance(listing, list) and listing and isinstance(listing[0], dict)):
        raise ControlPlaneParseError(command=command, output=output)
    return listing[0]


def parse_definitions(output: str) -> Dict[str, Set[int]]:
    """Parse `linstor -m resource-definition list` into {resource: {volume numbers}}"""
    command = "resource-definition list"
    definitions = {}
    try:
        for definition in _first_listing(command, output).get("rsc_dfns", []):
            volumes = definition.get("vlm_dfns", [])
            definitions[definition["rsc_name"]] = {v["vlm_nr"] for v in volumes}
    except (KeyError, TypeError, AttributeError):
        raise ControlPlaneParseError(command=command, output=output)
    return definitions


def parse_resource_list(output: str, diskless_pool: str, defined=()) -> ResourceList:
    """Parse `linstor -m resource list` into volume and assignment records"""
    command = "resource list"
    listing = _first_listing(command, output)
    try:
        states = {(s["rsc_name"], s["node_name"]): s for s in listing.get("resource_states", [])}
        volumes = []
        assignments = []
        for res in listing.get("resources", []):
            name, node = res["name"], res["node_name"]
            vlms = res.get("vlms", [])
            volumes.extend(VolumeRecord(name, v["vlm_nr"], v.get("vlm_minor_nr")) for v in vlms)

            flags = res.get("rsc_flags") or []
            if "DELETE" in flags:
                target = frozenset()
            elif "DISKLESS" in flags or any(v.get("stor_pool_name") == diskless_pool for v in vlms):
                target = DEPLOYED | {DISKLESS}
            else:
                target = DEPLOYED

            assignments.append(AssignmentRecord(name, node, _current_state(states.get((name, node))), target))
    except (KeyError, TypeError, AttributeError):
        raise ControlPlaneParseError(command=command, output=output)

    return ResourceList(defined=list(defined), volumes=uniq(volumes), assignments=assignments)


def _current_state(state: Optional[dict]) -> frozenset:
    if not state:
        return frozenset()
    current = set()
    if state.get("is_present"):
        current.add("connect")
    vlm_states = state.get("vlm_states") or []
    if vlm_states and all(v.get("is_present") for v in vlm_states):
        current.add("deploy")
    if any(v["vlm_nr"] == 0 and v.get("disk_state") == "Diskless" for v in vlm_states):
        current.add(DISKLESS)
    return frozenset(current)


class LinstorClient(ControlPlaneClient):

    @property
    def binary(self):
        return self.config.linstor_bin

    def prepend_opts(self, *args):
        opts = ["-m"]
        if self.config.controllers:
            opts += ["--controllers", self.config.controllers]
        return opts + list(args)

    def _linstor(self, *args):
        """Run a LINSTOR mutation and validate its status records"""
        return validate_statuses(" ".join(args), self._run(*args))

    def _definitions(self):
        return parse_definitions(self._run("resource-definition", "list"))

    def list_resources(self, resource=None):
        definitions = self._definitions()
        listing = parse_resource_list(
            self._run("resource", "list"), self.config.diskless_storage_pool, defined=definitions
        )
        if resource:
            listing.volumes = [v for v in listing.volumes if v.resource == resource]
            listing.assignments = [a for a in listing.assignments if a.resource == resource]
        return listing

    def define_resource(self, resource):
        definitions = self._definitions()
        if resource.name not in definitions:
            self._linstor("resource-definition", "create", resource.name)
        if 0 not in definitions.get(resource.name, ()):
            args = ["volume-definition", "create", resource.name, f"{resource.size_kib}kib"]
            if resource.encryption:
                args.append("--encrypt")
            self._linstor(*args)
        logger.info(f"Resource {resource.name!r} is defined")

    def create_assignment(self, resource, node, storage_pool, diskless=False):
        self._linstor("resource", "create", node, resource, "-s", storage_pool)

    def auto_place(self, resource):
        args = ["resource", "create", resource.name, "--auto-place", str(resource.auto_place)]
        if resource.do_not_place_with_regex:
            args += ["--do-not-place-with-regex", resource.do_not_place_with_regex]
        self._linstor(*args)

    def delete_assignment(self, resource, node):
        self._linstor("resource", "delete", node, resource)

    def delete_resource(self, resource):
        if resource not in self._definitions():
            return  # as deleted as it gets
        self._linstor("resource-definition", "delete", resource)

    def resume_actions(self):
        logger.debug("LINSTOR retries failed actions on its own, nothing to resume")


################################################################
#
# drbdmanage (legacy)
#
################################################################


ASSIGNMENT_FIELDS = 5
VOLUME_FIELDS = 7


def _lines(output: str):
    return [line for line in output.splitlines() if line.strip()]


def parse_drbdmanage_resources(output: str) -> List[str]:
    """Parse `drbdmanage list-resources --machine-readable` ('name,port,...' per line)"""
    names = []
    for line in _lines(output):
        fields = line.split(",")
        if len(fields) < 2 or not fields[0]:
            raise ControlPlaneParseError(command="list-resources", output=output)
        names.append(fields[0])
    return names


def parse_drbdmanage_volumes(output: str) -> List[VolumeRecord]:
    """
    Parse `drbdmanage list-volumes --machine-readable`.
    Lines look like 'res,,volume,size,port,minor,'; badly formatted lines are skipped,
    the next one might be fine.
    """
    volumes = []
    for line in _lines(output):
        fields = line.split(",")
        if len(fields) != VOLUME_FIELDS or not fields[2].isdigit():
            continue
        minor = int(fields[5]) if fields[5].isdigit() else None
        volumes.append(VolumeRecord(fields[0], int(fields[2]), minor))
    return volumes


def parse_drbdmanage_assignment(line: str) -> Optional[AssignmentRecord]:
    """
    Parse a single 'node,res,volume,current,target' line.
    An empty line means there is no assignment. A mismatch between current and
    target state is not an error - the record simply isn't settled yet.
    """
    if not line.strip():
        return None
    fields = line.strip().split(",")
    if len(fields) != ASSIGNMENT_FIELDS:
        raise ControlPlaneParseError(command="list-assignments", output=line)
    node, resource, _, current, target = fields
    return AssignmentRecord(resource, node, parse_state(current), parse_state(target))


class DrbdmanageClient(ControlPlaneClient):

    @property
    def binary(self):
        return self.config.drbdmanage_bin

    def _filters(self, resource):
        return ["--resources", resource] if resource else []

    def list_resources(self, resource=None):
        filters = self._filters(resource)
        defined = parse_drbdmanage_resources(self._run("list-resources", *filters, "--machine-readable"))
        volumes = parse_drbdmanage_volumes(self._run("list-volumes", *filters, "--machine-readable"))
        assignments = [
            parse_drbdmanage_assignment(line)
            for line in _lines(self._run("list-assignments", *filters, "--machine-readable"))
        ]
        return ResourceList(defined=defined, volumes=volumes, assignments=assignments)

    def define_resource(self, resource):
        listing = self.list_resources(resource.name)
        if not listing.is_defined(resource.name):
            self._run("add-resource", resource.name)
        if not any(v.resource == resource.name and v.volume_number == 0 for v in listing.volumes):
            self._run("add-volume", resource.name, f"{resource.size_kib}KiB")
        logger.info(f"Resource {resource.name!r} is defined")

    def create_assignment(self, resource, node, storage_pool, diskless=False):
        args = ["assign-resource", resource, node]
        if diskless:
            args.append("--client")
        self._run(*args)

    def auto_place(self, resource):
        self._run("deploy-resource", resource.name, str(resource.auto_place))

    def delete_assignment(self, resource, node):
        self._run("unassign-resource", resource, node, "--quiet")

    def delete_resource(self, resource):
        self._run("remove-resource", resource, "--quiet")

    def resume_actions(self):
        self._run("resume-all")
