from uuid import uuid4
from dataclasses import dataclass, field
from typing import List, Optional, FrozenSet


DISKLESS = "diskless"

DEFAULT_SIZE_KIB = 4096
DEFAULT_STORAGE_POOL = "DfltStorPool"
DEFAULT_DISKLESS_STORAGE_POOL = "DfltDisklessStorPool"


def uniq(items):
    """Drop duplicates, keeping the first occurrence of each item"""
    return subtract([], items)


def subtract(exclude, items):
    """Return `items` without the entries found in `exclude` (and without duplicates)"""
    seen = set(exclude)
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def parse_state(state: str) -> FrozenSet[str]:
    """Convert a 'connect|deploy|diskless' state string into a set of flags"""
    return frozenset(flag for flag in state.strip().split("|") if flag)


@dataclass
class Resource:
    """
    A replicated storage unit as requested by the caller.
    The defining record lives in the control plane; this object only carries
    the desired placement and sizing used when the resource has to be reserved.
    """

    name: str = ""
    node_list: List[str] = field(default_factory=list)
    client_list: List[str] = field(default_factory=list)
    auto_place: int = 0
    do_not_place_with_regex: str = ""
    size_kib: int = 0
    storage_pool: str = ""
    diskless_storage_pool: str = ""
    encryption: bool = False

    def __post_init__(self):
        # placement is judged on what the caller asked for, before defaults kick in
        self.placement_requested = bool(self.node_list or self.client_list or self.auto_place)

        if not self.name:
            self.name = str(uuid4())

        if not (self.node_list or self.client_list or self.auto_place):
            self.auto_place = 1

        self.node_list = uniq(self.node_list)
        self.client_list = subtract(self.node_list, self.client_list)

        self.size_kib = self.size_kib or DEFAULT_SIZE_KIB
        self.storage_pool = self.storage_pool or DEFAULT_STORAGE_POOL
        self.diskless_storage_pool = self.diskless_storage_pool or DEFAULT_DISKLESS_STORAGE_POOL

    @property
    def auto_placed(self) -> bool:
        return self.auto_place > 0

    def has_local_storage_on(self, node: str) -> bool:
        return node in self.node_list


@dataclass(frozen=True)
class VolumeRecord:
    resource: str
    volume_number: int
    minor: Optional[int] = None


@dataclass(frozen=True)
class AssignmentRecord:
    resource: str
    node: str
    current_state: FrozenSet[str] = frozenset()
    target_state: FrozenSet[str] = frozenset()

    @property
    def is_settled(self) -> bool:
        return self.current_state == self.target_state

    @property
    def is_client_only(self) -> bool:
        # client assignments own no local data, so they can be removed safely
        return DISKLESS in self.target_state


@dataclass
class ResourceList:
    """Snapshot of what the control plane knows, as returned by `ControlPlaneClient.list_resources`"""

    defined: List[str] = field(default_factory=list)
    volumes: List[VolumeRecord] = field(default_factory=list)
    assignments: List[AssignmentRecord] = field(default_factory=list)

    def is_defined(self, resource: str) -> bool:
        return resource in self.defined

    def assignment(self, resource: str, node: str) -> Optional[AssignmentRecord]:
        return next((a for a in self.assignments if a.resource == resource and a.node == node), None)

    def volume(self, resource: str, number: int = 0) -> Optional[VolumeRecord]:
        return next(
            (v for v in self.volumes if v.resource == resource and v.volume_number == number and v.minor is not None),
            None,
        )

    def owner_of_minor(self, minor: int) -> str:
        return next((v.resource for v in self.volumes if v.minor == minor), "")
