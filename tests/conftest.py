import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from easypy.bunch import Bunch

ROOT = Path(__file__).resolve().parents[1]
# Extend python import path to get linstor_flex package from here
sys.path += [ROOT.as_posix()]

from linstor_flex.control_plane import ControlPlaneClient, DEPLOYED
from linstor_flex.flex_types import (
    ResourceList,
    VolumeRecord,
    AssignmentRecord,
    DISKLESS,
    DEFAULT_DISKLESS_STORAGE_POOL,
    parse_state,
)


# ----------------------------------------------------------------------------------------------------------------------
# Helper classes
# ----------------------------------------------------------------------------------------------------------------------


class FakeControlPlane(ControlPlaneClient):
    """
    Simulate a control plane in memory.

    Args:
        lazy: New assignments and removals stay pending until `resume_actions` is called.
        stuck: Pending assignments and removals never complete.
        resume_error: Exception raised by `resume_actions`.
    """

    def __init__(self, lazy=False, stuck=False, resume_error=None):
        super().__init__(config=Bunch(diskless_storage_pool=DEFAULT_DISKLESS_STORAGE_POOL))
        self.lazy = lazy or stuck
        self.stuck = stuck
        self.resume_error = resume_error
        self.defined = []
        self.volumes = []
        self.assignments = {}
        self.calls = []

    @property
    def mutations(self):
        return [c for c in self.calls if c[0] != "resume_actions"]

    def add(self, resource, node=None, minor=None, current="connect|deploy", target="connect|deploy"):
        """Seed a resource definition, its volume 0 and optionally an assignment"""
        if resource not in self.defined:
            self.defined.append(resource)
        if minor is not None:
            self.volumes.append(VolumeRecord(resource, 0, minor))
        if node:
            self.assignments[resource, node] = AssignmentRecord(
                resource, node, parse_state(current), parse_state(target)
            )

    def list_resources(self, resource=None):
        def wanted(name):
            return resource is None or name == resource

        return ResourceList(
            defined=[r for r in self.defined if wanted(r)],
            volumes=[v for v in self.volumes if wanted(v.resource)],
            assignments=[a for a in self.assignments.values() if wanted(a.resource)],
        )

    def create_assignment(self, resource, node, storage_pool, diskless=False):
        self.calls.append(("create_assignment", resource, node, storage_pool, diskless))
        target = DEPLOYED | {DISKLESS} if diskless else DEPLOYED
        current = frozenset() if self.lazy else target
        self.assignments[resource, node] = AssignmentRecord(resource, node, current, target)

    def delete_assignment(self, resource, node):
        self.calls.append(("delete_assignment", resource, node))
        record = self.assignments.get((resource, node))
        if not record:
            return
        if self.lazy:
            self.assignments[resource, node] = AssignmentRecord(resource, node, record.current_state, frozenset())
        else:
            del self.assignments[resource, node]

    def define_resource(self, resource):
        self.calls.append(("define_resource", resource.name))
        self.add(resource.name, minor=1000 + len(self.volumes))

    def delete_resource(self, resource):
        self.calls.append(("delete_resource", resource))
        self.defined.remove(resource)

    def auto_place(self, resource):
        self.calls.append(("auto_place", resource.name, resource.auto_place))

    def resume_actions(self):
        self.calls.append(("resume_actions",))
        if self.resume_error:
            raise self.resume_error
        if self.stuck:
            return
        for key, record in list(self.assignments.items()):
            if not record.target_state:
                del self.assignments[key]
            else:
                self.assignments[key] = AssignmentRecord(
                    record.resource, record.node, record.target_state, record.target_state
                )


# ----------------------------------------------------------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def no_sleep():
    """Polling loops should not slow the tests down"""
    with patch("linstor_flex.convergence.sleep") as convergence_sleep, \
            patch("linstor_flex.devices.sleep") as devices_sleep, \
            patch("linstor_flex.mounter.sleep") as mounter_sleep:
        yield Bunch(convergence=convergence_sleep, devices=devices_sleep, mounter=mounter_sleep)


@pytest.fixture
def fake_control_plane():
    """FakeControlPlane factory"""

    def __wrapped(**kwargs) -> FakeControlPlane:
        return FakeControlPlane(**kwargs)

    return __wrapped
