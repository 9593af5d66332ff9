"""
Drive assignments in the control plane to their desired state.

Assignment creation and removal are asynchronous: the control plane accepts the
request and the node catches up later. The loops here poll for a bounded number
of attempts, nudging the control plane to resume stalled actions in between.
"""

from time import sleep

from easypy.resilience import resilient

from .logging import logger
from .exceptions import (
    ResourceNotDefined,
    AssignmentTimeout,
    UnassignmentTimeout,
    ControlPlaneCommandError,
    ControlPlaneParseError,
)
from .flex_types import Resource


class AssignmentConvergence:

    def __init__(self, client, assign_retries=5, unassign_retries=3, interval=2.0):
        self.client = client
        self.assign_retries = assign_retries
        self.unassign_retries = unassign_retries
        self.interval = interval

    @classmethod
    def from_config(cls, client, config):
        return cls(
            client,
            assign_retries=config.assign_retries,
            unassign_retries=config.unassign_retries,
            interval=config.retry_interval,
        )

    def assignment(self, resource: str, node: str):
        return self.client.list_resources(resource).assignment(resource, node)

    def is_settled(self, resource: str, node: str) -> bool:
        record = self.assignment(resource, node)
        return bool(record and record.is_settled)

    def is_assigned(self, resource: str, node: str) -> bool:
        return self.assignment(resource, node) is not None

    def is_client_only(self, resource: str, node: str) -> bool:
        record = self.assignment(resource, node)
        return bool(record and record.is_client_only)

    @resilient.warning(
        msg="Failed resuming control plane actions",
        acceptable=(ControlPlaneCommandError, ControlPlaneParseError),
    )
    def _resume(self):
        self.client.resume_actions()

    def _recover(self):
        # best effort - the next poll tells whether it helped
        self._resume()
        sleep(self.interval)

    def _converge(self, predicate, attempts: int) -> bool:
        for attempt in range(1, attempts + 1):
            if predicate():
                return True
            logger.debug(f"Not converged yet (attempt {attempt}/{attempts})")
            self._recover()
        return predicate()

    def wait_for_assignment(self, resource: str, node: str, attempts: int = None) -> bool:
        """Poll until the assignment of `resource` on `node` is settled; returns the final state"""
        attempts = self.assign_retries if attempts is None else attempts
        return self._converge(lambda: self.is_settled(resource, node), attempts)

    def wait_for_unassignment(self, resource: str, node: str, attempts: int = None) -> bool:
        """Poll until `resource` is no longer assigned to `node`; returns the final state"""
        attempts = self.unassign_retries if attempts is None else attempts
        return self._converge(lambda: not self.is_assigned(resource, node), attempts)

    def assign(self, resource: Resource, node: str, diskless: bool = False) -> bool:
        """
        Bring the assignment of `resource` on `node` to a settled state.

        If the resource is unknown to the control plane it is reserved and placed,
        but only when the caller asked for a placement - otherwise there is nothing
        we could sensibly create and `ResourceNotDefined` is raised.
        """
        listing = self.client.list_resources(resource.name)

        if not listing.is_defined(resource.name):
            if not resource.placement_requested:
                raise ResourceNotDefined(resource=resource.name, node=node)
            logger.info(f"Reserving resource {resource.name!r}")
            self.client.define_resource(resource)
            self.client.place(resource)
            listing = self.client.list_resources(resource.name)

        record = listing.assignment(resource.name, node)
        if record and record.is_settled:
            logger.info(f"Resource {resource.name!r} is already assigned to {node!r}")
            return True

        if not record:
            pool = resource.diskless_storage_pool if diskless else resource.storage_pool
            logger.info(f"Assigning resource {resource.name!r} to {node!r} ({'diskless' if diskless else pool})")
            self.client.create_assignment(resource.name, node, pool, diskless=diskless)

        if not self.wait_for_assignment(resource.name, node):
            raise AssignmentTimeout(resource=resource.name, node=node, attempts=self.assign_retries)
        logger.info(f"Resource {resource.name!r} is assigned to {node!r}")
        return True

    def unassign(self, resource: str, node: str):
        logger.info(f"Unassigning resource {resource!r} from {node!r}")
        self.client.delete_assignment(resource, node)
        if not self.wait_for_unassignment(resource, node):
            raise UnassignmentTimeout(resource=resource, node=node, attempts=self.unassign_retries)
        logger.info(f"Successfully unassigned resource {resource!r} from {node!r}")
