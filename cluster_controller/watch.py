"""Mapping of Machine events to Cluster reconcile requests."""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cluster_controller.exceptions import ClusterControllerError
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import Cluster
from cluster_controller.models.machine import Machine
from cluster_controller.models.meta import CLUSTER_API_VERSION
from cluster_controller.result import Request
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)


class ControlPlaneMachineMapper:
    """Enqueues a Cluster when one of its control plane machines gets a node.

    This is what flips status.controlPlaneInitialized without waiting for the
    next periodic resync.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    def __call__(self, obj: Any) -> list[Request]:
        return self.control_plane_machine_to_cluster(obj)

    def control_plane_machine_to_cluster(self, obj: Any) -> list[Request]:
        """Map a changed Machine to zero or one Cluster requests.

        Lookup failures are logged and dropped; a missing Cluster has no work.
        """
        machine = self._as_machine(obj)
        if machine is None:
            return []
        if not machine.is_control_plane():
            return []
        if machine.status.node_ref is None:
            return []

        try:
            data = self.store.get(
                CLUSTER_API_VERSION, "Cluster", machine.namespace, machine.spec.cluster_name
            )
            cluster = Cluster.model_validate(data)
        except (ClusterControllerError, PydanticValidationError) as e:
            logger.error(
                f"Failed to get cluster {machine.spec.cluster_name!r} for machine "
                f"{machine.namespace}/{machine.name}: {e}"
            )
            return []

        if cluster.status.control_plane_initialized:
            return []
        return [Request(namespace=cluster.namespace, name=cluster.name)]

    @staticmethod
    def _as_machine(obj: Any) -> Machine | None:
        if isinstance(obj, Machine):
            return obj
        if isinstance(obj, dict) and obj.get("kind") == "Machine":
            try:
                return Machine.model_validate(obj)
            except PydanticValidationError as e:
                logger.error(f"Expected a Machine but could not parse it: {e}")
                return None
        logger.error(f"Expected a Machine but got a {type(obj).__name__}")
        return None
