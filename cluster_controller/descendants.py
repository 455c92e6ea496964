"""Discovery of the objects that belong to a Cluster.

Descendants are found by the cluster-name label. Owned descendants
additionally carry an owner reference to the Cluster; those are the ones the
deletion coordinator deletes directly, the rest go away through garbage
collection of their owners.
"""

from dataclasses import dataclass, field

from cluster_controller.exceptions import ClusterControllerError, KubernetesError
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import Cluster
from cluster_controller.models.machine import (
    ClusterOwnedObject,
    Machine,
    MachineDeployment,
    MachinePool,
    MachineSet,
)
from cluster_controller.models.meta import CLUSTER_API_VERSION, CLUSTER_LABEL, EXP_API_VERSION
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)


def split_machines(machines: list[Machine]) -> tuple[list[Machine], list[Machine]]:
    """Separate control plane machines from worker machines."""
    control_plane = [m for m in machines if m.is_control_plane()]
    workers = [m for m in machines if not m.is_control_plane()]
    return control_plane, workers


@dataclass
class ClusterDescendants:
    """Everything found under a Cluster in one query."""

    machine_deployments: list[MachineDeployment] = field(default_factory=list)
    machine_sets: list[MachineSet] = field(default_factory=list)
    control_plane_machines: list[Machine] = field(default_factory=list)
    worker_machines: list[Machine] = field(default_factory=list)
    machine_pools: list[MachinePool] = field(default_factory=list)

    def _in_deletion_order(self) -> list[list[ClusterOwnedObject]]:
        # Control plane machines are always last
        return [
            self.machine_pools,
            self.machine_deployments,
            self.machine_sets,
            self.worker_machines,
            self.control_plane_machines,
        ]

    def length(self) -> int:
        return sum(len(items) for items in self._in_deletion_order())

    def descendant_names(self) -> str:
        """Human-readable summary for logs, e.g. "Machine sets: ms-1,ms-2;Worker machines: w-1"."""
        groups = [
            ("Control plane machines", self.control_plane_machines),
            ("Machine deployments", self.machine_deployments),
            ("Machine sets", self.machine_sets),
            ("Worker machines", self.worker_machines),
            ("Machine pools", self.machine_pools),
        ]
        return ";".join(
            f"{label}: " + ",".join(obj.name for obj in items) for label, items in groups if items
        )

    def filter_owned_descendants(self, cluster: Cluster) -> list[ClusterOwnedObject]:
        """Return descendants with an owner reference to cluster, in deletion order.

        MachinePools come first and control plane machines last.
        """
        return [
            obj
            for items in self._in_deletion_order()
            for obj in items
            if obj.metadata.is_owned_by(cluster.api_version, cluster.kind, cluster.name)
        ]


class DescendantGraph:
    """Queries the object store for a Cluster's descendants."""

    def __init__(self, store: ObjectStore, machine_pools_enabled: bool = False):
        """Initialize the graph.

        Args:
            store: Object store to query
            machine_pools_enabled: Value of the MachinePool feature gate
        """
        self.store = store
        self.machine_pools_enabled = machine_pools_enabled

    def _list(self, api_version: str, kind: str, model, cluster: Cluster) -> list:
        try:
            items = self.store.list(
                api_version, kind, cluster.namespace, labels={CLUSTER_LABEL: cluster.name}
            )
        except ClusterControllerError as e:
            raise KubernetesError(
                f"failed to list {kind}s for cluster {cluster.key}", e.message
            ) from e
        return [model.model_validate(item) for item in items]

    def list_descendants(self, cluster: Cluster) -> ClusterDescendants:
        """List all MachineDeployments, MachineSets, MachinePools and Machines of cluster.

        Control plane machines are only included when no control plane
        provider is referenced; otherwise the provider owns their lifecycle.
        """
        descendants = ClusterDescendants(
            machine_deployments=self._list(
                CLUSTER_API_VERSION, "MachineDeployment", MachineDeployment, cluster
            ),
            machine_sets=self._list(CLUSTER_API_VERSION, "MachineSet", MachineSet, cluster),
        )
        if self.machine_pools_enabled:
            descendants.machine_pools = self._list(
                EXP_API_VERSION, "MachinePool", MachinePool, cluster
            )

        machines = self._list(CLUSTER_API_VERSION, "Machine", Machine, cluster)
        control_plane, workers = split_machines(machines)
        descendants.worker_machines = workers
        if cluster.spec.control_plane_ref is None:
            descendants.control_plane_machines = control_plane

        logger.debug(f"Cluster {cluster.key} has {descendants.length()} descendants")
        return descendants
