"""Data models for the Machine family of resources owned by a Cluster."""

from pydantic import Field

from cluster_controller.models.meta import (
    CLUSTER_API_VERSION,
    CONTROL_PLANE_LABEL,
    EXP_API_VERSION,
    KubeModel,
    ObjectMeta,
    ObjectReference,
)


class ClusterOwnedObject(KubeModel):
    """Common shape of every object discovered under a Cluster.

    Only metadata matters for descendant discovery and deletion.
    """

    api_version: str = CLUSTER_API_VERSION
    kind: str
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


class MachineSpec(KubeModel):
    cluster_name: str = ""


class MachineStatus(KubeModel):
    node_ref: ObjectReference | None = None


class Machine(ClusterOwnedObject):
    """A single host in the cluster."""

    kind: str = "Machine"
    spec: MachineSpec = Field(default_factory=MachineSpec)
    status: MachineStatus = Field(default_factory=MachineStatus)

    def is_control_plane(self) -> bool:
        return CONTROL_PLANE_LABEL in self.metadata.labels


class MachineSet(ClusterOwnedObject):
    kind: str = "MachineSet"


class MachineDeployment(ClusterOwnedObject):
    kind: str = "MachineDeployment"


class MachinePool(ClusterOwnedObject):
    api_version: str = EXP_API_VERSION
    kind: str = "MachinePool"
