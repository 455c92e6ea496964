"""Data models for the Cluster resource."""

from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from cluster_controller.models.condition import Condition
from cluster_controller.models.meta import (
    CLUSTER_API_VERSION,
    PAUSED_ANNOTATION,
    KubeModel,
    ObjectMeta,
    ObjectReference,
)

CLUSTER_FINALIZER = "cluster.cluster.x-k8s.io"


class ClusterPhase(str, Enum):
    """Lifecycle phase reported in status.phase."""

    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    PROVISIONED = "Provisioned"
    DELETING = "Deleting"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class APIEndpoint(KubeModel):
    """Host and port of the workload cluster's API server."""

    host: str = ""
    port: int = 0

    def is_valid(self) -> bool:
        return bool(self.host) and self.port != 0


class ClusterSpec(KubeModel):
    """Desired state of a Cluster."""

    paused: bool = False
    control_plane_endpoint: APIEndpoint = Field(default_factory=APIEndpoint)
    control_plane_ref: ObjectReference | None = None
    infrastructure_ref: ObjectReference | None = None


class ClusterStatus(KubeModel):
    """Observed state of a Cluster."""

    phase: ClusterPhase | None = None
    infrastructure_ready: bool = False
    control_plane_ready: bool = False
    control_plane_initialized: bool = False
    failure_reason: str | None = None
    failure_message: str | None = None
    failure_domains: dict[str, Any] | None = None
    observed_generation: int = 0
    conditions: list[Condition] = Field(default_factory=list)


class Cluster(KubeModel):
    """A desired Kubernetes cluster and its observed lifecycle."""

    api_version: str = CLUSTER_API_VERSION
    kind: str = "Cluster"
    metadata: ObjectMeta
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        """Validate the object is a Cluster."""
        if v != "Cluster":
            raise ValueError(f"kind must be 'Cluster', got '{v}'")
        return v

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def is_paused(self) -> bool:
        """A Cluster is paused by spec.paused or the paused annotation."""
        return self.spec.paused or PAUSED_ANNOTATION in self.metadata.annotations

    def owner_reference(self) -> dict[str, Any]:
        """Owner reference pointing at this Cluster, in wire format."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
        }
