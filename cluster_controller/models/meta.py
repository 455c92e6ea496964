"""Object metadata shared by every resource this controller touches."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CLUSTER_API_GROUP = "cluster.x-k8s.io"
CLUSTER_API_VERSION = f"{CLUSTER_API_GROUP}/v1alpha4"
EXP_API_VERSION = "exp.cluster.x-k8s.io/v1alpha3"

CLUSTER_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"


def api_group(api_version: str) -> str:
    """Return the group part of an apiVersion ("" for the core group)."""
    if "/" not in api_version:
        return ""
    return api_version.split("/", 1)[0]


class KubeModel(BaseModel):
    """Base model that reads and writes the camelCase Kubernetes wire format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict using wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OwnerReference(KubeModel):
    """Reference from a dependent object to the object that owns it."""

    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectReference(KubeModel):
    """An (apiVersion, kind, name) triple identifying an object of unknown schema."""

    api_version: str = ""
    kind: str
    name: str
    namespace: str | None = None

    def __str__(self) -> str:
        return f"{self.api_version}/{self.kind} {self.name!r}"


class ObjectMeta(KubeModel):
    """Standard object metadata."""

    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    deletion_timestamp: datetime | None = None

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> None:
        if finalizer not in self.finalizers:
            self.finalizers.append(finalizer)

    def remove_finalizer(self, finalizer: str) -> None:
        self.finalizers = [f for f in self.finalizers if f != finalizer]

    def is_owned_by(self, api_version: str, kind: str, name: str) -> bool:
        """Check for an owner reference matching the owner's group, kind and name.

        Versions are ignored so references survive API version bumps.
        """
        group = api_group(api_version)
        return any(
            api_group(ref.api_version) == group and ref.kind == kind and ref.name == name
            for ref in self.owner_references
        )
