"""Data models for Cluster API resources."""

from cluster_controller.models.cluster import (
    CLUSTER_FINALIZER,
    APIEndpoint,
    Cluster,
    ClusterPhase,
    ClusterSpec,
    ClusterStatus,
)
from cluster_controller.models.condition import Condition, ConditionSeverity, ConditionStatus
from cluster_controller.models.machine import (
    ClusterOwnedObject,
    Machine,
    MachineDeployment,
    MachinePool,
    MachineSet,
)
from cluster_controller.models.meta import ObjectMeta, ObjectReference, OwnerReference

__all__ = [
    "CLUSTER_FINALIZER",
    "APIEndpoint",
    "Cluster",
    "ClusterPhase",
    "ClusterSpec",
    "ClusterStatus",
    "ClusterOwnedObject",
    "Condition",
    "ConditionSeverity",
    "ConditionStatus",
    "Machine",
    "MachineDeployment",
    "MachinePool",
    "MachineSet",
    "ObjectMeta",
    "ObjectReference",
    "OwnerReference",
]
