"""Condition types used for readiness reporting."""

from datetime import datetime
from enum import Enum

from cluster_controller.models.meta import KubeModel


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionSeverity(str, Enum):
    """How bad a False condition is. Empty for True or Unknown conditions."""

    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"
    NONE = ""


# Condition types owned by the cluster controller
READY_CONDITION = "Ready"
CONTROL_PLANE_READY_CONDITION = "ControlPlaneReady"
INFRASTRUCTURE_READY_CONDITION = "InfrastructureReady"

# Reasons
DELETING_REASON = "Deleting"
DELETED_REASON = "Deleted"
WAITING_FOR_INFRASTRUCTURE_FALLBACK_REASON = "WaitingForInfrastructure"
WAITING_FOR_CONTROL_PLANE_FALLBACK_REASON = "WaitingForControlPlane"


class Condition(KubeModel):
    """A typed status signal on an object."""

    type: str
    status: ConditionStatus
    severity: ConditionSeverity = ConditionSeverity.NONE
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None
