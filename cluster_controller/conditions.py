"""Condition bookkeeping: set, summarize and mirror.

Conditions live in ``obj.status.conditions``. The Ready condition is kept
first and the remaining types sorted alphabetically, so repeated passes
produce identical lists.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from cluster_controller.external import UnstructuredObject
from cluster_controller.models.condition import (
    READY_CONDITION,
    Condition,
    ConditionSeverity,
    ConditionStatus,
)


class _Status(Protocol):
    conditions: list[Condition]


class Setter(Protocol):
    status: _Status


@dataclass(frozen=True)
class Fallback:
    """Condition to synthesize when a mirrored object has no Ready condition."""

    status: bool
    reason: str
    severity: ConditionSeverity
    message: str = ""


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _sort_key(condition: Condition) -> tuple[int, str]:
    return (0 if condition.type == READY_CONDITION else 1, condition.type)


def get(obj: Setter, condition_type: str) -> Condition | None:
    return next((c for c in obj.status.conditions if c.type == condition_type), None)


def is_true(obj: Setter, condition_type: str) -> bool:
    condition = get(obj, condition_type)
    return condition is not None and condition.status == ConditionStatus.TRUE


def set_condition(obj: Setter, condition: Condition | None) -> None:
    """Add or replace a condition.

    lastTransitionTime only moves when the status changes.
    """
    if condition is None:
        return
    condition = condition.model_copy()
    existing = get(obj, condition.type)
    if existing is not None and existing.status == condition.status:
        condition.last_transition_time = existing.last_transition_time
    elif condition.last_transition_time is None:
        condition.last_transition_time = _now()

    others = [c for c in obj.status.conditions if c.type != condition.type]
    obj.status.conditions = sorted([*others, condition], key=_sort_key)


def mark_true(obj: Setter, condition_type: str) -> None:
    set_condition(obj, Condition(type=condition_type, status=ConditionStatus.TRUE))


def mark_false(
    obj: Setter,
    condition_type: str,
    reason: str,
    severity: ConditionSeverity,
    message: str = "",
) -> None:
    set_condition(
        obj,
        Condition(
            type=condition_type,
            status=ConditionStatus.FALSE,
            severity=severity,
            reason=reason,
            message=message,
        ),
    )


def _priority(condition: Condition) -> int:
    """Lower is worse. False conditions rank by severity, then Unknown, then True."""
    if condition.status == ConditionStatus.FALSE:
        return {
            ConditionSeverity.ERROR: 0,
            ConditionSeverity.WARNING: 1,
            ConditionSeverity.INFO: 2,
        }.get(condition.severity, 3)
    if condition.status == ConditionStatus.UNKNOWN:
        return 4
    return 5


def summarize(
    conditions: list[Condition], target_type: str = READY_CONDITION
) -> Condition | None:
    """Reduce conditions to one condition of target_type, worst status wins.

    Returns None when there is nothing to summarize.
    """
    if not conditions:
        return None
    worst = min(conditions, key=_priority)
    if worst.status == ConditionStatus.TRUE:
        return Condition(type=target_type, status=ConditionStatus.TRUE)
    return Condition(
        type=target_type,
        status=worst.status,
        severity=worst.severity if worst.status == ConditionStatus.FALSE else ConditionSeverity.NONE,
        reason=worst.reason,
        message=worst.message,
    )


def set_summary(obj: Setter, condition_types: list[str]) -> None:
    """Set Ready on obj from whichever of condition_types are present."""
    in_scope = [c for c in obj.status.conditions if c.type in condition_types]
    set_condition(obj, summarize(in_scope))


def mirror(
    source: UnstructuredObject, target_type: str, fallback: Fallback | None = None
) -> Condition | None:
    """Copy source's Ready condition under target_type, or build it from fallback."""
    ready = source.get_condition(READY_CONDITION)
    if ready is not None:
        return ready.model_copy(update={"type": target_type})
    if fallback is None:
        return None
    if fallback.status:
        return Condition(type=target_type, status=ConditionStatus.TRUE)
    return Condition(
        type=target_type,
        status=ConditionStatus.FALSE,
        severity=fallback.severity,
        reason=fallback.reason,
        message=fallback.message,
    )


def set_mirror(
    obj: Setter, target_type: str, source: UnstructuredObject, fallback: Fallback | None = None
) -> None:
    set_condition(obj, mirror(source, target_type, fallback))
