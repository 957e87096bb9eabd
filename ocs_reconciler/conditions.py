"""Condition merge rules and the standard condition sets."""

from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import Condition, ConditionStatus, ConditionType

REASON_INIT = "Init"
REASON_RECONCILE_FAILED = "ReconcileFailed"
REASON_RECONCILE_COMPLETED = "ReconcileCompleted"
RECONCILE_COMPLETED_MESSAGE = "Reconcile completed successfully"


def utcnow() -> datetime:
    """Current time truncated to whole seconds, as the API server stores it."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _condition(
    ctype: ConditionType, status: ConditionStatus, reason: str, message: str
) -> Condition:
    return Condition(type=ctype.value, status=status, reason=reason, message=message)


def find_condition(
    conditions: Iterable[Condition], ctype: ConditionType | str
) -> Optional[Condition]:
    """Return the condition of the given type, or None."""
    wanted = ctype.value if isinstance(ctype, ConditionType) else ctype
    for condition in conditions:
        if condition.type == wanted:
            return condition
    return None


def is_condition_false(conditions: Iterable[Condition], ctype: ConditionType) -> bool:
    """True when a condition of the given type exists with status False."""
    condition = find_condition(conditions, ctype)
    return condition is not None and condition.status == ConditionStatus.FALSE


def set_condition(
    conditions: list[Condition], new: Condition, now: Optional[datetime] = None
) -> None:
    """
    Merge a condition into a list keyed by type.

    The transition time only moves when the status value changes; the
    heartbeat moves on every call.
    """
    now = now or utcnow()
    existing = find_condition(conditions, new.type)
    if existing is None:
        conditions.append(
            new.model_copy(
                update={"last_transition_time": now, "last_heartbeat_time": now}
            )
        )
        return

    if existing.status != new.status:
        existing.status = new.status
        existing.last_transition_time = now
    existing.reason = new.reason
    existing.message = new.message
    existing.last_heartbeat_time = now


def set_conditions(
    conditions: list[Condition],
    new_conditions: Iterable[Condition],
    now: Optional[datetime] = None,
) -> None:
    """Merge several conditions, later entries of the same type win."""
    now = now or utcnow()
    for condition in new_conditions:
        set_condition(conditions, condition, now)


def progressing_conditions(reason: str, message: str) -> list[Condition]:
    """Conditions describing work still in progress."""
    return [
        _condition(ConditionType.AVAILABLE, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.PROGRESSING, ConditionStatus.TRUE, reason, message),
        _condition(ConditionType.DEGRADED, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.UPGRADEABLE, ConditionStatus.FALSE, reason, message),
    ]


def error_conditions(reason: str, message: str) -> list[Condition]:
    """Conditions describing a failure."""
    return [
        _condition(ConditionType.AVAILABLE, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.PROGRESSING, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.DEGRADED, ConditionStatus.TRUE, reason, message),
        _condition(ConditionType.UPGRADEABLE, ConditionStatus.FALSE, reason, message),
    ]


def complete_conditions(reason: str, message: str) -> list[Condition]:
    """Conditions describing a fully converged cluster."""
    return [
        _condition(ConditionType.AVAILABLE, ConditionStatus.TRUE, reason, message),
        _condition(ConditionType.PROGRESSING, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.DEGRADED, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.UPGRADEABLE, ConditionStatus.TRUE, reason, message),
        reconcile_complete_condition(),
    ]


def reconcile_complete_condition() -> Condition:
    return _condition(
        ConditionType.RECONCILE_COMPLETE,
        ConditionStatus.TRUE,
        REASON_RECONCILE_COMPLETED,
        RECONCILE_COMPLETED_MESSAGE,
    )


def not_reporting_conditions(kind: str) -> list[Condition]:
    """Neutral conditions for a child that has not reported any status yet."""
    return progressing_conditions(
        f"{kind}Status", f"{kind} resource is not reporting status"
    )


def external_connecting_conditions(message: str) -> list[Condition]:
    """Conditions for an external cluster that is not connected yet."""
    reason = "ExternalClusterStateConnecting"
    return progressing_conditions(reason, message) + [
        _condition(
            ConditionType.EXTERNAL_CLUSTER_CONNECTED, ConditionStatus.FALSE, reason, message
        ),
        _condition(
            ConditionType.EXTERNAL_CLUSTER_CONNECTING, ConditionStatus.TRUE, reason, message
        ),
    ]
