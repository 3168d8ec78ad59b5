"""Utilities for managing Kubernetes status conditions.

Every function works on a ``ConditionsAware`` value, anything exposing
``get_conditions()`` and ``set_conditions()``. ``ResourceConditions`` adapts
a plain object dictionary (Gateway, ControlPlane, DataPlane) by reading and
writing ``status.conditions`` in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

from ..constants import (
    COND_PROGRAMMED,
    COND_READY,
    MESSAGE_DEPENDENCIES_NOT_READY,
    REASON_DEPENDENCIES_NOT_READY,
    REASON_PENDING,
    REASON_PROGRAMMED,
    REASON_READY,
)

# Conditions derived from the others and therefore skipped by aggregate().
AGGREGATE_CONDITIONS = frozenset({COND_READY, COND_PROGRAMMED})


class ConditionsAware(Protocol):
    def get_conditions(self) -> list[dict[str, Any]]: ...

    def set_conditions(self, conditions: list[dict[str, Any]]) -> None: ...


class ResourceConditions:
    """ConditionsAware view over ``status.conditions`` of an object dict."""

    def __init__(self, obj: dict[str, Any]):
        self.obj = obj

    @property
    def generation(self) -> int | None:
        return (self.obj.get("metadata") or {}).get("generation")

    def get_conditions(self) -> list[dict[str, Any]]:
        status = self.obj.get("status") or {}
        return list(status.get("conditions") or [])

    def set_conditions(self, conditions: list[dict[str, Any]]) -> None:
        status = self.obj.get("status")
        if status is None:
            status = self.obj["status"] = {}
        status["conditions"] = conditions


def conditions_of(obj: dict[str, Any]) -> ResourceConditions:
    return ResourceConditions(obj)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_condition(
    condition_type: str,
    status: bool | str,
    reason: str,
    message: str = "",
    observed_generation: int | None = None,
) -> dict[str, Any]:
    """Build a condition dict.

    Args:
        condition_type: Type of condition
        status: True/False or one of "True", "False", "Unknown"
        reason: CamelCase reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Condition dict with a fresh lastTransitionTime
    """
    if isinstance(status, bool):
        status = "True" if status else "False"
    condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": _now(),
    }
    if observed_generation is not None:
        condition["observedGeneration"] = observed_generation
    return condition


def set_condition(condition: dict[str, Any], resource: ConditionsAware) -> None:
    """Replace the condition of the same type, or append it.

    The previous lastTransitionTime is kept when the status did not change.
    """
    kept: list[dict[str, Any]] = []
    for existing in resource.get_conditions():
        if existing.get("type") != condition["type"]:
            kept.append(existing)
            continue
        if existing.get("status") == condition.get("status") and existing.get("lastTransitionTime"):
            condition = {**condition, "lastTransitionTime": existing["lastTransitionTime"]}
    kept.append(condition)
    resource.set_conditions(kept)


def get_condition(condition_type: str, resource: ConditionsAware) -> tuple[dict[str, Any] | None, bool]:
    """Return (condition, found) for the given type."""
    for condition in resource.get_conditions():
        if condition.get("type") == condition_type:
            return condition, True
    return None, False


def is_condition_true(condition_type: str, resource: ConditionsAware) -> bool:
    """True if the condition exists with status True; absent counts as False."""
    condition, found = get_condition(condition_type, resource)
    return found and condition.get("status") == "True"


def init_condition(
    condition_type: str,
    resource: ConditionsAware,
    reason: str = REASON_DEPENDENCIES_NOT_READY,
    message: str = MESSAGE_DEPENDENCIES_NOT_READY,
    observed_generation: int | None = None,
) -> bool:
    """Seed a False condition if none of that type exists. Returns True if seeded."""
    _, found = get_condition(condition_type, resource)
    if found:
        return False
    set_condition(new_condition(condition_type, False, reason, message, observed_generation), resource)
    return True


def _generation(resource: ConditionsAware) -> int | None:
    return getattr(resource, "generation", None)


def init_ready(resource: ConditionsAware) -> bool:
    return init_condition(COND_READY, resource, observed_generation=_generation(resource))


def init_programmed(resource: ConditionsAware) -> bool:
    return init_condition(
        COND_PROGRAMMED, resource, reason=REASON_PENDING, message="", observed_generation=_generation(resource)
    )


def init_ready_and_programmed(resource: ConditionsAware) -> None:
    init_ready(resource)
    init_programmed(resource)


def aggregate(resource: ConditionsAware) -> bool:
    """True only if every condition other than Ready and Programmed is True."""
    return all(
        condition.get("status") == "True"
        for condition in resource.get_conditions()
        if condition.get("type") not in AGGREGATE_CONDITIONS
    )


def set_ready(resource: ConditionsAware) -> None:
    """Derive the Ready condition from the other conditions."""
    generation = _generation(resource)
    if aggregate(resource):
        set_condition(new_condition(COND_READY, True, REASON_READY, "", generation), resource)
    else:
        set_condition(
            new_condition(
                COND_READY, False, REASON_DEPENDENCIES_NOT_READY, MESSAGE_DEPENDENCIES_NOT_READY, generation
            ),
            resource,
        )


def set_programmed(resource: ConditionsAware) -> None:
    """Derive the Programmed condition from the other conditions."""
    generation = _generation(resource)
    if aggregate(resource):
        set_condition(new_condition(COND_PROGRAMMED, True, REASON_PROGRAMMED, "", generation), resource)
    else:
        set_condition(new_condition(COND_PROGRAMMED, False, REASON_PENDING, "", generation), resource)


def set_ready_and_programmed(resource: ConditionsAware) -> None:
    set_ready(resource)
    set_programmed(resource)


def is_ready(obj: dict[str, Any]) -> bool:
    return is_condition_true(COND_READY, conditions_of(obj))


def is_programmed(obj: dict[str, Any]) -> bool:
    return is_condition_true(COND_PROGRAMMED, conditions_of(obj))


def needs_status_update(current: ConditionsAware, desired: ConditionsAware) -> bool:
    """True if persisting ``desired`` would change the stored condition set.

    Counts differing, or any type whose reason, message or status differs,
    means an update is needed. Order and timestamps are ignored.
    """
    current_conditions = current.get_conditions()
    desired_conditions = desired.get_conditions()
    if len(current_conditions) != len(desired_conditions):
        return True

    by_type = {condition.get("type"): condition for condition in current_conditions}
    for condition in desired_conditions:
        existing = by_type.get(condition.get("type"))
        if existing is None:
            return True
        for field in ("reason", "message", "status"):
            if (existing.get(field) or "") != (condition.get(field) or ""):
                return True
    return False
