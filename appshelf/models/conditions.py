"""Typed, timestamped status conditions with upsert semantics."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from appshelf.models.meta import Record, utcnow


class Condition(BaseModel):
    """One aspect of a record's health.

    Conditions are keyed by ``type``; at most one condition per type is kept.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    status: bool
    reason: str
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utcnow)
    observed_generation: int = 0


def get_condition(record: Record, condition_type: str) -> Condition | None:
    """Return the condition of ``condition_type`` on the record, if any."""
    for condition in record.status.conditions:  # type: ignore[attr-defined]
        if condition.type == condition_type:
            return condition
    return None


def set_condition(
    record: Record,
    condition_type: str,
    status: bool,
    reason: str,
    message: str = "",
) -> bool:
    """Upsert a condition on ``record.status.conditions``.

    An existing condition with the same status, reason and message keeps
    its transition time; only a stale ``observed_generation`` is refreshed.
    Returns True when the condition list changed.
    """
    conditions: list[Condition] = record.status.conditions  # type: ignore[attr-defined]
    stamped = Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=utcnow(),
        observed_generation=record.metadata.generation,
    )

    for i, existing in enumerate(conditions):
        if existing.type != condition_type:
            continue
        if (
            existing.status == status
            and existing.reason == reason
            and existing.message == message
        ):
            if existing.observed_generation == stamped.observed_generation:
                return False
            conditions[i] = existing.model_copy(
                update={"observed_generation": stamped.observed_generation}
            )
            return True
        conditions[i] = stamped
        return True

    conditions.append(stamped)
    return True
