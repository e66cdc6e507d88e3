"""Verification (trust) evaluation for happenings_engine.

Confirmation is a trust indicator shown next to an occurrence. It never
decides whether the occurrence is shown; visibility depends only on
``is_published`` and the series status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .exceptions import InvalidEventStatus
from .models import EventDefinition, EventStatus, Occurrence, VerificationState

logger = logging.getLogger(__name__)

VISIBLE_STATUSES: frozenset[EventStatus] = frozenset(
    {EventStatus.ACTIVE, EventStatus.NEEDS_VERIFICATION, EventStatus.UNVERIFIED}
)

ACTIVE_STATES: frozenset[VerificationState] = frozenset(
    {VerificationState.UNCONFIRMED, VerificationState.CONFIRMED}
)


@dataclass(frozen=True)
class VerificationResult:
    """Verification state with the reason it was derived."""

    state: VerificationState
    reason: str
    last_verified_at: Optional[datetime] = None


def evaluate(
    status: Union[EventStatus, str],
    last_verified_at: Optional[datetime],
    occurrence_cancelled: bool = False,
) -> VerificationState:
    """Derive the trust state of an occurrence.

    Cancellation dominates: a cancelled series or occurrence is cancelled no
    matter when it was last verified. Otherwise any verification timestamp
    makes it confirmed.

    Args:
        status: Series status
        last_verified_at: Last confirmation timestamp, or None
        occurrence_cancelled: Occurrence-level cancellation from an override

    Returns:
        VerificationState

    Raises:
        InvalidEventStatus: If status is not a known event status
    """
    try:
        series_status = EventStatus(status)
    except ValueError as e:
        raise InvalidEventStatus(f"Unknown event status {status!r}") from e

    if occurrence_cancelled or series_status == EventStatus.CANCELLED:
        return VerificationState.CANCELLED
    if last_verified_at is not None:
        return VerificationState.CONFIRMED
    return VerificationState.UNCONFIRMED


def evaluate_event(definition: EventDefinition, occurrence: Optional[Occurrence] = None) -> VerificationResult:
    """Evaluate a series, or one of its occurrences, with a reason code.

    Reasons: ``occurrence_cancelled``, ``series_cancelled``, ``verified``,
    ``not_verified``.
    """
    occurrence_cancelled = occurrence is not None and occurrence.cancelled
    state = evaluate(definition.status, definition.last_verified_at, occurrence_cancelled)

    if state == VerificationState.CANCELLED:
        reason = "occurrence_cancelled" if occurrence_cancelled else "series_cancelled"
    elif state == VerificationState.CONFIRMED:
        reason = "verified"
    else:
        reason = "not_verified"

    return VerificationResult(state=state, reason=reason, last_verified_at=definition.last_verified_at)


def annotate(occurrence: Occurrence, definition: EventDefinition) -> Occurrence:
    """Return the occurrence with its verification state filled in."""
    return occurrence.model_copy(update={"verification": evaluate_event(definition, occurrence).state})


def is_publicly_visible(definition: EventDefinition) -> bool:
    """Whether a series may be listed publicly.

    Depends only on the publish flag and the series status; an unconfirmed
    series that is published and active is visible.
    """
    return definition.is_published and definition.status in VISIBLE_STATUSES


def can_transition(
    current: VerificationState,
    target: VerificationState,
    explicit_reversal: bool = False,
) -> bool:
    """Check a verification state change against the lifecycle.

    - unconfirmed -> confirmed when a verification timestamp is set
    - any active state -> cancelled
    - cancelled -> active only through an explicit reversal, never on its own

    Staying in the same state is always allowed.
    """
    if current == target:
        return True
    if current == VerificationState.CANCELLED:
        if not explicit_reversal:
            logger.debug("Refusing %s -> %s without explicit reversal", current.value, target.value)
        return explicit_reversal and target in ACTIVE_STATES
    if target == VerificationState.CANCELLED:
        return True
    return current == VerificationState.UNCONFIRMED and target == VerificationState.CONFIRMED
