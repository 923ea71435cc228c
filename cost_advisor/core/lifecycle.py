"""
Recommendation lifecycle.

State machine for recommendations, kept independent of the store:

    pending ──start──> in_progress
    pending | in_progress ──implement──> implemented   (terminal)
    pending | in_progress ──dismiss────> dismissed     (terminal, reason required)
    pending | in_progress ──fail───────> failed        (terminal, reason required)

A terminal recommendation is never reopened; if the condition recurs
the engine creates a fresh one.
"""

from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

import structlog

from .exceptions import ConflictError, ValidationError
from cost_advisor.storage.models import AccountScope, Recommendation, RecommendationStatus
from cost_advisor.storage.repository import RecommendationRepository

logger = structlog.get_logger()


class Transition(Enum):
    """Operations that move a recommendation between states."""
    START = "start"
    IMPLEMENT = "implement"
    DISMISS = "dismiss"
    FAIL = "fail"


_ALLOWED_SOURCES: Dict[Transition, FrozenSet[RecommendationStatus]] = {
    Transition.START: frozenset({RecommendationStatus.PENDING}),
    Transition.IMPLEMENT: frozenset({RecommendationStatus.PENDING, RecommendationStatus.IN_PROGRESS}),
    Transition.DISMISS: frozenset({RecommendationStatus.PENDING, RecommendationStatus.IN_PROGRESS}),
    Transition.FAIL: frozenset({RecommendationStatus.PENDING, RecommendationStatus.IN_PROGRESS}),
}

_TARGETS: Dict[Transition, RecommendationStatus] = {
    Transition.START: RecommendationStatus.IN_PROGRESS,
    Transition.IMPLEMENT: RecommendationStatus.IMPLEMENTED,
    Transition.DISMISS: RecommendationStatus.DISMISSED,
    Transition.FAIL: RecommendationStatus.FAILED,
}


def apply_transition(
    recommendation: Recommendation,
    transition: Transition,
    actor_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None
) -> Recommendation:
    """Apply a transition to a recommendation value.

    Args:
        recommendation: Current recommendation
        transition: Transition to apply
        actor_id: User or system performing the transition
        reason: Required for DISMISS and FAIL
        now: Transition time, defaults to the current UTC time

    Returns:
        New Recommendation in the target state

    Raises:
        ValidationError: If actor or a required reason is missing
        ConflictError: If the transition is not allowed from the current state
    """
    if not actor_id or not actor_id.strip():
        raise ValidationError("actor_id is required and cannot be empty")

    if transition in (Transition.DISMISS, Transition.FAIL):
        if reason is None or not reason.strip():
            raise ValidationError(f"A reason is required to {transition.value} a recommendation")

    current = recommendation.status
    if current not in _ALLOWED_SOURCES[transition]:
        raise ConflictError(
            f"Cannot {transition.value} recommendation {recommendation.id}: status is {current.value}",
            details={"recommendation_id": recommendation.id, "status": current.value}
        )

    now = now or datetime.now(timezone.utc)
    changes = {"status": _TARGETS[transition], "updated_at": now}
    if transition == Transition.START:
        changes.update(started_at=now, started_by=actor_id)
    elif transition == Transition.IMPLEMENT:
        changes.update(implemented_at=now, implemented_by=actor_id)
    elif transition == Transition.DISMISS:
        changes.update(dismissed_at=now, dismissed_by=actor_id, dismissal_reason=reason.strip())
    else:
        changes.update(failed_at=now, failed_by=actor_id, failure_reason=reason.strip())

    return replace(recommendation, **changes)


def transition_recommendation(
    store: RecommendationRepository,
    recommendation_id: str,
    transition: Transition,
    actor_id: str,
    reason: Optional[str] = None,
    scope: Optional[AccountScope] = None
) -> Recommendation:
    """Load, transition and store a recommendation.

    The write is a compare-and-swap on the status read, so a concurrent
    transition of the same recommendation is rejected, not overwritten.

    Raises:
        ValidationError: If the id is unknown or outside ``scope``
        ConflictError: If the transition is not allowed or lost a race
    """
    if not recommendation_id:
        raise ValidationError("recommendation_id is required")

    recommendation = store.get(recommendation_id)
    if recommendation is None or (scope is not None and recommendation.scope != scope):
        raise ValidationError(f"Recommendation {recommendation_id} not found")

    updated = apply_transition(recommendation, transition, actor_id, reason)
    store.update_status(updated, expected_status=recommendation.status)

    logger.info(
        "recommendation_transitioned",
        recommendation_id=recommendation_id,
        transition=transition.value,
        from_status=recommendation.status.value,
        to_status=updated.status.value,
        actor_id=actor_id,
    )
    return updated


def start(store: RecommendationRepository, recommendation_id: str, actor_id: str,
          scope: Optional[AccountScope] = None) -> Recommendation:
    return transition_recommendation(store, recommendation_id, Transition.START, actor_id, scope=scope)


def implement(store: RecommendationRepository, recommendation_id: str, actor_id: str,
              scope: Optional[AccountScope] = None) -> Recommendation:
    """Mark a recommendation implemented; fails if it is already terminal."""
    return transition_recommendation(store, recommendation_id, Transition.IMPLEMENT, actor_id, scope=scope)


def dismiss(store: RecommendationRepository, recommendation_id: str, actor_id: str,
            reason: str, scope: Optional[AccountScope] = None) -> Recommendation:
    """Dismiss a recommendation; the reason is mandatory."""
    return transition_recommendation(store, recommendation_id, Transition.DISMISS, actor_id, reason, scope)


def fail(store: RecommendationRepository, recommendation_id: str, actor_id: str,
         reason: str, scope: Optional[AccountScope] = None) -> Recommendation:
    return transition_recommendation(store, recommendation_id, Transition.FAIL, actor_id, reason, scope)
