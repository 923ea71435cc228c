"""
Unit tests for the recommendation lifecycle.
"""

import pytest

from cost_advisor.core.exceptions import ConflictError, ValidationError
from cost_advisor.core.lifecycle import (
    Transition,
    apply_transition,
    dismiss,
    fail,
    implement,
    start,
)
from cost_advisor.storage.models import AccountScope, RecommendationStatus
from cost_advisor.storage.repository import RecommendationRepository

from conftest import ACCOUNT, NOW, OWNER


class TestApplyTransition:
    """Test the state machine on recommendation values."""

    def test_start_records_actor(self, make_recommendation):
        rec = apply_transition(make_recommendation(), Transition.START, "alice", now=NOW)

        assert rec.status == RecommendationStatus.IN_PROGRESS
        assert rec.started_by == "alice"
        assert rec.started_at == NOW

    def test_dismiss_records_reason(self, make_recommendation):
        rec = apply_transition(make_recommendation(), Transition.DISMISS, "alice", "  Seasonal load  ")

        assert rec.status == RecommendationStatus.DISMISSED
        assert rec.dismissed_by == "alice"
        assert rec.dismissal_reason == "Seasonal load"

    @pytest.mark.parametrize("transition", [Transition.DISMISS, Transition.FAIL])
    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, make_recommendation, transition, reason):
        with pytest.raises(ValidationError):
            apply_transition(make_recommendation(), transition, "alice", reason)

    def test_actor_required(self, make_recommendation):
        with pytest.raises(ValidationError):
            apply_transition(make_recommendation(), Transition.IMPLEMENT, " ")

    def test_terminal_states_are_final(self, make_recommendation):
        """Nothing leaves implemented, dismissed or failed."""
        for status in (RecommendationStatus.IMPLEMENTED, RecommendationStatus.DISMISSED,
                       RecommendationStatus.FAILED):
            rec = make_recommendation(status=status)
            for transition in Transition:
                with pytest.raises(ConflictError):
                    apply_transition(rec, transition, "alice", "reason")

    def test_in_progress_cannot_restart(self, make_recommendation):
        rec = make_recommendation(status=RecommendationStatus.IN_PROGRESS)

        with pytest.raises(ConflictError):
            apply_transition(rec, Transition.START, "alice")


class TestStoredTransitions:
    """Test transitions persisted through the repository."""

    def _store(self, db_path, rec):
        repo = RecommendationRepository(db_path)
        repo.save_recommendations([rec])
        return repo

    def test_start_then_implement(self, db_path, make_recommendation):
        rec = make_recommendation()
        repo = self._store(db_path, rec)

        start(repo, rec.id, "alice")
        done = implement(repo, rec.id, "bob")

        stored = repo.get(rec.id)
        assert done.status == RecommendationStatus.IMPLEMENTED
        assert stored.status == RecommendationStatus.IMPLEMENTED
        assert stored.started_by == "alice"
        assert stored.implemented_by == "bob"

    def test_implement_dismissed_is_conflict(self, db_path, make_recommendation):
        rec = make_recommendation()
        repo = self._store(db_path, rec)
        dismiss(repo, rec.id, "alice", "Not worth the migration")

        with pytest.raises(ConflictError):
            implement(repo, rec.id, "bob")
        assert repo.get(rec.id).status == RecommendationStatus.DISMISSED

    def test_dismiss_without_reason_leaves_state(self, db_path, make_recommendation):
        rec = make_recommendation()
        repo = self._store(db_path, rec)

        with pytest.raises(ValidationError):
            dismiss(repo, rec.id, "alice", "")
        assert repo.get(rec.id).status == RecommendationStatus.PENDING

    def test_fail_records_reason(self, db_path, make_recommendation):
        rec = make_recommendation()
        repo = self._store(db_path, rec)

        fail(repo, rec.id, "alice", "Resize rolled back")

        stored = repo.get(rec.id)
        assert stored.status == RecommendationStatus.FAILED
        assert stored.failed_by == "alice"
        assert stored.failure_reason == "Resize rolled back"

    def test_unknown_id_is_validation_error(self, db_path):
        with pytest.raises(ValidationError):
            implement(RecommendationRepository(db_path), "missing", "alice")

    def test_other_account_is_not_found(self, db_path, make_recommendation):
        rec = make_recommendation()
        repo = self._store(db_path, rec)

        with pytest.raises(ValidationError):
            implement(repo, rec.id, "alice", scope=AccountScope("owner-2", ACCOUNT))
        implement(repo, rec.id, "alice", scope=AccountScope(OWNER, ACCOUNT))

    def test_lost_race_is_conflict(self, db_path, make_recommendation):
        """A write based on a stale status is rejected."""
        rec = make_recommendation()
        repo = self._store(db_path, rec)
        stale_dismissal = apply_transition(rec, Transition.DISMISS, "alice", "Too risky")

        implement(repo, rec.id, "bob")

        with pytest.raises(ConflictError):
            repo.update_status(stale_dismissal, expected_status=RecommendationStatus.PENDING)
        assert repo.get(rec.id).status == RecommendationStatus.IMPLEMENTED
