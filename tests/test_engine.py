"""
Integration tests for batch evaluation against a SQLite store.

Verifies idempotent re-runs, refresh on material change, failure
isolation and partial progress reporting.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from cost_advisor.core.engine import reconcile, run_evaluation
from cost_advisor.core.exceptions import StoreFailure
from cost_advisor.core.lifecycle import dismiss
from cost_advisor.storage.models import (
    AccountScope,
    RecommendationKind,
    RecommendationStatus,
)
from cost_advisor.storage.repository import (
    RecommendationRepository,
    UpsertOutcome,
    UsageRepository,
)

from conftest import ACCOUNT, NOW, OWNER, cpu

SCOPE = AccountScope(OWNER, ACCOUNT)


class TestRunEvaluation:
    """Test evaluation passes over a stored account."""

    def _seed_underused(self, db_path, make_record, resource_id="i-0abc", cost="100.00", days_ago=0.0):
        records = [
            make_record(resource_id=resource_id, days_ago=days_ago + day + 0.1,
                        metrics=cpu(12.0), cost=Decimal(cost))
            for day in range(7)
        ]
        UsageRepository(db_path).insert_usage_records(records)

    def _run(self, db_path, now=NOW, **kwargs):
        return run_evaluation(
            SCOPE,
            UsageRepository(db_path),
            RecommendationRepository(db_path),
            now=now,
            **kwargs
        )

    def test_first_run_creates_recommendation(self, db_path, make_record):
        self._seed_underused(db_path, make_record)

        summary = self._run(db_path)

        assert summary.created == 1
        assert summary.resources_evaluated == 1
        assert summary.errors == 0
        stored = RecommendationRepository(db_path).list_active(SCOPE)
        assert len(stored) == 1
        assert stored[0].estimated_savings.amount == Decimal("50.00")

    def test_rerun_is_idempotent(self, db_path, make_record):
        """A second pass over unchanged data creates nothing."""
        self._seed_underused(db_path, make_record)
        self._run(db_path)

        summary = self._run(db_path, now=NOW + timedelta(minutes=5))

        assert summary.created == 0
        assert summary.unchanged == 1
        assert RecommendationRepository(db_path).count_recommendations(SCOPE) == 1

    def test_small_savings_change_leaves_recommendation_untouched(self, db_path, make_record):
        self._seed_underused(db_path, make_record)
        self._run(db_path)
        before = RecommendationRepository(db_path).list_active(SCOPE)[0]

        UsageRepository(db_path).insert_usage_records([
            make_record(days_ago=-0.05, metrics=cpu(12.0), cost=Decimal("102.00"))
        ])
        summary = self._run(db_path, now=NOW + timedelta(hours=2))

        after = RecommendationRepository(db_path).get(before.id)
        assert summary.unchanged == 1
        assert after.estimated_savings.amount == Decimal("50.00")
        assert after.updated_at == before.updated_at

    def test_material_change_refreshes_in_place(self, db_path, make_record):
        """A savings move above 5% updates the same recommendation."""
        self._seed_underused(db_path, make_record)
        self._run(db_path)
        before = RecommendationRepository(db_path).list_active(SCOPE)[0]

        UsageRepository(db_path).insert_usage_records([
            make_record(days_ago=-0.05, metrics=cpu(12.0), cost=Decimal("130.00"))
        ])
        summary = self._run(db_path, now=NOW + timedelta(hours=2))

        assert summary.updated == 1
        assert summary.created == 0
        after = RecommendationRepository(db_path).get(before.id)
        assert after.estimated_savings.amount == Decimal("65.00")
        assert after.created_at == before.created_at
        assert after.status == RecommendationStatus.PENDING

    def test_dismissed_condition_recurring_creates_fresh_recommendation(self, db_path, make_record):
        self._seed_underused(db_path, make_record)
        self._run(db_path)
        repo = RecommendationRepository(db_path)
        first = repo.list_active(SCOPE)[0]
        dismiss(repo, first.id, "alice", "Needed for quarter close")

        summary = self._run(db_path, now=NOW + timedelta(hours=1))

        assert summary.created == 1
        active = repo.list_active(SCOPE)
        assert len(active) == 1
        assert active[0].id != first.id
        assert repo.get(first.id).status == RecommendationStatus.DISMISSED

    def test_only_scoped_account_is_evaluated(self, db_path, make_record):
        self._seed_underused(db_path, make_record)
        UsageRepository(db_path).insert_usage_records([
            make_record(resource_id="i-other", days_ago=day + 0.1, metrics=cpu(3.0),
                        owner_id="owner-2")
            for day in range(7)
        ])

        summary = self._run(db_path)

        assert summary.resources_evaluated == 1
        assert RecommendationRepository(db_path).list_active(AccountScope("owner-2", ACCOUNT)) == []

    def test_parallel_evaluation_matches_serial(self, db_path, make_record):
        for index in range(5):
            self._seed_underused(db_path, make_record, resource_id=f"i-{index}")

        summary = self._run(db_path, max_workers=4)

        assert summary.created == 5
        assert summary.resources_evaluated == 5

    def test_resources_without_recent_data_are_skipped(self, db_path, make_record):
        self._seed_underused(db_path, make_record, resource_id="i-old", days_ago=10)

        summary = self._run(db_path)

        assert summary.created == 0
        assert summary.skipped == 1
        assert summary.errors == 0


class TestRunEvaluationFailures:
    """Test error isolation and store failures with mocked stores."""

    def _records(self, make_record, resource_id="i-0abc", **kwargs):
        return [
            make_record(resource_id=resource_id, days_ago=day + 0.1, metrics=cpu(12.0), **kwargs)
            for day in range(7)
        ]

    def test_failing_resource_does_not_abort_batch(self, make_record):
        """A broken resource counts as an error; others still get written."""
        usage_store = MagicMock()
        usage_store.fetch_usage.return_value = (
            self._records(make_record, "i-bad") +
            self._records(make_record, "i-bad", owner_id="owner-2") +
            self._records(make_record, "i-good")
        )
        recommendation_store = MagicMock()
        recommendation_store.upsert_active.side_effect = lambda rec, _: (UpsertOutcome.CREATED, rec)

        summary = run_evaluation(SCOPE, usage_store, recommendation_store, now=NOW)

        assert summary.errors == 1
        assert summary.resources_evaluated == 2
        written = [call.args[0].resource_id for call in recommendation_store.upsert_active.call_args_list]
        assert written == ["i-good"]

    def test_store_failure_carries_partial_summary(self, make_record):
        usage_store = MagicMock()
        usage_store.fetch_usage.return_value = (
            self._records(make_record, "i-1") + self._records(make_record, "i-2")
        )
        recommendation_store = MagicMock()
        recommendation_store.upsert_active.side_effect = StoreFailure("disk I/O error")

        with pytest.raises(StoreFailure) as exc_info:
            run_evaluation(SCOPE, usage_store, recommendation_store, now=NOW)

        partial = exc_info.value.partial_summary
        assert partial is not None
        assert partial.created == 0
        assert partial.resources_evaluated == 1

    def test_usage_fetch_failure_propagates(self):
        usage_store = MagicMock()
        usage_store.fetch_usage.side_effect = StoreFailure("no such table: usage_record")

        with pytest.raises(StoreFailure) as exc_info:
            run_evaluation(SCOPE, usage_store, MagicMock(), now=NOW)

        assert exc_info.value.partial_summary.resources_evaluated == 0


class TestReconcile:
    """Test the material-change decision."""

    def test_keeps_identity_and_status(self, make_recommendation):
        existing = make_recommendation(savings="50.00", status=RecommendationStatus.IN_PROGRESS)
        candidate = make_recommendation(savings="60.00")

        refreshed = reconcile(existing, candidate)

        assert refreshed.id == existing.id
        assert refreshed.status == RecommendationStatus.IN_PROGRESS
        assert refreshed.estimated_savings.amount == Decimal("60.00")

    def test_change_at_threshold_is_not_material(self, make_recommendation):
        existing = make_recommendation(savings="100.00")

        assert reconcile(existing, make_recommendation(savings="105.00")) is None
        assert reconcile(existing, make_recommendation(savings="105.01")) is not None

    def test_kind_is_preserved(self, make_recommendation):
        existing = make_recommendation(kind=RecommendationKind.DELETE, savings="10.00")

        refreshed = reconcile(existing, make_recommendation(kind=RecommendationKind.DELETE, savings="20.00"))

        assert refreshed.kind == RecommendationKind.DELETE
