"""
Unit tests for recommendation summaries.
"""

from decimal import Decimal

from cost_advisor.core.reporting import sort_for_display, status_counts, summarize, total_savings
from cost_advisor.storage.models import Priority, RecommendationStatus, Service, RecommendationKind


class TestReporting:
    """Test grouping and totals of recommendations."""

    def _portfolio(self, make_recommendation):
        return [
            make_recommendation(resource_id="i-1", savings="50.00", priority=Priority.HIGH),
            make_recommendation(resource_id="i-2", savings="30.00", priority=Priority.HIGH),
            make_recommendation(resource_id="i-3", savings="5.00", priority=Priority.CRITICAL),
            make_recommendation(resource_id="b-1", savings="8.00", priority=Priority.HIGH,
                                service=Service.OBJECT_STORAGE,
                                kind=RecommendationKind.STORAGE_TIER_CHANGE),
            make_recommendation(resource_id="i-4", savings="99.00",
                                status=RecommendationStatus.IMPLEMENTED),
        ]

    def test_summarize_groups_active_by_service_and_priority(self, make_recommendation):
        groups = summarize(self._portfolio(make_recommendation))

        assert [(g.service, g.priority, g.count) for g in groups] == [
            (Service.COMPUTE, Priority.CRITICAL, 1),
            (Service.COMPUTE, Priority.HIGH, 2),
            (Service.OBJECT_STORAGE, Priority.HIGH, 1),
        ]
        assert groups[1].total_savings == Decimal("80.00")

    def test_total_savings_excludes_terminal(self, make_recommendation):
        assert total_savings(self._portfolio(make_recommendation)) == {"USD": Decimal("93.00")}

    def test_sort_for_display(self, make_recommendation):
        ordered = sort_for_display(self._portfolio(make_recommendation))

        assert [r.resource_id for r in ordered][:3] == ["i-3", "i-4", "i-1"]

    def test_status_counts(self, make_recommendation):
        counts = status_counts(self._portfolio(make_recommendation))

        assert counts[RecommendationStatus.PENDING] == 4
        assert counts[RecommendationStatus.IMPLEMENTED] == 1
        assert counts[RecommendationStatus.DISMISSED] == 0

    def test_empty_input(self):
        assert summarize([]) == []
        assert total_savings([]) == {}

    def test_currencies_are_never_added_together(self, make_recommendation):
        """USD and EUR savings are totalled and grouped separately."""
        recommendations = [
            make_recommendation(resource_id="i-1", savings="50.00"),
            make_recommendation(resource_id="i-2", savings="50.00", currency="EUR"),
            make_recommendation(resource_id="i-3", savings="20.00", currency="EUR"),
        ]

        totals = total_savings(recommendations)
        groups = summarize(recommendations)

        assert totals == {"EUR": Decimal("70.00"), "USD": Decimal("50.00")}
        assert [(g.currency, g.count, g.total_savings) for g in groups] == [
            ("EUR", 2, Decimal("70.00")),
            ("USD", 1, Decimal("50.00")),
        ]
