"""
Shared fixtures for advisor tests.
"""

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from cost_advisor.storage.models import (
    Cost,
    Difficulty,
    MetricStats,
    Priority,
    Recommendation,
    RecommendationKind,
    RecommendationMetadata,
    RecommendationStatus,
    RemediationStep,
    ResourceState,
    RiskLevel,
    Savings,
    Service,
    UsageRecord,
)
from cost_advisor.storage.repository import initialize_schema

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
OWNER = "owner-1"
ACCOUNT = "111122223333"


@pytest.fixture
def db_path(tmp_path):
    """Path to an initialized SQLite database."""
    path = os.path.join(str(tmp_path), "test.db")
    initialize_schema(path)
    return path


@pytest.fixture
def make_record():
    """Factory for usage records of the default tenant."""
    def _make(
        resource_id="i-0abc",
        service=Service.COMPUTE,
        days_ago=0.0,
        metrics=None,
        cost=Decimal("100.00"),
        status="running",
        class_attributes=None,
        owner_id=OWNER,
        account_ref=ACCOUNT,
        currency="USD"
    ):
        return UsageRecord(
            owner_id=owner_id,
            account_ref=account_ref,
            resource_id=resource_id,
            service=service,
            region="us-east-1",
            observed_at=NOW - timedelta(days=days_ago),
            metrics=metrics or {},
            cost=Cost(cost, currency) if cost is not None else None,
            class_attributes=class_attributes or {},
            runtime_status=status
        )
    return _make


@pytest.fixture
def make_recommendation():
    """Factory for pending recommendations of the default tenant."""
    counter = {"n": 0}

    def _make(
        resource_id="i-0abc",
        kind=RecommendationKind.RESIZE_DOWN,
        service=Service.COMPUTE,
        savings="50.00",
        priority=Priority.HIGH,
        status=RecommendationStatus.PENDING,
        owner_id=OWNER,
        account_ref=ACCOUNT,
        title=None,
        currency="USD"
    ):
        counter["n"] += 1
        return Recommendation(
            id=f"rec-{counter['n']}",
            owner_id=owner_id,
            account_ref=account_ref,
            resource_id=resource_id,
            service=service,
            region="us-east-1",
            kind=kind,
            title=title or f"Downsize {resource_id}",
            description="Average CPU is low.",
            current_state=ResourceState(class_key="m5.large", status="running",
                                        monthly_cost=Decimal("100.00")),
            proposed_state=ResourceState(monthly_cost=Decimal("50.00"), action="Downsize"),
            estimated_savings=Savings(amount=Decimal(savings), percentage=50.0, currency=currency),
            priority=priority,
            risk_level=RiskLevel.LOW,
            difficulty=Difficulty.MEDIUM,
            steps=[RemediationStep(1, "Stop the instance", 5)],
            metadata=RecommendationMetadata(
                algorithm_id="compute-underutilized",
                confidence=0.9,
                data_point_count=150,
                last_calculated=NOW
            ),
            created_at=NOW,
            updated_at=NOW,
            status=status
        )
    return _make


def cpu(average, samples=24):
    """CPU utilization metric with a fixed spread."""
    return {"cpuUtilization": MetricStats(average, average + 10, max(average - 10, 0), samples, "Percent")}
