"""
Summaries of stored recommendations.

Grouping is done in memory so any store that can list recommendations
can back it. Amounts in different currencies are never added together.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from cost_advisor.storage.models import (
    Priority,
    Recommendation,
    RecommendationStatus,
    Service,
)


@dataclass(frozen=True)
class SummaryGroup:
    """Active recommendations of one service at one priority, in one currency."""
    service: Service
    priority: Priority
    currency: str
    count: int
    total_savings: Decimal


def summarize(recommendations: Iterable[Recommendation]) -> List[SummaryGroup]:
    """Group active recommendations by (service, priority, currency).

    Terminal recommendations are ignored. Groups are ordered by priority,
    most urgent first, then by total savings descending.
    """
    groups: Dict[Tuple[Service, Priority, str], List[Recommendation]] = {}
    for rec in recommendations:
        if not rec.is_active:
            continue
        key = (rec.service, rec.priority, rec.estimated_savings.currency)
        groups.setdefault(key, []).append(rec)

    result = [
        SummaryGroup(
            service=service,
            priority=priority,
            currency=currency,
            count=len(recs),
            total_savings=sum((r.estimated_savings.amount for r in recs), Decimal("0"))
        )
        for (service, priority, currency), recs in groups.items()
    ]
    result.sort(key=lambda g: (-g.priority.rank, -g.total_savings, g.service.value, g.currency))
    return result


def sort_for_display(recommendations: Iterable[Recommendation]) -> List[Recommendation]:
    """Order recommendations by priority, then savings, both descending."""
    return sorted(
        recommendations,
        key=lambda r: (-r.priority.rank, -r.estimated_savings.amount)
    )


def status_counts(recommendations: Iterable[Recommendation]) -> Dict[RecommendationStatus, int]:
    counts = {status: 0 for status in RecommendationStatus}
    for rec in recommendations:
        counts[rec.status] += 1
    return counts


def total_savings(recommendations: Iterable[Recommendation]) -> Dict[str, Decimal]:
    """Estimated monthly savings of active recommendations, per currency.

    Returns:
        Mapping of ISO currency code to total, ordered by currency code
    """
    totals: Dict[str, Decimal] = {}
    for rec in recommendations:
        if not rec.is_active:
            continue
        currency = rec.estimated_savings.currency
        totals[currency] = totals.get(currency, Decimal("0")) + rec.estimated_savings.amount
    return dict(sorted(totals.items()))
