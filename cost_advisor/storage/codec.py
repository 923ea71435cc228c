"""
Conversion between model objects and JSON-safe dictionaries.

Timestamps are UTC ISO-8601 strings and money amounts are decimal
strings, so no precision is lost on the way through the store.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .models import (
    Cost,
    CostPeriod,
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


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # Fixed width keeps stored timestamps lexically ordered
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def metric_to_dict(stats: MetricStats) -> Dict[str, Any]:
    return {
        "average": stats.average,
        "maximum": stats.maximum,
        "minimum": stats.minimum,
        "sample_count": stats.sample_count,
        "unit": stats.unit,
    }


def metric_from_dict(data: Dict[str, Any]) -> MetricStats:
    return MetricStats(
        average=float(data["average"]),
        maximum=float(data["maximum"]),
        minimum=float(data["minimum"]),
        sample_count=int(data["sample_count"]),
        unit=data.get("unit", "")
    )


def cost_to_dict(cost: Optional[Cost]) -> Optional[Dict[str, Any]]:
    if cost is None:
        return None
    return {"amount": _money(cost.amount), "currency": cost.currency, "period": cost.period.value}


def cost_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Cost]:
    if data is None:
        return None
    return Cost(
        amount=Decimal(data["amount"]),
        currency=data.get("currency", "USD"),
        period=CostPeriod(data.get("period", CostPeriod.MONTHLY.value))
    )


def usage_to_dict(record: UsageRecord) -> Dict[str, Any]:
    return {
        "owner_id": record.owner_id,
        "account_ref": record.account_ref,
        "resource_id": record.resource_id,
        "service": record.service.value,
        "region": record.region,
        "observed_at": format_timestamp(record.observed_at),
        "metrics": {name: metric_to_dict(m) for name, m in record.metrics.items()},
        "cost": cost_to_dict(record.cost),
        "class_attributes": dict(record.class_attributes),
        "runtime_status": record.runtime_status,
        "resource_type": record.resource_type,
        "tags": dict(record.tags),
    }


def usage_from_dict(data: Dict[str, Any]) -> UsageRecord:
    return UsageRecord(
        owner_id=data["owner_id"],
        account_ref=data["account_ref"],
        resource_id=data["resource_id"],
        service=Service(data["service"]),
        region=data["region"],
        observed_at=parse_timestamp(data["observed_at"]),
        metrics={name: metric_from_dict(m) for name, m in data.get("metrics", {}).items()},
        cost=cost_from_dict(data.get("cost")),
        class_attributes=dict(data.get("class_attributes", {})),
        runtime_status=data.get("runtime_status", ""),
        resource_type=data.get("resource_type", ""),
        tags=dict(data.get("tags", {}))
    )


def _state_to_dict(state: ResourceState) -> Dict[str, Any]:
    return {
        "class_key": state.class_key,
        "status": state.status,
        "monthly_cost": _money(state.monthly_cost),
        "currency": state.currency,
        "utilization": dict(state.utilization),
        "action": state.action,
    }


def _state_from_dict(data: Dict[str, Any]) -> ResourceState:
    return ResourceState(
        class_key=data.get("class_key"),
        status=data.get("status"),
        monthly_cost=_decimal(data.get("monthly_cost")),
        currency=data.get("currency", "USD"),
        utilization=dict(data.get("utilization", {})),
        action=data.get("action")
    )


def recommendation_to_dict(rec: Recommendation) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "owner_id": rec.owner_id,
        "account_ref": rec.account_ref,
        "resource_id": rec.resource_id,
        "service": rec.service.value,
        "region": rec.region,
        "kind": rec.kind.value,
        "title": rec.title,
        "description": rec.description,
        "current_state": _state_to_dict(rec.current_state),
        "proposed_state": _state_to_dict(rec.proposed_state),
        "estimated_savings": {
            "amount": _money(rec.estimated_savings.amount),
            "currency": rec.estimated_savings.currency,
            "period": rec.estimated_savings.period,
            "percentage": rec.estimated_savings.percentage,
        },
        "priority": rec.priority.value,
        "risk_level": rec.risk_level.value,
        "difficulty": rec.difficulty.value,
        "implementation_minutes": rec.implementation_minutes,
        "prerequisites": list(rec.prerequisites),
        "steps": [
            {
                "order": step.order,
                "description": step.description,
                "estimated_minutes": step.estimated_minutes,
                "command": step.command,
            }
            for step in rec.steps
        ],
        "status": rec.status.value,
        "metadata": {
            "source": rec.metadata.source,
            "confidence": rec.metadata.confidence,
            "data_point_count": rec.metadata.data_point_count,
            "algorithm_id": rec.metadata.algorithm_id,
            "last_calculated": format_timestamp(rec.metadata.last_calculated),
        },
        "created_at": format_timestamp(rec.created_at),
        "updated_at": format_timestamp(rec.updated_at),
        "started_at": format_timestamp(rec.started_at),
        "started_by": rec.started_by,
        "implemented_at": format_timestamp(rec.implemented_at),
        "implemented_by": rec.implemented_by,
        "dismissed_at": format_timestamp(rec.dismissed_at),
        "dismissed_by": rec.dismissed_by,
        "dismissal_reason": rec.dismissal_reason,
        "failed_at": format_timestamp(rec.failed_at),
        "failed_by": rec.failed_by,
        "failure_reason": rec.failure_reason,
    }


def recommendation_from_dict(data: Dict[str, Any]) -> Recommendation:
    savings = data["estimated_savings"]
    metadata = data["metadata"]
    return Recommendation(
        id=data["id"],
        owner_id=data["owner_id"],
        account_ref=data["account_ref"],
        resource_id=data["resource_id"],
        service=Service(data["service"]),
        region=data["region"],
        kind=RecommendationKind(data["kind"]),
        title=data["title"],
        description=data["description"],
        current_state=_state_from_dict(data["current_state"]),
        proposed_state=_state_from_dict(data["proposed_state"]),
        estimated_savings=Savings(
            amount=Decimal(savings["amount"]),
            percentage=float(savings["percentage"]),
            currency=savings.get("currency", "USD"),
            period=savings.get("period", "monthly")
        ),
        priority=Priority(data["priority"]),
        risk_level=RiskLevel(data["risk_level"]),
        difficulty=Difficulty(data["difficulty"]),
        prerequisites=list(data.get("prerequisites", [])),
        steps=[
            RemediationStep(
                order=step["order"],
                description=step["description"],
                estimated_minutes=step["estimated_minutes"],
                command=step.get("command")
            )
            for step in data.get("steps", [])
        ],
        status=RecommendationStatus(data["status"]),
        metadata=RecommendationMetadata(
            algorithm_id=metadata["algorithm_id"],
            confidence=float(metadata["confidence"]),
            data_point_count=int(metadata["data_point_count"]),
            last_calculated=parse_timestamp(metadata["last_calculated"]),
            source=metadata.get("source", "rule-based")
        ),
        created_at=parse_timestamp(data["created_at"]),
        updated_at=parse_timestamp(data["updated_at"]),
        started_at=parse_timestamp(data.get("started_at")),
        started_by=data.get("started_by"),
        implemented_at=parse_timestamp(data.get("implemented_at")),
        implemented_by=data.get("implemented_by"),
        dismissed_at=parse_timestamp(data.get("dismissed_at")),
        dismissed_by=data.get("dismissed_by"),
        dismissal_reason=data.get("dismissal_reason"),
        failed_at=parse_timestamp(data.get("failed_at")),
        failed_by=data.get("failed_by"),
        failure_reason=data.get("failure_reason")
    )
