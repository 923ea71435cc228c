"""
Recommendation rules.

Each rule inspects the aggregated metrics and cost of one resource and
decides whether a single kind of optimization applies.

Rules:
- compute-underutilized: running instance with average CPU below threshold
- compute-idle-stopped: instance stopped with no running observation for days
- storage-tier-change: large bucket still in the standard storage class
- database-underutilized: running database with few connections
- reserved-capacity: steadily running resource with stable utilization
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, FrozenSet, List, Optional

from cost_advisor.config.loader import EngineConfig
from .aggregation import AggregationResult
from .exceptions import DataUnavailable
from .pricing import (
    BYTES_PER_GB,
    ESTIMATE_CURRENCY,
    HOURS_PER_MONTH,
    estimate_hourly_cost,
    is_active_status,
    resolve_monthly_cost,
    round_money,
    to_monthly,
)
from cost_advisor.storage.models import (
    Difficulty,
    Priority,
    RecommendationKind,
    RemediationStep,
    ResourceState,
    RiskLevel,
    Service,
)


# Savings share of current cost above which a change is urgent
CRITICAL_SAVINGS_RATIO = Decimal("0.5")
HIGH_SAVINGS_RATIO = Decimal("0.3")

DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule may read; rules never perform I/O."""
    resource_id: str
    service: Service
    recent: AggregationResult
    history: AggregationResult
    now: datetime
    config: EngineConfig


@dataclass(frozen=True)
class RuleFinding:
    """Decision of a rule that fired, before it becomes a recommendation."""
    rule_id: str
    kind: RecommendationKind
    title: str
    description: str
    current_cost: Decimal
    savings: Decimal
    current_state: ResourceState
    proposed_state: ResourceState
    risk_level: RiskLevel
    difficulty: Difficulty
    steps: List[RemediationStep]
    confidence: float
    data_point_count: int
    prerequisites: List[str] = field(default_factory=list)
    currency: str = ESTIMATE_CURRENCY

    @property
    def savings_ratio(self) -> Decimal:
        if self.current_cost <= 0:
            return Decimal("0")
        return self.savings / self.current_cost

    @property
    def savings_percentage(self) -> float:
        """Savings as a 0-100 share of the current cost."""
        percentage = float(self.savings_ratio * 100)
        return round(min(max(percentage, 0.0), 100.0), 2)

    @property
    def priority(self) -> Priority:
        return assign_priority(self.savings, self.current_cost, self.risk_level)


@dataclass(frozen=True)
class Rule:
    rule_id: str
    kind: RecommendationKind
    services: FrozenSet[Service]
    check: Callable[[RuleContext], Optional[RuleFinding]]

    def applies_to(self, service: Service) -> bool:
        return service in self.services


def assign_priority(savings: Decimal, current_cost: Decimal, risk_level: RiskLevel) -> Priority:
    """Derive priority from the savings share and risk.

    ``LOW`` is never assigned automatically; it is left for manual
    downgrades.
    """
    if current_cost <= 0:
        return Priority.MEDIUM
    ratio = savings / current_cost
    if ratio > CRITICAL_SAVINGS_RATIO and risk_level == RiskLevel.LOW:
        return Priority.CRITICAL
    if ratio > HIGH_SAVINGS_RATIO:
        return Priority.HIGH
    return Priority.MEDIUM


def _savings(cost: Decimal, multiplier: float) -> Decimal:
    return round_money(cost * Decimal(str(multiplier)))


def _confidence(samples: int, expected: int) -> float:
    if expected <= 0:
        return 0.0
    return round(min(1.0, samples / expected), 2)


def _require_recent(ctx: RuleContext, rule_id: str):
    if not ctx.recent.has_data:
        raise DataUnavailable("no usage records in lookback window", ctx.resource_id, rule_id)
    return ctx.recent.latest


def check_compute_underutilized(ctx: RuleContext) -> Optional[RuleFinding]:
    rule_id = "compute-underutilized"
    latest = _require_recent(ctx, rule_id)
    if latest.runtime_status.lower() != "running":
        return None

    cpu = ctx.recent.get("cpuUtilization")
    if cpu is None:
        raise DataUnavailable("cpuUtilization has no samples", ctx.resource_id, rule_id)

    threshold = ctx.config.thresholds.cpu_percent
    if cpu.average >= threshold:
        return None

    instance_type = latest.class_attributes.get("instanceType")
    monthly = resolve_monthly_cost(latest, table=ctx.config.price_table)
    current_cost = monthly.amount
    savings = _savings(current_cost, ctx.config.savings.resize_down)

    return RuleFinding(
        rule_id=rule_id,
        kind=RecommendationKind.RESIZE_DOWN,
        title=f"Downsize underutilized compute instance {ctx.resource_id}",
        description=(
            f"Instance {ctx.resource_id} has average CPU utilization of "
            f"{cpu.average:.1f}%, which is below the {threshold:.0f}% threshold. "
            "Consider moving to a smaller instance type."
        ),
        current_cost=current_cost,
        savings=savings,
        current_state=ResourceState(
            class_key=instance_type,
            status=latest.runtime_status,
            monthly_cost=current_cost,
            currency=monthly.currency,
            utilization={"cpu": round(cpu.average, 2)}
        ),
        proposed_state=ResourceState(
            monthly_cost=current_cost - savings,
            currency=monthly.currency,
            action="Downsize to a smaller instance type"
        ),
        currency=monthly.currency,
        risk_level=RiskLevel.LOW,
        difficulty=Difficulty.MEDIUM,
        prerequisites=["Stop instance", "Create image backup"],
        steps=[
            RemediationStep(1, "Stop the instance", 5,
                            f"aws ec2 stop-instances --instance-ids {ctx.resource_id}"),
            RemediationStep(2, "Create an image backup", 10,
                            f"aws ec2 create-image --instance-id {ctx.resource_id} "
                            f"--name backup-{ctx.resource_id}"),
            RemediationStep(3, "Launch a smaller instance from the image", 15),
        ],
        confidence=_confidence(cpu.sample_count, ctx.config.windows.lookback_days * 24),
        data_point_count=cpu.sample_count
    )


def check_compute_idle_stopped(ctx: RuleContext) -> Optional[RuleFinding]:
    rule_id = "compute-idle-stopped"
    latest = _require_recent(ctx, rule_id)
    if latest.runtime_status.lower() != "stopped":
        return None

    history = ctx.history.records
    running = [r for r in history if r.runtime_status.lower() == "running"]
    if running:
        idle_since = running[-1].observed_at
    else:
        idle_since = history[0].observed_at

    idle_days = (ctx.now - idle_since).total_seconds() / 86400
    if idle_days <= ctx.config.thresholds.idle_days:
        return None

    instance_type = latest.class_attributes.get("instanceType")
    running_costs = [r.cost for r in running if r.cost is not None and r.cost.amount > 0]
    if running_costs:
        cost_if_running = round_money(to_monthly(running_costs[-1]))
        currency = running_costs[-1].currency
    else:
        hourly = estimate_hourly_cost(
            Service.COMPUTE, instance_type, True, ctx.config.price_table
        )
        cost_if_running = round_money(hourly * HOURS_PER_MONTH)
        currency = ESTIMATE_CURRENCY

    idle_share = Decimal(str(round(min(idle_days, DAYS_PER_MONTH) / DAYS_PER_MONTH, 4)))
    savings = round_money(cost_if_running * idle_share)

    return RuleFinding(
        rule_id=rule_id,
        kind=RecommendationKind.DELETE,
        title=f"Remove idle stopped instance {ctx.resource_id}",
        description=(
            f"Instance {ctx.resource_id} has not been observed running for "
            f"{idle_days:.0f} days. Snapshot its volumes and terminate it, or "
            "restart it if it is still needed."
        ),
        current_cost=cost_if_running,
        savings=savings,
        current_state=ResourceState(
            class_key=instance_type,
            status=latest.runtime_status,
            monthly_cost=cost_if_running,
            currency=currency
        ),
        proposed_state=ResourceState(
            status="terminated",
            monthly_cost=Decimal("0.00"),
            currency=currency,
            action="Terminate instance after backup"
        ),
        currency=currency,
        risk_level=RiskLevel.HIGH,
        difficulty=Difficulty.EASY,
        prerequisites=["Confirm instance is no longer needed"],
        steps=[
            RemediationStep(1, "Confirm with the owner that the instance is unused", 10),
            RemediationStep(2, "Create an image backup", 10,
                            f"aws ec2 create-image --instance-id {ctx.resource_id} "
                            f"--name final-{ctx.resource_id}"),
            RemediationStep(3, "Terminate the instance", 5,
                            f"aws ec2 terminate-instances --instance-ids {ctx.resource_id}"),
        ],
        confidence=_confidence(ctx.history.record_count, int(ctx.config.thresholds.idle_days)),
        data_point_count=ctx.history.record_count
    )


def check_storage_tier_change(ctx: RuleContext) -> Optional[RuleFinding]:
    rule_id = "storage-tier-change"
    latest = _require_recent(ctx, rule_id)
    storage_class = latest.class_attributes.get("storageClass", "")
    if storage_class.lower() != "standard":
        return None

    size = ctx.recent.get("storageSizeBytes")
    if size is None:
        raise DataUnavailable("storageSizeBytes has no samples", ctx.resource_id, rule_id)

    size_gb = Decimal(str(size.average)) / BYTES_PER_GB
    if size_gb <= Decimal(str(ctx.config.thresholds.storage_gb)):
        return None

    monthly = resolve_monthly_cost(latest, size.average, ctx.config.price_table)
    current_cost = monthly.amount
    savings = _savings(current_cost, ctx.config.savings.storage_tier)

    return RuleFinding(
        rule_id=rule_id,
        kind=RecommendationKind.STORAGE_TIER_CHANGE,
        title=f"Move large bucket {ctx.resource_id} to infrequent access",
        description=(
            f"Bucket {ctx.resource_id} holds {size_gb:.2f} GB in the standard "
            "storage class. Moving infrequently accessed data to the "
            "infrequent-access tier lowers storage cost."
        ),
        current_cost=current_cost,
        savings=savings,
        current_state=ResourceState(
            class_key=storage_class,
            status=latest.runtime_status,
            monthly_cost=current_cost,
            currency=monthly.currency,
            utilization={"storage_gb": float(round(size_gb, 2))}
        ),
        proposed_state=ResourceState(
            class_key="standard-ia",
            monthly_cost=current_cost - savings,
            currency=monthly.currency,
            action="Change storage class to infrequent access"
        ),
        currency=monthly.currency,
        risk_level=RiskLevel.LOW,
        difficulty=Difficulty.EASY,
        prerequisites=["Verify data access patterns"],
        steps=[
            RemediationStep(1, "Verify data access patterns", 5),
            RemediationStep(2, "Change the storage class", 10,
                            f"aws s3 cp s3://{ctx.resource_id} s3://{ctx.resource_id} "
                            "--storage-class STANDARD_IA --recursive"),
        ],
        confidence=_confidence(size.sample_count, ctx.config.windows.lookback_days),
        data_point_count=size.sample_count
    )


def check_database_underutilized(ctx: RuleContext) -> Optional[RuleFinding]:
    rule_id = "database-underutilized"
    latest = _require_recent(ctx, rule_id)
    if not is_active_status(latest.runtime_status):
        return None

    connections = ctx.recent.get("databaseConnections")
    if connections is None:
        raise DataUnavailable("databaseConnections has no samples", ctx.resource_id, rule_id)

    threshold = ctx.config.thresholds.db_connections
    if connections.average >= threshold:
        return None

    instance_class = latest.class_attributes.get("instanceType")
    monthly = resolve_monthly_cost(latest, table=ctx.config.price_table)
    current_cost = monthly.amount
    savings = _savings(current_cost, ctx.config.savings.resize_down)

    return RuleFinding(
        rule_id=rule_id,
        kind=RecommendationKind.RESIZE_DOWN,
        title=f"Downsize underused database {ctx.resource_id}",
        description=(
            f"Database {ctx.resource_id} averages {connections.average:.1f} "
            f"connections, below the threshold of {threshold:.0f}. "
            "Consider a smaller instance class."
        ),
        current_cost=current_cost,
        savings=savings,
        current_state=ResourceState(
            class_key=instance_class,
            status=latest.runtime_status,
            monthly_cost=current_cost,
            currency=monthly.currency,
            utilization={"connections": round(connections.average, 2)}
        ),
        proposed_state=ResourceState(
            monthly_cost=current_cost - savings,
            currency=monthly.currency,
            action="Modify to a smaller instance class"
        ),
        currency=monthly.currency,
        risk_level=RiskLevel.MEDIUM,
        difficulty=Difficulty.MEDIUM,
        prerequisites=["Take a manual snapshot", "Schedule a maintenance window"],
        steps=[
            RemediationStep(1, "Take a manual snapshot", 15,
                            f"aws rds create-db-snapshot --db-instance-identifier {ctx.resource_id} "
                            f"--db-snapshot-identifier pre-resize-{ctx.resource_id}"),
            RemediationStep(2, "Modify the instance class in the maintenance window", 30),
            RemediationStep(3, "Verify application connectivity", 15),
        ],
        confidence=_confidence(connections.sample_count, ctx.config.windows.lookback_days * 24),
        data_point_count=connections.sample_count
    )


def check_reserved_capacity(ctx: RuleContext) -> Optional[RuleFinding]:
    rule_id = "reserved-capacity"
    latest = _require_recent(ctx, rule_id)
    history = ctx.history.records
    if not all(is_active_status(r.runtime_status) for r in history):
        return None

    running_days = (ctx.now - history[0].observed_at).total_seconds() / 86400
    if running_days < ctx.config.thresholds.sustained_days:
        return None

    cpu = ctx.history.get("cpuUtilization")
    if cpu is None:
        raise DataUnavailable("cpuUtilization has no samples in history", ctx.resource_id, rule_id)
    if cpu.stddev > ctx.config.thresholds.reserved_max_stddev:
        return None

    class_key = latest.class_attributes.get("instanceType")
    monthly = resolve_monthly_cost(latest, table=ctx.config.price_table)
    current_cost = monthly.amount
    savings = _savings(current_cost, ctx.config.savings.reserved)

    return RuleFinding(
        rule_id=rule_id,
        kind=RecommendationKind.RESERVED_CAPACITY,
        title=f"Reserve capacity for steady resource {ctx.resource_id}",
        description=(
            f"Resource {ctx.resource_id} has run continuously for "
            f"{running_days:.0f} days with stable CPU utilization "
            f"(std dev {cpu.stddev:.1f} points). A capacity reservation "
            "lowers its hourly rate."
        ),
        current_cost=current_cost,
        savings=savings,
        current_state=ResourceState(
            class_key=class_key,
            status=latest.runtime_status,
            monthly_cost=current_cost,
            currency=monthly.currency,
            utilization={"cpu": round(cpu.average, 2), "cpu_stddev": round(cpu.stddev, 2)}
        ),
        proposed_state=ResourceState(
            class_key=class_key,
            monthly_cost=current_cost - savings,
            currency=monthly.currency,
            action="Purchase reserved capacity"
        ),
        currency=monthly.currency,
        risk_level=RiskLevel.MEDIUM,
        difficulty=Difficulty.EASY,
        prerequisites=["Confirm the resource is needed for the commitment term"],
        steps=[
            RemediationStep(1, "Confirm expected lifetime with the owner", 15),
            RemediationStep(2, "Purchase a reservation matching the instance class", 15),
        ],
        confidence=_confidence(cpu.record_count, int(ctx.config.thresholds.sustained_days)),
        data_point_count=cpu.sample_count
    )


RULES = (
    Rule("compute-underutilized", RecommendationKind.RESIZE_DOWN,
         frozenset({Service.COMPUTE}), check_compute_underutilized),
    Rule("compute-idle-stopped", RecommendationKind.DELETE,
         frozenset({Service.COMPUTE}), check_compute_idle_stopped),
    Rule("storage-tier-change", RecommendationKind.STORAGE_TIER_CHANGE,
         frozenset({Service.OBJECT_STORAGE}), check_storage_tier_change),
    Rule("database-underutilized", RecommendationKind.RESIZE_DOWN,
         frozenset({Service.RELATIONAL_DB}), check_database_underutilized),
    Rule("reserved-capacity", RecommendationKind.RESERVED_CAPACITY,
         frozenset({Service.COMPUTE, Service.RELATIONAL_DB}), check_reserved_capacity),
)
