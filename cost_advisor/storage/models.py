"""
Data models for storage layer.

Defines usage snapshots, recommendations and the values they carry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional


class Service(Enum):
    """Cloud services tracked by the advisor."""
    COMPUTE = "COMPUTE"
    OBJECT_STORAGE = "OBJECT_STORAGE"
    RELATIONAL_DB = "RELATIONAL_DB"


class CostPeriod(Enum):
    """Billing period a cost amount refers to."""
    HOURLY = "hourly"
    MONTHLY = "monthly"


class RecommendationKind(Enum):
    """Kinds of cost optimization a rule can propose."""
    RESIZE_DOWN = "RESIZE_DOWN"
    RESIZE_UP = "RESIZE_UP"
    STOP = "STOP"
    DELETE = "DELETE"
    STORAGE_TIER_CHANGE = "STORAGE_TIER_CHANGE"
    RESERVED_CAPACITY = "RESERVED_CAPACITY"
    SPOT_CANDIDATE = "SPOT_CANDIDATE"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordering weight, higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class RecommendationStatus(Enum):
    """Lifecycle states of a recommendation."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    IMPLEMENTED = "implemented"
    DISMISSED = "dismissed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    RecommendationStatus.IMPLEMENTED,
    RecommendationStatus.DISMISSED,
    RecommendationStatus.FAILED,
})

ACTIVE_STATUSES = frozenset(set(RecommendationStatus) - TERMINAL_STATUSES)

# Bounds carried over from the persisted recommendation schema
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000


@dataclass(frozen=True)
class AccountScope:
    """Tenant scope every read and write is restricted to."""
    owner_id: str
    account_ref: str

    def __post_init__(self):
        if not self.owner_id or not self.owner_id.strip():
            raise ValueError("owner_id is required and cannot be empty")
        if not self.account_ref or not self.account_ref.strip():
            raise ValueError("account_ref is required and cannot be empty")


@dataclass(frozen=True)
class MetricStats:
    """Statistics for one metric as reported for a single observation."""
    average: float
    maximum: float
    minimum: float
    sample_count: int
    unit: str = ""

    def __post_init__(self):
        if self.sample_count < 0:
            raise ValueError("sample_count cannot be negative")


@dataclass(frozen=True)
class Cost:
    """A money amount for a billing period."""
    amount: Decimal
    currency: str = "USD"
    period: CostPeriod = CostPeriod.MONTHLY

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("cost amount cannot be negative")
        if len(self.currency) != 3:
            raise ValueError(f"currency must be an ISO 4217 code, got {self.currency!r}")


@dataclass(frozen=True)
class UsageRecord:
    """Point-in-time usage snapshot of one resource.

    Written by the ingestion side, read-only to the engine.
    """
    owner_id: str
    account_ref: str
    resource_id: str
    service: Service
    region: str
    observed_at: datetime
    metrics: Dict[str, MetricStats] = field(default_factory=dict)
    cost: Optional[Cost] = None
    class_attributes: Dict[str, str] = field(default_factory=dict)
    runtime_status: str = ""
    resource_type: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.observed_at.tzinfo is None:
            raise ValueError("observed_at must be timezone-aware (UTC)")

    @property
    def scope(self) -> AccountScope:
        return AccountScope(self.owner_id, self.account_ref)


@dataclass(frozen=True)
class Savings:
    """Projected monthly savings of a recommendation."""
    amount: Decimal
    percentage: float
    currency: str = "USD"
    period: str = "monthly"

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("savings amount cannot be negative")
        if not 0.0 <= self.percentage <= 100.0:
            raise ValueError("savings percentage must be between 0 and 100")


@dataclass(frozen=True)
class ResourceState:
    """Snapshot of a resource configuration at decision time."""
    class_key: Optional[str] = None
    status: Optional[str] = None
    monthly_cost: Optional[Decimal] = None
    currency: str = "USD"
    utilization: Dict[str, float] = field(default_factory=dict)
    action: Optional[str] = None


@dataclass(frozen=True)
class RemediationStep:
    order: int
    description: str
    estimated_minutes: int
    command: Optional[str] = None


@dataclass(frozen=True)
class RecommendationMetadata:
    """Provenance of a generated recommendation."""
    algorithm_id: str
    confidence: float
    data_point_count: int
    last_calculated: datetime
    source: str = "rule-based"

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        if self.data_point_count < 0:
            raise ValueError("data_point_count cannot be negative")


@dataclass(frozen=True)
class Recommendation:
    """Actionable cost optimization for one resource.

    Values are immutable; lifecycle changes produce a new instance
    which the store writes with a compare-and-swap on status.
    """
    id: str
    owner_id: str
    account_ref: str
    resource_id: str
    service: Service
    region: str
    kind: RecommendationKind
    title: str
    description: str
    current_state: ResourceState
    proposed_state: ResourceState
    estimated_savings: Savings
    priority: Priority
    risk_level: RiskLevel
    difficulty: Difficulty
    steps: List[RemediationStep]
    metadata: RecommendationMetadata
    created_at: datetime
    updated_at: datetime
    status: RecommendationStatus = RecommendationStatus.PENDING
    prerequisites: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None
    implemented_at: Optional[datetime] = None
    implemented_by: Optional[str] = None
    dismissed_at: Optional[datetime] = None
    dismissed_by: Optional[str] = None
    dismissal_reason: Optional[str] = None
    failed_at: Optional[datetime] = None
    failed_by: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def scope(self) -> AccountScope:
        return AccountScope(self.owner_id, self.account_ref)

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    @property
    def implementation_minutes(self) -> int:
        """Total estimated effort of the remediation plan."""
        return sum(step.estimated_minutes for step in self.steps)
