"""
Pricing calculations and rate management.

Static price table used to estimate resource cost when the provider
does not report one.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple
from decimal import Decimal, ROUND_HALF_UP

from cost_advisor.storage.models import Cost, CostPeriod, Service, UsageRecord


HOURS_PER_MONTH = Decimal("730")
BYTES_PER_GB = Decimal(1024 ** 3)

# Rate applied to instance classes missing from the table
DEFAULT_HOURLY_RATE = Decimal("0.10")

# Every price table rate is in US dollars
ESTIMATE_CURRENCY = "USD"

# Statuses under which a resource accrues compute charges
ACTIVE_STATUSES = frozenset({"running", "available", "active"})


@dataclass(frozen=True)
class PriceTable:
    """Fixed hourly USD rates keyed by (service, class key)."""
    hourly_rates: Mapping[Tuple[Service, str], Decimal]
    storage_rates_per_gb: Mapping[str, Decimal]
    default_hourly: Decimal = DEFAULT_HOURLY_RATE
    default_storage_class: str = "standard"

    def get_hourly_rate(self, service: Service, class_key: Optional[str]) -> Decimal:
        """Get the hourly rate for a class, falling back to the default rate.

        Args:
            service: Service the class belongs to
            class_key: Instance class identifier, e.g. ``t3.micro``

        Returns:
            Hourly rate in USD
        """
        if class_key is None:
            return self.default_hourly
        return self.hourly_rates.get((service, class_key), self.default_hourly)

    def get_storage_rate(self, storage_class: Optional[str]) -> Decimal:
        """Get the per-GB-month rate for a storage class."""
        key = (storage_class or self.default_storage_class).lower()
        if key not in self.storage_rates_per_gb:
            key = self.default_storage_class
        return self.storage_rates_per_gb[key]

    def with_overrides(
        self,
        hourly_rates: Optional[Dict[Tuple[Service, str], Decimal]] = None,
        default_hourly: Optional[Decimal] = None
    ) -> "PriceTable":
        """Build a new table with some rates replaced; this table is untouched."""
        merged = dict(self.hourly_rates)
        merged.update(hourly_rates or {})
        return PriceTable(
            hourly_rates=merged,
            storage_rates_per_gb=dict(self.storage_rates_per_gb),
            default_hourly=default_hourly if default_hourly is not None else self.default_hourly,
            default_storage_class=self.default_storage_class
        )


PRICE_TABLE = PriceTable(
    hourly_rates={
        (Service.COMPUTE, "t3.nano"): Decimal("0.0052"),
        (Service.COMPUTE, "t3.micro"): Decimal("0.0104"),
        (Service.COMPUTE, "t3.small"): Decimal("0.0208"),
        (Service.COMPUTE, "t3.medium"): Decimal("0.0416"),
        (Service.COMPUTE, "t3.large"): Decimal("0.0832"),
        (Service.COMPUTE, "m5.large"): Decimal("0.096"),
        (Service.COMPUTE, "m5.xlarge"): Decimal("0.192"),
        (Service.COMPUTE, "c5.large"): Decimal("0.085"),
        (Service.COMPUTE, "c5.xlarge"): Decimal("0.17"),
        (Service.COMPUTE, "r5.large"): Decimal("0.126"),
        (Service.COMPUTE, "r5.xlarge"): Decimal("0.252"),
        (Service.RELATIONAL_DB, "db.t3.micro"): Decimal("0.017"),
        (Service.RELATIONAL_DB, "db.t3.small"): Decimal("0.034"),
        (Service.RELATIONAL_DB, "db.t3.medium"): Decimal("0.068"),
        (Service.RELATIONAL_DB, "db.m5.large"): Decimal("0.171"),
        (Service.RELATIONAL_DB, "db.m5.xlarge"): Decimal("0.342"),
        (Service.RELATIONAL_DB, "db.r5.large"): Decimal("0.216"),
        (Service.RELATIONAL_DB, "db.r5.xlarge"): Decimal("0.432"),
    },
    storage_rates_per_gb={
        "standard": Decimal("0.023"),
        "standard-ia": Decimal("0.0125"),
        "glacier": Decimal("0.004"),
        "glacier-deep-archive": Decimal("0.00099"),
    }
)


def is_active_status(runtime_status: Optional[str]) -> bool:
    return (runtime_status or "").lower() in ACTIVE_STATUSES


def estimate_hourly_cost(
    service: Service,
    class_key: Optional[str],
    is_active: bool,
    table: PriceTable = PRICE_TABLE
) -> Decimal:
    """Estimate the hourly cost of a resource.

    Stopped or terminated resources cost nothing; unknown classes use
    the table's default rate rather than failing.

    Args:
        service: Service of the resource
        class_key: Instance class identifier
        is_active: Whether the resource is currently running
        table: Price table to read rates from

    Returns:
        Hourly cost in USD
    """
    if not is_active:
        return Decimal("0")
    return table.get_hourly_rate(service, class_key)


def estimate_monthly_storage_cost(
    storage_class: Optional[str],
    size_bytes: float,
    table: PriceTable = PRICE_TABLE
) -> Decimal:
    """Estimate the monthly cost of stored bytes in a storage class."""
    if size_bytes <= 0:
        return Decimal("0")
    size_gb = Decimal(str(size_bytes)) / BYTES_PER_GB
    return round_money(size_gb * table.get_storage_rate(storage_class))


def to_monthly(cost: Cost) -> Decimal:
    """Normalize a cost amount to a monthly figure."""
    if cost.period == CostPeriod.HOURLY:
        return cost.amount * HOURS_PER_MONTH
    return cost.amount


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half up."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def resolve_monthly_cost(
    record: UsageRecord,
    size_bytes: Optional[float] = None,
    table: PriceTable = PRICE_TABLE
) -> Cost:
    """Monthly cost of a resource as seen in one observation.

    The provider-reported cost wins. The estimator is used only when
    the cost is missing, or reported as zero while the resource is
    active, so a running resource never feeds a "$0" cost into savings.
    Buckets bill for stored bytes whatever their status, so object
    storage always counts as active here.

    Args:
        record: Observation to read cost, class and status from
        size_bytes: Stored bytes, required to estimate object storage
        table: Price table used for the estimate

    Returns:
        Monthly Cost, in the reported currency or in USD when estimated
    """
    active = record.service == Service.OBJECT_STORAGE or is_active_status(record.runtime_status)
    if record.cost is not None:
        reported = to_monthly(record.cost)
        if reported > 0 or not active:
            return Cost(round_money(reported), record.cost.currency, CostPeriod.MONTHLY)

    if record.service == Service.OBJECT_STORAGE:
        estimate = estimate_monthly_storage_cost(
            record.class_attributes.get("storageClass"),
            size_bytes or 0,
            table
        )
        return Cost(estimate, ESTIMATE_CURRENCY, CostPeriod.MONTHLY)

    hourly = estimate_hourly_cost(
        record.service,
        record.class_attributes.get("instanceType"),
        active,
        table
    )
    return Cost(round_money(hourly * HOURS_PER_MONTH), ESTIMATE_CURRENCY, CostPeriod.MONTHLY)
