"""
Recommendation generation.

Runs every applicable rule against each resource of an account and
reconciles the results with the recommendations already stored.

Evaluation of one resource is pure: it reads only the records passed in
and never touches the store, so distinct resources can be evaluated in
parallel. Store writes happen afterwards, one atomic upsert per
(resource, kind).
"""

import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from cost_advisor.config.loader import EngineConfig
from .aggregation import aggregate_metrics
from .exceptions import DataUnavailable, StoreFailure, ValidationError
from .rules import RULES, RuleContext, RuleFinding
from cost_advisor.storage.models import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    AccountScope,
    Recommendation,
    RecommendationMetadata,
    Savings,
    Service,
    UsageRecord,
)
from cost_advisor.storage.repository import (
    RecommendationRepository,
    UpsertOutcome,
    UsageRepository,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class RuleSkip:
    """A rule, or a whole resource, that could not be evaluated."""
    resource_id: str
    rule_id: str
    reason: str


@dataclass
class ResourceEvaluation:
    """Outcome of evaluating every applicable rule for one resource."""
    resource_id: str
    service: Optional[Service] = None
    recommendations: List[Recommendation] = field(default_factory=list)
    skips: List[RuleSkip] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class EvaluationSummary:
    """Counts reported by a batch evaluation."""
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    resources_evaluated: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": self.errors,
            "resources_evaluated": self.resources_evaluated,
        }


def evaluate_resource(
    resource_id: str,
    records: List[UsageRecord],
    now: Optional[datetime] = None,
    config: Optional[EngineConfig] = None
) -> ResourceEvaluation:
    """Evaluate all applicable rules for one resource.

    Several rules may fire for the same resource, but each rule yields at
    most one recommendation. Rules lacking required data are skipped and
    reported, never raised.

    Args:
        resource_id: Resource to evaluate
        records: Observations of that resource covering the history window
        now: Evaluation time, defaults to the current UTC time
        config: Engine configuration, defaults to EngineConfig()

    Returns:
        ResourceEvaluation with built recommendations and skips

    Raises:
        ValueError: If records belong to another resource or tenant
    """
    config = config or EngineConfig()
    now = now or datetime.now(timezone.utc)

    if not records:
        skip = RuleSkip(resource_id, "*", "no usage records")
        _log_skip(skip)
        return ResourceEvaluation(resource_id=resource_id, skips=[skip])

    tenants = {(r.owner_id, r.account_ref) for r in records}
    if len(tenants) > 1:
        raise ValueError(f"Records for {resource_id} span multiple accounts")
    if any(r.resource_id != resource_id for r in records):
        raise ValueError(f"Records passed for {resource_id} include other resources")

    recent = aggregate_metrics(records, now, config.windows.lookback_days)
    history = aggregate_metrics(records, now, config.windows.history_days)

    if not recent.has_data:
        skip = RuleSkip(resource_id, "*", "no usage records in lookback window")
        _log_skip(skip)
        return ResourceEvaluation(resource_id=resource_id, skips=[skip])

    latest = recent.latest
    evaluation = ResourceEvaluation(resource_id=resource_id, service=latest.service)
    ctx = RuleContext(
        resource_id=resource_id,
        service=latest.service,
        recent=recent,
        history=history,
        now=now,
        config=config
    )

    for rule in RULES:
        if not rule.applies_to(latest.service):
            continue
        try:
            finding = rule.check(ctx)
        except DataUnavailable as e:
            skip = RuleSkip(resource_id, rule.rule_id, e.message)
            _log_skip(skip)
            evaluation.skips.append(skip)
            continue
        if finding is not None:
            evaluation.recommendations.append(build_recommendation(finding, latest, now))

    return evaluation


def build_recommendation(finding: RuleFinding, latest: UsageRecord, now: datetime) -> Recommendation:
    """Turn a rule finding into a pending recommendation."""
    return Recommendation(
        id=str(uuid.uuid4()),
        owner_id=latest.owner_id,
        account_ref=latest.account_ref,
        resource_id=latest.resource_id,
        service=latest.service,
        region=latest.region,
        kind=finding.kind,
        title=_truncate(finding.title, MAX_TITLE_LENGTH),
        description=_truncate(finding.description, MAX_DESCRIPTION_LENGTH),
        current_state=finding.current_state,
        proposed_state=finding.proposed_state,
        estimated_savings=Savings(
            amount=max(finding.savings, Decimal("0")),
            percentage=finding.savings_percentage,
            currency=finding.currency
        ),
        priority=finding.priority,
        risk_level=finding.risk_level,
        difficulty=finding.difficulty,
        prerequisites=list(finding.prerequisites),
        steps=list(finding.steps),
        metadata=RecommendationMetadata(
            algorithm_id=finding.rule_id,
            confidence=finding.confidence,
            data_point_count=finding.data_point_count,
            last_calculated=now
        ),
        created_at=now,
        updated_at=now
    )


def reconcile(
    existing: Recommendation,
    candidate: Recommendation,
    material_change: float = 0.05
) -> Optional[Recommendation]:
    """Decide how a fresh finding affects the active recommendation.

    The existing recommendation keeps its id, status and creation time.
    Its figures are refreshed only when savings moved by more than
    ``material_change`` (a fraction), otherwise it is left untouched.

    Returns:
        The refreshed recommendation, or None when nothing should change
    """
    old = existing.estimated_savings.amount
    new = candidate.estimated_savings.amount
    if old == 0:
        changed = new != 0
    else:
        changed = abs(new - old) / old > Decimal(str(material_change))
    if not changed:
        return None

    return replace(
        existing,
        title=candidate.title,
        description=candidate.description,
        current_state=candidate.current_state,
        proposed_state=candidate.proposed_state,
        estimated_savings=candidate.estimated_savings,
        priority=candidate.priority,
        risk_level=candidate.risk_level,
        difficulty=candidate.difficulty,
        prerequisites=candidate.prerequisites,
        steps=candidate.steps,
        metadata=candidate.metadata,
        updated_at=candidate.updated_at
    )


def run_evaluation(
    scope: AccountScope,
    usage_store: UsageRepository,
    recommendation_store: RecommendationRepository,
    config: Optional[EngineConfig] = None,
    now: Optional[datetime] = None,
    max_workers: int = 1
) -> EvaluationSummary:
    """Evaluate every resource of an account and store the results.

    One failing resource is counted in ``errors`` and never aborts the
    batch. A store failure stops the batch; the exception carries the
    counts reached so far in ``partial_summary``.

    Args:
        scope: Owner and account to evaluate
        usage_store: Source of usage records
        recommendation_store: Destination of recommendations
        config: Engine configuration, defaults to EngineConfig()
        now: Evaluation time, defaults to the current UTC time
        max_workers: Threads used for the pure evaluation step

    Returns:
        EvaluationSummary with created/updated/unchanged/skipped/error counts

    Raises:
        StoreFailure: If reading usage or writing recommendations fails
    """
    config = config or EngineConfig()
    now = now or datetime.now(timezone.utc)
    summary = EvaluationSummary()

    try:
        records = usage_store.fetch_usage(scope, window_days=config.windows.history_days, now=now)
    except StoreFailure as e:
        e.partial_summary = summary
        logger.error("usage_fetch_failed", owner_id=scope.owner_id, account_ref=scope.account_ref, error=e.message)
        raise

    by_resource: Dict[str, List[UsageRecord]] = {}
    for record in records:
        by_resource.setdefault(record.resource_id, []).append(record)

    logger.info(
        "evaluation_started",
        owner_id=scope.owner_id,
        account_ref=scope.account_ref,
        resources=len(by_resource),
    )

    def _evaluate(resource_id: str) -> ResourceEvaluation:
        try:
            return evaluate_resource(resource_id, by_resource[resource_id], now, config)
        except Exception as e:
            logger.error("resource_evaluation_failed", resource_id=resource_id, error=str(e), exc_info=True)
            return ResourceEvaluation(resource_id=resource_id, error=str(e))

    resource_ids = sorted(by_resource)
    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            evaluations = list(pool.map(_evaluate, resource_ids))
    else:
        evaluations = [_evaluate(resource_id) for resource_id in resource_ids]

    def _reconcile(existing: Recommendation, candidate: Recommendation) -> Optional[Recommendation]:
        return reconcile(existing, candidate, config.thresholds.material_change)

    for evaluation in evaluations:
        summary.resources_evaluated += 1
        summary.skipped += len(evaluation.skips)
        if evaluation.error is not None:
            summary.errors += 1
            continue

        for candidate in evaluation.recommendations:
            try:
                outcome, stored = recommendation_store.upsert_active(candidate, _reconcile)
            except StoreFailure as e:
                e.partial_summary = summary
                logger.error(
                    "recommendation_write_failed",
                    resource_id=candidate.resource_id,
                    kind=candidate.kind.value,
                    error=e.message,
                    **summary.as_dict()
                )
                raise
            except ValidationError as e:
                summary.errors += 1
                logger.error("recommendation_rejected", resource_id=candidate.resource_id, error=e.message)
                continue

            if outcome == UpsertOutcome.CREATED:
                summary.created += 1
                logger.info(
                    "recommendation_created",
                    recommendation_id=stored.id,
                    resource_id=stored.resource_id,
                    kind=stored.kind.value,
                    savings=str(stored.estimated_savings.amount),
                    priority=stored.priority.value,
                )
            elif outcome == UpsertOutcome.UPDATED:
                summary.updated += 1
                logger.info(
                    "recommendation_refreshed",
                    recommendation_id=stored.id,
                    resource_id=stored.resource_id,
                    kind=stored.kind.value,
                    savings=str(stored.estimated_savings.amount),
                )
            else:
                summary.unchanged += 1

    logger.info(
        "evaluation_finished",
        owner_id=scope.owner_id,
        account_ref=scope.account_ref,
        **summary.as_dict()
    )
    return summary


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


def _log_skip(skip: RuleSkip) -> None:
    logger.info("rule_skipped", resource_id=skip.resource_id, rule_id=skip.rule_id, reason=skip.reason)
