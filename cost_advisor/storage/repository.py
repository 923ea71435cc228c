"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple

import structlog

from cost_advisor.core.exceptions import ConflictError, StoreFailure, ValidationError
from .codec import (
    format_timestamp,
    recommendation_from_dict,
    recommendation_to_dict,
    usage_from_dict,
    usage_to_dict,
)
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    ACTIVE_STATUSES,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    AccountScope,
    Priority,
    Recommendation,
    RecommendationKind,
    RecommendationStatus,
    Service,
    UsageRecord,
)

logger = structlog.get_logger()

_ACTIVE_VALUES = tuple(sorted(s.value for s in ACTIVE_STATUSES))
_ACTIVE_SQL_LIST = ", ".join("'%s'" % value for value in _ACTIVE_VALUES)


class UpsertOutcome(Enum):
    """What a reconciling write did to the store."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage and recommendation tables if they don't exist.

    Usage records are an append-only ledger. Recommendations carry a
    partial unique index so at most one active recommendation exists per
    (owner, account, resource, kind).

    Args:
        db_path: Path to SQLite database file
    """
    with _connection(db_path) as conn:
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                account_ref TEXT NOT NULL,
                resource_id TEXT NOT NULL,
                service TEXT NOT NULL,
                observed_at TEXT NOT NULL,
                payload TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS ix_usage_scope_time
                ON usage_record (owner_id, account_ref, observed_at);
            CREATE TABLE IF NOT EXISTS recommendation (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                account_ref TEXT NOT NULL,
                resource_id TEXT NOT NULL,
                service TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                priority TEXT NOT NULL,
                priority_rank INTEGER NOT NULL,
                savings_amount REAL NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                payload TEXT NOT NULL
            );
            CREATE UNIQUE INDEX IF NOT EXISTS ux_recommendation_active
                ON recommendation (owner_id, account_ref, resource_id, kind)
                WHERE status IN ({_ACTIVE_SQL_LIST});
            CREATE INDEX IF NOT EXISTS ix_recommendation_scope_status
                ON recommendation (owner_id, account_ref, status, priority_rank);
        """)


@contextmanager
def _connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection, translating driver errors into StoreFailure."""
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise StoreFailure(f"Cannot open database {db_path}: {e}") from e
    try:
        yield conn
    except sqlite3.Error as e:
        raise StoreFailure(f"Database operation failed: {e}") from e
    finally:
        conn.close()


class UsageRepository:
    """Read and append access to the usage ledger."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def insert_usage_records(self, records: List[UsageRecord]) -> None:
        """Append usage records atomically.

        Args:
            records: Records to store; an empty list is a no-op
        """
        if not records:
            return

        with _connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN TRANSACTION")
                for record in records:
                    conn.execute("""
                        INSERT INTO usage_record
                        (owner_id, account_ref, resource_id, service, observed_at, payload)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        record.owner_id,
                        record.account_ref,
                        record.resource_id,
                        record.service.value,
                        format_timestamp(record.observed_at),
                        json.dumps(usage_to_dict(record))
                    ))
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def fetch_usage(
        self,
        scope: AccountScope,
        service: Optional[Service] = None,
        window_days: int = 7,
        now: Optional[datetime] = None
    ) -> List[UsageRecord]:
        """Fetch usage records of one account within a trailing window.

        Future-dated records are excluded.

        Args:
            scope: Owner and account to read
            service: Optional filter for one service
            window_days: Number of days to look back
            now: End of the window, defaults to the current UTC time

        Returns:
            Records ordered by resource id, then observation time
        """
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=window_days)

        query = """
            SELECT payload FROM usage_record
            WHERE owner_id = ? AND account_ref = ?
              AND observed_at >= ? AND observed_at <= ?
        """
        params = [scope.owner_id, scope.account_ref, format_timestamp(start), format_timestamp(end)]
        if service is not None:
            query += " AND service = ?"
            params.append(service.value)
        query += " ORDER BY resource_id, observed_at"

        with _connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [usage_from_dict(json.loads(row[0])) for row in rows]


class RecommendationRepository:
    """Persistence of recommendations and their status transitions."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        with _connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload FROM recommendation WHERE id = ?", (recommendation_id,)
            ).fetchone()
        return _decode(row)

    def find_active_recommendation(
        self,
        scope: AccountScope,
        resource_id: str,
        kind: RecommendationKind
    ) -> Optional[Recommendation]:
        """Find the pending or in-progress recommendation of a kind for a resource."""
        with _connection(self.db_path) as conn:
            return _find_active(conn, scope, resource_id, kind)

    def save_recommendations(self, recommendations: List[Recommendation]) -> None:
        """Insert new recommendations in a single transaction.

        Raises:
            ValidationError: If a recommendation violates length bounds
            ConflictError: If an active recommendation of the same kind exists
        """
        if not recommendations:
            return
        for rec in recommendations:
            _validate(rec)

        with _connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                for rec in recommendations:
                    _insert(conn, rec)
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError(f"Active recommendation already exists: {e}") from e
            except Exception:
                conn.rollback()
                raise

    def upsert_active(
        self,
        candidate: Recommendation,
        reconcile: Callable[[Recommendation, Recommendation], Optional[Recommendation]]
    ) -> Tuple[UpsertOutcome, Recommendation]:
        """Create or refresh the active recommendation for (resource, kind).

        Lookup and write happen in one write transaction, so overlapping
        evaluation passes serialize on the database lock and cannot both
        insert.

        Args:
            candidate: Freshly generated recommendation
            reconcile: Returns the refreshed existing recommendation, or
                None when the existing one should stay untouched

        Returns:
            Outcome and the recommendation now stored
        """
        _validate(candidate)
        with _connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                existing = _find_active(conn, candidate.scope, candidate.resource_id, candidate.kind)
                if existing is None:
                    _insert(conn, candidate)
                    outcome, stored = UpsertOutcome.CREATED, candidate
                else:
                    refreshed = reconcile(existing, candidate)
                    if refreshed is None:
                        outcome, stored = UpsertOutcome.UNCHANGED, existing
                    else:
                        _validate(refreshed)
                        _compare_and_swap(conn, refreshed, existing.status)
                        outcome, stored = UpsertOutcome.UPDATED, refreshed
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        logger.debug(
            "recommendation_upserted",
            recommendation_id=stored.id,
            resource_id=stored.resource_id,
            kind=stored.kind.value,
            outcome=outcome.value,
        )
        return outcome, stored

    def update_status(
        self,
        recommendation: Recommendation,
        expected_status: RecommendationStatus
    ) -> Recommendation:
        """Write a transitioned recommendation if its status is still as expected.

        Raises:
            ConflictError: If another writer changed the status first
        """
        with _connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                _compare_and_swap(conn, recommendation, expected_status)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return recommendation

    def list_recommendations(
        self,
        scope: AccountScope,
        service: Optional[Service] = None,
        priority: Optional[Priority] = None,
        status: Optional[RecommendationStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Recommendation]:
        """List recommendations by priority, then savings, both descending."""
        where, params = _filters(scope, service, priority, status)
        query = (
            f"SELECT payload FROM recommendation WHERE {where} "
            "ORDER BY priority_rank DESC, savings_amount DESC, created_at LIMIT ? OFFSET ?"
        )
        params.extend([limit, offset])
        with _connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_decode(row) for row in rows]

    def count_recommendations(
        self,
        scope: AccountScope,
        service: Optional[Service] = None,
        priority: Optional[Priority] = None,
        status: Optional[RecommendationStatus] = None
    ) -> int:
        where, params = _filters(scope, service, priority, status)
        with _connection(self.db_path) as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM recommendation WHERE {where}", params).fetchone()
        return row[0]

    def list_active(self, scope: AccountScope) -> List[Recommendation]:
        placeholders = ", ".join("?" for _ in _ACTIVE_VALUES)
        with _connection(self.db_path) as conn:
            rows = conn.execute(f"""
                SELECT payload FROM recommendation
                WHERE owner_id = ? AND account_ref = ? AND status IN ({placeholders})
                ORDER BY priority_rank DESC, savings_amount DESC
            """, [scope.owner_id, scope.account_ref, *_ACTIVE_VALUES]).fetchall()
        return [_decode(row) for row in rows]

    def top_savings(self, scope: AccountScope, limit: int = 10) -> List[Recommendation]:
        """Active recommendations with the largest savings first."""
        placeholders = ", ".join("?" for _ in _ACTIVE_VALUES)
        with _connection(self.db_path) as conn:
            rows = conn.execute(f"""
                SELECT payload FROM recommendation
                WHERE owner_id = ? AND account_ref = ? AND status IN ({placeholders})
                ORDER BY savings_amount DESC
                LIMIT ?
            """, [scope.owner_id, scope.account_ref, *_ACTIVE_VALUES, limit]).fetchall()
        return [_decode(row) for row in rows]


def _decode(row) -> Optional[Recommendation]:
    if row is None:
        return None
    return recommendation_from_dict(json.loads(row[0]))


def _validate(rec: Recommendation) -> None:
    if len(rec.title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
    if len(rec.description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")


def _find_active(
    conn: sqlite3.Connection,
    scope: AccountScope,
    resource_id: str,
    kind: RecommendationKind
) -> Optional[Recommendation]:
    placeholders = ", ".join("?" for _ in _ACTIVE_VALUES)
    row = conn.execute(f"""
        SELECT payload FROM recommendation
        WHERE owner_id = ? AND account_ref = ? AND resource_id = ? AND kind = ?
          AND status IN ({placeholders})
    """, [scope.owner_id, scope.account_ref, resource_id, kind.value, *_ACTIVE_VALUES]).fetchone()
    return _decode(row)


def _insert(conn: sqlite3.Connection, rec: Recommendation) -> None:
    conn.execute("""
        INSERT INTO recommendation
        (id, owner_id, account_ref, resource_id, service, kind, status, priority,
         priority_rank, savings_amount, created_at, updated_at, payload)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        rec.id,
        rec.owner_id,
        rec.account_ref,
        rec.resource_id,
        rec.service.value,
        rec.kind.value,
        rec.status.value,
        rec.priority.value,
        rec.priority.rank,
        float(rec.estimated_savings.amount),
        format_timestamp(rec.created_at),
        format_timestamp(rec.updated_at),
        json.dumps(recommendation_to_dict(rec))
    ))


def _compare_and_swap(
    conn: sqlite3.Connection,
    rec: Recommendation,
    expected_status: RecommendationStatus
) -> None:
    cursor = conn.execute("""
        UPDATE recommendation
        SET status = ?, priority = ?, priority_rank = ?, savings_amount = ?,
            updated_at = ?, payload = ?
        WHERE id = ? AND status = ?
    """, (
        rec.status.value,
        rec.priority.value,
        rec.priority.rank,
        float(rec.estimated_savings.amount),
        format_timestamp(rec.updated_at),
        json.dumps(recommendation_to_dict(rec)),
        rec.id,
        expected_status.value
    ))
    if cursor.rowcount == 0:
        raise ConflictError(
            f"Recommendation {rec.id} is no longer {expected_status.value}",
            details={"recommendation_id": rec.id, "expected_status": expected_status.value}
        )


def _filters(
    scope: AccountScope,
    service: Optional[Service],
    priority: Optional[Priority],
    status: Optional[RecommendationStatus]
) -> Tuple[str, list]:
    conditions = ["owner_id = ?", "account_ref = ?"]
    params: list = [scope.owner_id, scope.account_ref]
    if service is not None:
        conditions.append("service = ?")
        params.append(service.value)
    if priority is not None:
        conditions.append("priority = ?")
        params.append(priority.value)
    if status is not None:
        conditions.append("status = ?")
        params.append(status.value)
    return " AND ".join(conditions), params
