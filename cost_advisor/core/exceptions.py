"""
Error taxonomy for the advisor.

Every error carries a stable machine-readable code next to the message.
"""

from typing import Any, Dict, Optional


class CostAdvisorError(Exception):
    """Base exception for all advisor errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationError(CostAdvisorError):
    """Raised when input to a public operation is malformed.

    Never retried automatically.
    """
    def __init__(self, message: str, code: str = "validation_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class DataUnavailable(CostAdvisorError):
    """Raised by a rule when a required metric is missing or stale.

    The engine turns it into a counted skip for that rule.
    """
    def __init__(self, message: str, resource_id: str, rule_id: str):
        super().__init__(
            message,
            code="data_unavailable",
            details={"resource_id": resource_id, "rule_id": rule_id}
        )
        self.resource_id = resource_id
        self.rule_id = rule_id


class ConflictError(CostAdvisorError):
    """Raised when a status transition is rejected.

    Covers transitions out of a terminal state and lost races against
    a concurrent transition of the same recommendation.
    """
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="conflict", details=details)


class StoreFailure(CostAdvisorError):
    """Raised when the underlying persistence call fails.

    ``partial_summary`` is filled in by batch evaluation so callers can
    see how far the batch got before the store gave up.
    """
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="store_failure", details=details)
        self.partial_summary = None
