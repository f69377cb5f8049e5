"""
Route Scoring - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions raised by the scoring engine:
- ScoringEngineError: Base exception
- TransientStoreError: Store timeout / connection loss
- MalformedReportError: Report missing fields or out of range
- RouteNotFoundError: Route unknown to the Route Store
- InvalidPeriodError: Unsupported analytics period
- SchedulerFault: Unexpected failure inside a scoring pass
- ConfigurationError: Invalid configuration

============================================================
FAILURE SAFETY
============================================================

Aggregation runs off the request path:
- Store errors are retried on the next scheduled pass
- Malformed reports are excluded, never abort a batch
- A failing pass must never stop the scheduler

============================================================
"""

from typing import Any, Dict, Optional


class ScoringEngineError(Exception):
    """
    Base exception for route scoring errors.

    All scoring exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class TransientStoreError(ScoringEngineError):
    """
    Raised when a store operation fails for a transient reason.

    Timeouts and connection loss. The operation is retried on the
    next scheduled pass; never surfaced to end users.
    """

    def __init__(
        self,
        operation: str,
        reason: str,
    ) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(
            message=f"Store operation '{operation}' failed: {reason}",
            details={"operation": operation, "reason": reason},
        )


class MalformedReportError(ScoringEngineError):
    """
    Raised when a report cannot be used for scoring.

    The report is excluded from the current pass and logged with its id.
    """

    def __init__(
        self,
        report_id: Optional[str],
        reason: str,
    ) -> None:
        self.report_id = report_id
        self.reason = reason
        super().__init__(
            message=f"Malformed report {report_id or '<no id>'}: {reason}",
            details={"report_id": report_id, "reason": reason},
        )


class RouteNotFoundError(ScoringEngineError):
    """Raised when a route is not known to the Route Store."""

    def __init__(self, route_id: str) -> None:
        self.route_id = route_id
        super().__init__(
            message=f"Route not found: {route_id}",
            details={"route_id": route_id},
        )


class InvalidPeriodError(ScoringEngineError):
    """Raised when an analytics period is not one of 7d/30d/90d."""

    def __init__(self, period: Any, allowed: Optional[list] = None) -> None:
        self.period = period
        allowed = allowed or []
        message = f"Invalid period: {period}"
        if allowed:
            message += f". Valid values: {', '.join(allowed)}"
        super().__init__(
            message=message,
            details={"period": str(period), "allowed": allowed},
        )


class SchedulerFault(ScoringEngineError):
    """
    Wraps an unexpected exception raised inside a scoring pass.

    Caught at the pass boundary; the scheduler keeps running.
    """

    def __init__(
        self,
        pass_number: int,
        original: BaseException,
    ) -> None:
        self.pass_number = pass_number
        self.original = original
        super().__init__(
            message=f"Scoring pass #{pass_number} failed: {original}",
            details={
                "pass_number": pass_number,
                "original_type": type(original).__name__,
            },
        )


class ConfigurationError(ScoringEngineError):
    """Raised when configuration values are inconsistent."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
    ) -> None:
        self.config_key = config_key
        super().__init__(
            message=message,
            details={"config_key": config_key} if config_key else None,
        )
