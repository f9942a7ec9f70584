"""Exception classes for the alert delivery engine."""

from typing import Any, Dict, List, Optional


class AlertDeskError(Exception):
    """Base exception for the alert delivery engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AlertValidationError(AlertDeskError):
    """Alert configuration or update rejected; never retried."""

    def __init__(self, errors: List[str]):
        super().__init__(
            message="; ".join(errors) or "Validation failed",
            details={"errors": list(errors)},
        )
        self.errors = list(errors)


class InvalidStatusTransitionError(AlertValidationError):
    """Requested status change is not allowed by the alert state machine."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            [f"Cannot change alert status from '{current}' to '{requested}'"]
        )
        self.current = current
        self.requested = requested


class AlertNotFoundError(AlertDeskError):
    """Alert does not exist."""

    def __init__(self, alert_id: str):
        super().__init__(
            message=f"Alert with identifier '{alert_id}' not found",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class TransportError(AlertDeskError):
    """Transient transport failure, eligible for retry."""

    def __init__(self, channel: str, message: str):
        super().__init__(
            message=message,
            details={"channel": channel},
        )
        self.channel = channel


class TerminalDeliveryFailure(AlertDeskError):
    """Channel retry budget exhausted."""

    def __init__(self, channel: str, attempts: int, last_error: Optional[str]):
        super().__init__(
            message=(
                f"Delivery via {channel} failed after {attempts} attempts: "
                f"{last_error}"
            ),
            details={"channel": channel, "attempts": attempts},
        )
        self.channel = channel
        self.attempts = attempts
        self.last_error = last_error


class DispatchAborted(AlertDeskError):
    """Alert was cancelled while a channel was backing off between attempts."""

    def __init__(self, channel: str, attempts: int):
        super().__init__(
            message=f"Dispatch via {channel} aborted after {attempts} attempts",
            details={"channel": channel, "attempts": attempts},
        )
        self.channel = channel
        self.attempts = attempts


class RepositoryError(AlertDeskError):
    """Persistence unavailable; the orchestration pass for the alert aborts."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            message=f"Repository {operation} failed: {message}",
            details={"operation": operation},
        )
        self.operation = operation


class ConcurrencyConflictError(RepositoryError):
    """Alert was modified by someone else since it was read."""

    def __init__(self, alert_id: str, expected_version: int):
        super().__init__(
            operation="save",
            message=(
                f"alert {alert_id} no longer at version {expected_version}"
            ),
        )
        self.alert_id = alert_id
        self.expected_version = expected_version
