"""
Centralized error handling framework for ClaimDesk.

Provides error classification, recovery strategies, and structured error
reporting with claim/automation context for API responses and logs.
"""

from enum import Enum
from typing import Optional, Dict, Any, List, Union
from dataclasses import dataclass
from datetime import datetime, timezone
import traceback
import sys

from .logging_conf import get_logger

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"  # Service cannot continue
    ERROR = "error"       # Operation failed
    WARNING = "warning"   # Degraded or rejected input
    INFO = "info"


class RecoveryStrategy(Enum):
    """Error recovery strategies."""
    RETRY = "retry"
    FALLBACK = "fallback"
    MANUAL = "manual"
    ABORT = "abort"
    DEGRADE = "degrade"


@dataclass
class ErrorContext:
    """Additional context information for errors."""
    claim_id: Optional[str] = None
    automation_id: Optional[str] = None
    execution_id: Optional[str] = None
    operation: Optional[str] = None
    provider: Optional[str] = None
    user_data: Optional[Dict[str, Any]] = None


class BaseApplicationError(Exception):
    """
    Base class for all application errors with context and recovery information.
    """

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        recovery_strategy: RecoveryStrategy = RecoveryStrategy.MANUAL,
        user_message: Optional[str] = None,
        suggestion: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        error_code: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize application error.

        Args:
            message: Technical error message for logging
            severity: Error severity level
            recovery_strategy: How the error can be recovered from
            user_message: Message safe to return to API callers
            suggestion: Recovery suggestion for the caller
            context: Claim/automation context
            error_code: Stable error code
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.recovery_strategy = recovery_strategy
        self.user_message = user_message or message
        self.suggestion = suggestion
        self.context = context or ErrorContext()
        self.error_code = error_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        self.traceback = traceback.format_exc() if sys.exc_info()[0] else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "severity": self.severity.value,
            "recovery_strategy": self.recovery_strategy.value,
            "message": self.message,
            "user_message": self.user_message,
            "suggestion": self.suggestion,
            "timestamp": self.timestamp.isoformat(),
            "context": {
                "claim_id": self.context.claim_id,
                "automation_id": self.context.automation_id,
                "execution_id": self.context.execution_id,
                "operation": self.context.operation,
                "provider": self.context.provider,
            },
        }


class RetryableError(BaseApplicationError):
    """Error that can be automatically retried."""

    def __init__(self, message: str, max_retries: int = 3, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.RETRY)
        kwargs.setdefault('error_code', 'RETRYABLE')
        self.max_retries = max_retries
        super().__init__(message, **kwargs)


class ValidationError(BaseApplicationError):
    """Input validation failures."""

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.MANUAL)
        kwargs.setdefault('error_code', 'VALIDATION_ERROR')
        kwargs.pop('user_message', None)
        super().__init__(
            message=constraint,
            user_message=f"Invalid {field}: {constraint}",
            **kwargs
        )


class NotFoundError(BaseApplicationError):
    """A referenced record does not exist or is not eligible."""

    def __init__(self, resource: str, identifier: Optional[str], detail: Optional[str] = None, **kwargs):
        self.resource = resource
        self.identifier = identifier
        message = detail or f"{resource} not found: {identifier}"
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.ABORT)
        kwargs.setdefault('error_code', f'{resource.upper()}_NOT_FOUND')
        kwargs.pop('user_message', None)
        super().__init__(message=message, user_message=message, **kwargs)


class AuthorizationError(BaseApplicationError):
    """Caller failed a shared-secret check."""

    def __init__(self, message: str = "Unauthorized", **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.ABORT)
        kwargs.setdefault('error_code', 'UNAUTHORIZED')
        super().__init__(message, **kwargs)


class ServiceUnavailableError(BaseApplicationError):
    """External service unavailable."""

    def __init__(self, service: str, **kwargs):
        self.service = service
        message = f"Service unavailable: {service}"
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.FALLBACK)
        kwargs.setdefault('error_code', f'SERVICE_{service.upper()}_UNAVAILABLE')
        kwargs.pop('user_message', None)
        super().__init__(
            message=message,
            user_message=f"The {service} service is currently unavailable",
            suggestion="Try again later or check the vendor status page",
            **kwargs
        )


class ConfigurationError(BaseApplicationError):
    """Configuration and setup errors."""

    def __init__(self, component: str, issue: str, **kwargs):
        self.component = component
        self.issue = issue
        kwargs.setdefault('severity', ErrorSeverity.ERROR)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.MANUAL)
        kwargs.setdefault('error_code', f'CONFIG_{component.upper()}')
        kwargs.pop('user_message', None)
        super().__init__(
            message=f"Configuration error in {component}: {issue}",
            user_message=f"Setup issue with {component}: {issue}",
            **kwargs
        )


class DeliveryError(BaseApplicationError):
    """An outbound email, SMS or webhook could not be delivered."""

    def __init__(self, channel: str, reason: str, status_code: Optional[int] = None, **kwargs):
        self.channel = channel
        self.reason = reason
        self.status_code = status_code
        kwargs.setdefault('severity', ErrorSeverity.ERROR)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.MANUAL)
        kwargs.setdefault('error_code', f'DELIVERY_{channel.upper()}')
        kwargs.pop('user_message', None)
        super().__init__(message=reason, user_message=reason, **kwargs)


class ErrorHandler:
    """
    Centralized error handler for the application.
    """

    def __init__(self):
        self.error_counts: Dict[str, int] = {}
        self.recent_errors: List[BaseApplicationError] = []
        self.max_recent_errors = 100

    def handle_error(
        self,
        error: Union[BaseApplicationError, Exception],
        context: Optional[ErrorContext] = None
    ) -> BaseApplicationError:
        """
        Handle an error with logging and counting.

        Args:
            error: The error to handle
            context: Additional context information

        Returns:
            BaseApplicationError instance (converted if needed)
        """
        if not isinstance(error, BaseApplicationError):
            app_error = self._convert_exception(error, context)
        else:
            app_error = error
            if context is not None:
                app_error.context = context

        self._log_error(app_error)
        self._track_error(app_error)

        self.recent_errors.append(app_error)
        if len(self.recent_errors) > self.max_recent_errors:
            self.recent_errors = self.recent_errors[-self.max_recent_errors:]

        return app_error

    def _convert_exception(
        self,
        exc: Exception,
        context: Optional[ErrorContext] = None
    ) -> BaseApplicationError:
        """Convert a standard exception to BaseApplicationError."""
        if isinstance(exc, ConnectionError):
            return ServiceUnavailableError(service="network", cause=exc, context=context)
        elif isinstance(exc, TimeoutError):
            return RetryableError(
                message=f"Operation timed out: {str(exc)}",
                cause=exc,
                context=context
            )
        elif isinstance(exc, (ValueError, KeyError)):
            return ValidationError(
                field="input",
                value=str(exc),
                constraint=str(exc) or "Invalid value format",
                cause=exc,
                context=context
            )
        else:
            return BaseApplicationError(
                message=str(exc) or type(exc).__name__,
                user_message=f"An unexpected error occurred: {type(exc).__name__}",
                severity=ErrorSeverity.ERROR,
                recovery_strategy=RecoveryStrategy.MANUAL,
                error_code="INTERNAL_ERROR",
                cause=exc,
                context=context
            )

    def _log_error(self, error: BaseApplicationError):
        """Log error with appropriate level and context."""
        log_data = {
            "error_code": error.error_code,
            "severity": error.severity.value,
            "recovery_strategy": error.recovery_strategy.value,
            "claim_id": error.context.claim_id,
            "automation_id": error.context.automation_id,
            "execution_id": error.context.execution_id,
            "operation": error.context.operation,
            "provider": error.context.provider,
        }

        if error.cause:
            log_data["cause"] = str(error.cause)
            log_data["cause_type"] = type(error.cause).__name__

        if error.severity == ErrorSeverity.CRITICAL:
            logger.critical(error.message, **log_data)
        elif error.severity == ErrorSeverity.ERROR:
            logger.error(error.message, **log_data)
        elif error.severity == ErrorSeverity.WARNING:
            logger.warning(error.message, **log_data)
        else:
            logger.info(error.message, **log_data)

    def _track_error(self, error: BaseApplicationError):
        error_key = error.error_code or type(error).__name__
        self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        return {
            "error_counts": self.error_counts.copy(),
            "recent_error_count": len(self.recent_errors),
            "recent_errors": [error.to_dict() for error in self.recent_errors[-10:]]
        }

    def clear_stats(self):
        """Clear error statistics."""
        self.error_counts.clear()
        self.recent_errors.clear()


# Global error handler instance
error_handler = ErrorHandler()


def handle_error(
    error: Union[BaseApplicationError, Exception],
    context: Optional[ErrorContext] = None
) -> BaseApplicationError:
    """
    Convenience function to handle errors using the global error handler.
    """
    return error_handler.handle_error(error, context)


def create_context(
    claim_id: Optional[str] = None,
    automation_id: Optional[str] = None,
    execution_id: Optional[str] = None,
    operation: Optional[str] = None,
    provider: Optional[str] = None,
    **kwargs
) -> ErrorContext:
    """
    Convenience function to create error context.
    """
    return ErrorContext(
        claim_id=claim_id,
        automation_id=automation_id,
        execution_id=execution_id,
        operation=operation,
        provider=provider,
        user_data=kwargs if kwargs else None
    )
