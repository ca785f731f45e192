"""
Retry utilities for outbound vendor calls.

Named retry policies (email, sms, webhook, llm, search), exponential backoff
with jitter, a per-vendor circuit breaker and a retry budget that caps how
many retries a single cron pass can spend.
"""

import asyncio
import random
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import functools

import aiohttp

from .logging_conf import get_logger
from .error_handler import (
    ConfigurationError,
    DeliveryError,
    RetryableError,
    ServiceUnavailableError,
    ValidationError,
)

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BackoffStrategy(Enum):
    """Backoff strategy types."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# Transient transport failures worth another attempt
TRANSIENT_EXCEPTIONS: List[Type[Exception]] = [
    aiohttp.ClientConnectionError,
    asyncio.TimeoutError,
    ConnectionError,
    TimeoutError,
    RetryableError,
]

# Caller mistakes that will fail identically on every attempt
PERMANENT_EXCEPTIONS: List[Type[Exception]] = [
    DeliveryError,
    ValidationError,
    ConfigurationError,
]


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    multiplier: float = 2.0
    jitter_range: float = 0.1
    timeout: Optional[float] = None
    retryable_exceptions: List[Type[Exception]] = field(
        default_factory=lambda: list(TRANSIENT_EXCEPTIONS)
    )
    non_retryable_exceptions: List[Type[Exception]] = field(
        default_factory=lambda: list(PERMANENT_EXCEPTIONS)
    )


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 2


class RetryBudget:
    """
    Sliding one-minute budget of retries per operation type.
    """

    def __init__(self, budget_per_minute: int = 60):
        self.budget_per_minute = budget_per_minute
        self.attempts_history: List[datetime] = []

    def can_retry(self) -> bool:
        cutoff = _now() - timedelta(minutes=1)
        self.attempts_history = [
            attempt for attempt in self.attempts_history
            if attempt > cutoff
        ]
        return len(self.attempts_history) < self.budget_per_minute

    def record_attempt(self):
        self.attempts_history.append(_now())


class CircuitBreaker:
    """
    Circuit breaker for one vendor.
    """

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.next_attempt_time: Optional[datetime] = None

    def can_execute(self) -> bool:
        """Check if execution is allowed."""
        if self.state == CircuitState.OPEN:
            if self.next_attempt_time and _now() >= self.next_attempt_time:
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                logger.info("Circuit breaker half-open", service=self.name)
                return True
            return False
        return True

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                logger.info("Circuit breaker closed", service=self.name)
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self):
        self.failure_count += 1
        self.last_failure_time = _now()

        should_open = (
            self.state == CircuitState.HALF_OPEN
            or (self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold)
        )
        if should_open:
            self.state = CircuitState.OPEN
            self.next_attempt_time = _now() + timedelta(seconds=self.config.recovery_timeout)
            logger.warning(
                "Circuit breaker opened",
                service=self.name,
                failure_count=self.failure_count,
                recovery_timeout=self.config.recovery_timeout
            )

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "next_attempt_time": self.next_attempt_time.isoformat() if self.next_attempt_time else None
        }


class RetryManager:
    """
    Manages retry policies and circuit breakers for vendor integrations.
    """

    def __init__(self):
        self.policies: Dict[str, RetryPolicy] = {}
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.retry_budgets: Dict[str, RetryBudget] = {}
        self._setup_default_policies()

    def _setup_default_policies(self):
        """Default policies for each outbound integration."""
        self.policies["email"] = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0)
        self.policies["sms"] = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0)
        # Webhook receivers are not guaranteed idempotent
        self.policies["webhook"] = RetryPolicy(max_attempts=2, base_delay=2.0, max_delay=10.0)
        self.policies["llm"] = RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=30.0, timeout=120.0)
        self.policies["search"] = RetryPolicy(max_attempts=2, base_delay=1.0, max_delay=10.0, timeout=60.0)
        self.policies["api"] = RetryPolicy()

    def get_policy(self, operation_type: str) -> RetryPolicy:
        return self.policies.get(operation_type, self.policies["api"])

    def set_policy(self, operation_type: str, policy: RetryPolicy):
        self.policies[operation_type] = policy

    def get_circuit_breaker(self, service_name: str) -> CircuitBreaker:
        if service_name not in self.circuit_breakers:
            self.circuit_breakers[service_name] = CircuitBreaker(service_name, CircuitBreakerConfig())
        return self.circuit_breakers[service_name]

    def get_retry_budget(self, operation_type: str) -> RetryBudget:
        if operation_type not in self.retry_budgets:
            self.retry_budgets[operation_type] = RetryBudget()
        return self.retry_budgets[operation_type]

    def reset(self):
        """Drop breaker and budget state."""
        self.circuit_breakers.clear()
        self.retry_budgets.clear()

    def calculate_delay(self, attempt: int, policy: RetryPolicy) -> float:
        """Calculate delay before the next attempt."""
        if policy.backoff_strategy == BackoffStrategy.FIXED:
            delay = policy.base_delay
        elif policy.backoff_strategy == BackoffStrategy.LINEAR:
            delay = policy.base_delay * attempt
        elif policy.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = policy.base_delay * (policy.multiplier ** (attempt - 1))
        else:
            base_delay = policy.base_delay * (policy.multiplier ** (attempt - 1))
            jitter = base_delay * policy.jitter_range * (random.random() * 2 - 1)
            delay = base_delay + jitter

        return max(0.0, min(delay, policy.max_delay))

    def should_retry(self, exception: Exception, attempt: int, policy: RetryPolicy) -> bool:
        """Determine if exception should be retried."""
        if attempt >= policy.max_attempts:
            return False

        if any(isinstance(exception, exc_type) for exc_type in policy.non_retryable_exceptions):
            return False

        return any(isinstance(exception, exc_type) for exc_type in policy.retryable_exceptions)

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        operation_type: str = "api",
        service_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        *args,
        policy: Optional[RetryPolicy] = None,
        **kwargs
    ) -> Any:
        """
        Execute function with retry logic and circuit breaker.

        Args:
            func: Async function to execute
            operation_type: Type of operation for policy selection
            service_name: Vendor name for the circuit breaker
            context: Additional context for logging
            policy: Explicit policy overriding the named one

        Returns:
            Function result

        Raises:
            ServiceUnavailableError: the vendor's circuit is open
            Exception: last exception if all retries are exhausted
        """
        policy = policy or self.get_policy(operation_type)
        circuit_breaker = self.get_circuit_breaker(service_name) if service_name else None
        retry_budget = self.get_retry_budget(operation_type)

        last_exception: Optional[Exception] = None

        for attempt in range(1, policy.max_attempts + 1):
            if circuit_breaker and not circuit_breaker.can_execute():
                raise ServiceUnavailableError(service=service_name)

            if attempt > 1 and not retry_budget.can_retry():
                logger.warning("Retry budget exhausted", operation_type=operation_type, attempt=attempt)
                break

            try:
                if policy.timeout:
                    result = await asyncio.wait_for(func(*args, **kwargs), timeout=policy.timeout)
                else:
                    result = await func(*args, **kwargs)

                if circuit_breaker:
                    circuit_breaker.record_success()

                if attempt > 1:
                    logger.info(
                        "Operation succeeded after retry",
                        operation_type=operation_type,
                        attempt=attempt,
                        context=context
                    )

                return result

            except Exception as e:
                last_exception = e

                # A 4xx from the vendor is our fault, not theirs
                if circuit_breaker and not isinstance(e, tuple(PERMANENT_EXCEPTIONS)):
                    circuit_breaker.record_failure()

                if not self.should_retry(e, attempt, policy):
                    if attempt < policy.max_attempts:
                        logger.warning(
                            "Non-retryable error encountered",
                            operation_type=operation_type,
                            attempt=attempt,
                            error=str(e),
                            error_type=type(e).__name__,
                            context=context
                        )
                    break

                delay = self.calculate_delay(attempt, policy)
                retry_budget.record_attempt()

                logger.warning(
                    "Operation failed, retrying",
                    operation_type=operation_type,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                    context=context
                )

                await asyncio.sleep(delay)

        logger.error(
            "Retry attempts exhausted",
            operation_type=operation_type,
            last_error=str(last_exception),
            context=context
        )

        if last_exception:
            raise last_exception
        raise RuntimeError("Retry loop completed without result or exception")

    def get_status(self) -> Dict[str, Any]:
        return {
            "circuit_breakers": {
                name: cb.get_status()
                for name, cb in self.circuit_breakers.items()
            },
            "retry_policies": {
                name: {
                    "max_attempts": policy.max_attempts,
                    "base_delay": policy.base_delay,
                    "max_delay": policy.max_delay,
                    "backoff_strategy": policy.backoff_strategy.value
                }
                for name, policy in self.policies.items()
            },
        }


# Global retry manager instance
retry_manager = RetryManager()


def with_retry(
    operation_type: str = "api",
    service_name: Optional[str] = None,
    policy: Optional[RetryPolicy] = None
):
    """
    Decorator for adding retry logic to async functions.

    Args:
        operation_type: Type of operation for policy selection
        service_name: Vendor name for the circuit breaker
        policy: Custom retry policy (overrides operation_type)
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_manager.execute_with_retry(
                func, operation_type, service_name, None, *args, policy=policy, **kwargs
            )
        return wrapper
    return decorator
