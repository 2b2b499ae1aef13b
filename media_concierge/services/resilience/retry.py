"""Retry and circuit-breaker execution for external calls.

Every call to the language model or the media catalog is funnelled through
RetryService. A call is attempted up to ``RetryPolicy.max_attempts`` times
with exponential backoff; each attempt is bounded by ``RetryPolicy.timeout``.
``execute_with_circuit_breaker`` additionally keeps a per-service breaker so
a service that keeps failing is short-circuited for a while.

Usage:
    service = get_retry_service()
    results = await service.execute_with_circuit_breaker(
        lambda: client.search("the matrix"),
        service_key="radarr",
        policy=RetryPolicy.for_catalog(),
        operation_name="radarr.search",
        category=ErrorCategory.MEDIA_API,
    )
"""

import asyncio
import os
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TypeVar

from media_concierge.core.exceptions import CircuitOpenError, OperationTimeoutError
from media_concierge.core.logging_config import get_logger
from media_concierge.services.resilience.classifier import (
    ClassifiedError,
    ErrorCategory,
    ErrorClassifier,
)

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for one family of external calls.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for any delay in seconds.
        backoff_factor: Multiplier applied per retry.
        jitter: Use full jitter (uniform between 0 and the computed delay).
        timeout: Per-attempt timeout in seconds (None disables it).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True
    timeout: float | None = 30.0

    @classmethod
    def for_llm(cls) -> "RetryPolicy":
        """Policy for language-model calls (shorter timeout, 30s delay cap)."""
        return cls(max_delay=30.0, timeout=15.0)

    @classmethod
    def for_catalog(cls) -> "RetryPolicy":
        """Policy for Radarr/Sonarr calls."""
        return cls(max_delay=60.0, timeout=30.0)

    @classmethod
    def from_env(cls, service: str) -> "RetryPolicy":
        """Create the policy for a service with environment overrides.

        Environment variables (prefix is the upper-cased service name):
            <SERVICE>_RETRY_MAX_ATTEMPTS: Total attempts
            <SERVICE>_RETRY_BASE_DELAY: First retry delay in seconds
            <SERVICE>_RETRY_MAX_DELAY: Delay cap in seconds
            <SERVICE>_RETRY_TIMEOUT: Per-attempt timeout in seconds

        Args:
            service: "llm" or "catalog"; anything else starts from the defaults.

        Returns:
            RetryPolicy for the service.
        """
        if service == "llm":
            base = cls.for_llm()
        elif service == "catalog":
            base = cls.for_catalog()
        else:
            base = cls()

        prefix = f"{service.upper()}_RETRY_"
        overrides: dict[str, float | int] = {}
        if os.getenv(f"{prefix}MAX_ATTEMPTS"):
            overrides["max_attempts"] = int(os.environ[f"{prefix}MAX_ATTEMPTS"])
        if os.getenv(f"{prefix}BASE_DELAY"):
            overrides["base_delay"] = float(os.environ[f"{prefix}BASE_DELAY"])
        if os.getenv(f"{prefix}MAX_DELAY"):
            overrides["max_delay"] = float(os.environ[f"{prefix}MAX_DELAY"])
        if os.getenv(f"{prefix}TIMEOUT"):
            overrides["timeout"] = float(os.environ[f"{prefix}TIMEOUT"])
        return replace(base, **overrides)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for per-service circuit breakers.

    Attributes:
        failure_threshold: Consecutive failed calls that open the breaker.
        reset_timeout: Seconds the breaker stays open before a trial call.
    """

    failure_threshold: int = 5
    reset_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "CircuitBreakerConfig":
        """Create config from environment variables.

        Environment variables:
            CIRCUIT_BREAKER_FAILURE_THRESHOLD: Failures before opening (default: 5)
            CIRCUIT_BREAKER_RESET_TIMEOUT: Open duration in seconds (default: 30)

        Returns:
            CircuitBreakerConfig from environment.
        """
        return cls(
            failure_threshold=int(os.getenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", "5")),
            reset_timeout=float(os.getenv("CIRCUIT_BREAKER_RESET_TIMEOUT", "30")),
        )


# =============================================================================
# Circuit Breaker State
# =============================================================================


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerState:
    """Mutable breaker state for one service key.

    Attributes:
        state: Current breaker state.
        failures: Failed calls since the last success.
        last_failure_time: Clock value of the most recent failure.
        opened_at: Clock value when the breaker last opened.
        trial_in_flight: Whether the half-open trial call is running.
    """

    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    last_failure_time: float | None = None
    opened_at: float | None = None
    trial_in_flight: bool = False


# =============================================================================
# Retry Service
# =============================================================================


class RetryService:
    """Executes async operations with retries and per-service circuit breakers.

    Breakers are shared by every caller of the same instance, so a single
    instance should be used per process (see ``get_retry_service``).

    Args:
        breaker_config: Circuit breaker thresholds.
        classifier: Error classifier; a default one is created if omitted.
        sleep: Awaitable sleep used between attempts.
        clock: Monotonic clock used by the breakers.
        random_fn: Source of jitter in [0, 1).
    """

    def __init__(
        self,
        breaker_config: CircuitBreakerConfig | None = None,
        classifier: ErrorClassifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        random_fn: Callable[[], float] = random.random,
    ):
        self.breaker_config = breaker_config or CircuitBreakerConfig.from_env()
        self.classifier = classifier or ErrorClassifier()
        self._sleep = sleep
        self._clock = clock
        self._random = random_fn
        self._breakers: dict[str, CircuitBreakerState] = {}

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    def compute_delay(
        self,
        retry_number: int,
        policy: RetryPolicy,
        classification: ClassifiedError | None = None,
    ) -> float:
        """Compute the wait before retry number ``retry_number`` (1-based).

        Args:
            retry_number: 1 for the wait after the first failed attempt.
            policy: Retry policy in effect.
            classification: Classification of the failure, for Retry-After.

        Returns:
            Delay in seconds, never above ``policy.max_delay``.
        """
        delay = policy.base_delay * (policy.backoff_factor ** (retry_number - 1))
        delay = min(delay, policy.max_delay)
        if policy.jitter:
            delay = self._random() * delay

        if classification is not None and classification.retry_after is not None:
            delay = max(delay, min(classification.retry_after, policy.max_delay))
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        operation_name: str = "operation",
        category: ErrorCategory = ErrorCategory.SYSTEM,
    ) -> T:
        """Run ``operation`` with retries.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
                per attempt.
            policy: Retry policy (defaults to ``RetryPolicy()``).
            operation_name: Name used in logs and timeout errors.
            category: Classification rules to apply to failures.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error once attempts are exhausted, or the
                first non-retryable error.
        """
        policy = policy or RetryPolicy()
        attempts = max(policy.max_attempts, 1)

        for attempt in range(1, attempts + 1):
            try:
                logger.debug(
                    f"Attempting {operation_name}",
                    extra={
                        "extra_data": {
                            "operation": operation_name,
                            "attempt": attempt,
                            "max_attempts": attempts,
                        }
                    },
                )
                result = await self._run_with_timeout(operation, policy.timeout, operation_name)
                if attempt > 1:
                    logger.info(
                        f"{operation_name} succeeded after retry",
                        extra={
                            "extra_data": {"operation": operation_name, "attempt": attempt}
                        },
                    )
                return result

            except Exception as error:
                classification = self.classifier.classify(error, category)
                log_data = {
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": str(error),
                    "error_type": classification.error_type.value,
                    "category": classification.category.value,
                    "severity": classification.severity.value,
                    "retryable": classification.is_retryable,
                }

                if not classification.is_retryable:
                    logger.warning(
                        f"{operation_name} failed with non-retryable error",
                        extra={"extra_data": log_data},
                    )
                    raise

                if attempt >= attempts:
                    logger.error(
                        f"{operation_name} failed after {attempts} attempts",
                        extra={"extra_data": log_data},
                    )
                    raise

                delay = self.compute_delay(attempt, policy, classification)
                logger.warning(
                    f"{operation_name} failed, retrying in {delay:.2f}s",
                    extra={"extra_data": {**log_data, "delay": delay}},
                )
                await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"{operation_name} exhausted retries without a result")

    async def _run_with_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: float | None,
        operation_name: str,
    ) -> T:
        if not timeout:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(operation_name, timeout) from e

    # -------------------------------------------------------------------------
    # Circuit Breaker
    # -------------------------------------------------------------------------

    async def execute_with_circuit_breaker(
        self,
        operation: Callable[[], Awaitable[T]],
        service_key: str,
        policy: RetryPolicy | None = None,
        operation_name: str = "operation",
        category: ErrorCategory = ErrorCategory.SYSTEM,
    ) -> T:
        """Run ``operation`` with retries behind the breaker for ``service_key``.

        A fully failed ``execute_with_retry`` call counts as one failure.

        Raises:
            CircuitOpenError: If the breaker is open, or half-open with its
                trial call already running.
            Exception: Whatever ``execute_with_retry`` raises.
        """
        breaker = self._get_breaker(service_key)
        now = self._clock()

        if breaker.state is CircuitState.OPEN:
            elapsed = now - (breaker.opened_at or now)
            if elapsed < self.breaker_config.reset_timeout:
                retry_in = self.breaker_config.reset_timeout - elapsed
                logger.warning(
                    f"Circuit breaker open for {service_key}, rejecting {operation_name}",
                    extra={
                        "extra_data": {
                            "service_key": service_key,
                            "operation": operation_name,
                            "retry_in": round(retry_in, 2),
                        }
                    },
                )
                raise CircuitOpenError(service_key, retry_in)

            breaker.state = CircuitState.HALF_OPEN
            breaker.trial_in_flight = False
            logger.info(
                f"Circuit breaker {service_key} moved to half-open",
                extra={"extra_data": {"service_key": service_key}},
            )

        is_trial = False
        if breaker.state is CircuitState.HALF_OPEN:
            if breaker.trial_in_flight:
                raise CircuitOpenError(service_key)
            breaker.trial_in_flight = True
            is_trial = True

        try:
            result = await self.execute_with_retry(operation, policy, operation_name, category)
        except Exception:
            self._record_failure(service_key, breaker, is_trial)
            raise
        finally:
            if is_trial:
                breaker.trial_in_flight = False

        self._record_success(service_key, breaker)
        return result

    def _record_failure(
        self, service_key: str, breaker: CircuitBreakerState, is_trial: bool
    ) -> None:
        now = self._clock()
        breaker.failures += 1
        breaker.last_failure_time = now

        if is_trial or breaker.failures >= self.breaker_config.failure_threshold:
            breaker.state = CircuitState.OPEN
            breaker.opened_at = now
            logger.error(
                f"Circuit breaker {service_key} opened after {breaker.failures} failures",
                extra={
                    "extra_data": {
                        "service_key": service_key,
                        "failures": breaker.failures,
                        "trial": is_trial,
                    }
                },
            )

    def _record_success(self, service_key: str, breaker: CircuitBreakerState) -> None:
        if breaker.state is CircuitState.HALF_OPEN:
            logger.info(
                f"Circuit breaker {service_key} closed after successful trial",
                extra={"extra_data": {"service_key": service_key}},
            )
        breaker.state = CircuitState.CLOSED
        breaker.failures = 0
        breaker.opened_at = None

    def _get_breaker(self, service_key: str) -> CircuitBreakerState:
        if service_key not in self._breakers:
            self._breakers[service_key] = CircuitBreakerState()
        return self._breakers[service_key]

    def reset_circuit_breaker(self, service_key: str) -> None:
        """Forget all breaker state for ``service_key``."""
        self._breakers.pop(service_key, None)
        logger.info(
            f"Circuit breaker {service_key} reset",
            extra={"extra_data": {"service_key": service_key}},
        )

    def get_circuit_breaker_status(self, service_key: str) -> CircuitBreakerState | None:
        """Get a snapshot of the breaker for ``service_key``.

        Returns:
            Copy of the breaker state, or None if the key was never used.
        """
        breaker = self._breakers.get(service_key)
        if breaker is None:
            return None
        return replace(breaker)


# =============================================================================
# Global service instance
# =============================================================================


_default_service: RetryService | None = None


def get_retry_service() -> RetryService:
    """Get the process-wide RetryService.

    Returns:
        RetryService singleton instance.
    """
    global _default_service
    if _default_service is None:
        _default_service = RetryService()
    return _default_service


def reset_retry_service() -> None:
    """Reset the process-wide RetryService.

    Useful for testing to ensure breakers start closed.
    """
    global _default_service
    _default_service = None
