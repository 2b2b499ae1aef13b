"""Resilience layer: error classification, retries and circuit breakers."""

from media_concierge.services.resilience.classifier import (
    ClassifiedError,
    ErrorCategory,
    ErrorClassifier,
    ErrorSeverity,
    ErrorType,
    parse_retry_after,
)
from media_concierge.services.resilience.retry import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    RetryPolicy,
    RetryService,
    get_retry_service,
    reset_retry_service,
)

__all__ = [
    # Classification
    "ClassifiedError",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorSeverity",
    "ErrorType",
    "parse_retry_after",
    # Execution
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    "RetryPolicy",
    "RetryService",
    "get_retry_service",
    "reset_retry_service",
]
