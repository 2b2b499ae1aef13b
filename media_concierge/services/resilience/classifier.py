"""Error classification for the resilience layer.

Maps an exception raised by an external call to a ClassifiedError that
tells the retry loop whether another attempt is worthwhile and how long to
wait. Status-code errors come from two client libraries: ``openai`` for the
language model and ``httpx`` for the media catalog.
"""

import asyncio
from collections.abc import Mapping
from enum import Enum

import httpx
import openai
from pydantic import BaseModel, ConfigDict, Field

from media_concierge.core.exceptions import CircuitOpenError, OperationTimeoutError
from media_concierge.core.logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Classification Types
# =============================================================================


class ErrorType(str, Enum):
    NETWORK_ERROR = "network_error"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    AUTHENTICATION_ERROR = "authentication_error"
    PERMISSION_ERROR = "permission_error"
    VALIDATION_ERROR = "validation_error"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN_ERROR = "unknown_error"


class ErrorCategory(str, Enum):
    """External service families with their own classification rules."""

    LLM_API = "llm_api"
    MEDIA_API = "media_api"
    HTTP_CLIENT = "http_client"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ClassifiedError(BaseModel):
    """Retry decision derived from an exception.

    Attributes:
        is_retryable: Whether another attempt may succeed.
        error_type: Coarse error kind.
        category: Service family the rules were taken from.
        severity: How loudly the failure should be logged.
        retry_after: Server-requested wait in seconds (429 Retry-After).
    """

    model_config = ConfigDict(frozen=True)

    is_retryable: bool
    error_type: ErrorType
    category: ErrorCategory
    severity: ErrorSeverity
    retry_after: float | None = Field(default=None, ge=0)


# =============================================================================
# Helpers
# =============================================================================


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Parse a Retry-After header given in whole seconds.

    HTTP-date values are not supported and yield None.

    Args:
        headers: Response headers (any case-insensitive or plain mapping).

    Returns:
        Seconds to wait, or None when absent or unparseable.
    """
    if not headers:
        return None

    value = None
    for key, header_value in headers.items():
        if key.lower() == "retry-after":
            value = header_value
            break
    if value is None:
        return None

    try:
        seconds = int(str(value).strip())
    except ValueError:
        return None
    return float(max(seconds, 0))


def _status_and_headers(error: BaseException) -> tuple[int | None, Mapping[str, str] | None]:
    """Extract an HTTP status and headers from openai or httpx errors."""
    if isinstance(error, openai.APIStatusError):
        return error.status_code, error.response.headers
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code, error.response.headers
    return None, None


# =============================================================================
# Classifier
# =============================================================================


class ErrorClassifier:
    """Classifies exceptions from external calls into retry decisions."""

    def classify(self, error: BaseException, category: ErrorCategory) -> ClassifiedError:
        """Classify an error raised by a call in the given category.

        Args:
            error: The exception raised by the operation.
            category: Which service family the operation belongs to.

        Returns:
            ClassifiedError describing the retry decision.
        """
        logger.debug(
            "Classifying error",
            extra={
                "extra_data": {
                    "category": category.value,
                    "error_name": type(error).__name__,
                    "error_message": str(error),
                }
            },
        )

        if isinstance(error, CircuitOpenError):
            return ClassifiedError(
                is_retryable=False,
                error_type=ErrorType.CIRCUIT_OPEN,
                category=category,
                severity=ErrorSeverity.HIGH,
            )

        if category in (ErrorCategory.LLM_API, ErrorCategory.MEDIA_API):
            return self._classify_service_error(error, category)
        if category is ErrorCategory.HTTP_CLIENT:
            return self._classify_http_error(error)
        return self._classify_system_error(error)

    def _classify_service_error(
        self, error: BaseException, category: ErrorCategory
    ) -> ClassifiedError:
        status, headers = _status_and_headers(error)
        if status is None:
            return self._classify_network_error(error, category)

        if status == 429:
            return ClassifiedError(
                is_retryable=True,
                error_type=ErrorType.RATE_LIMIT,
                category=category,
                severity=ErrorSeverity.MEDIUM,
                retry_after=parse_retry_after(headers),
            )
        if status in (500, 502, 503, 504):
            return ClassifiedError(
                is_retryable=True,
                error_type=ErrorType.SERVER_ERROR,
                category=category,
                severity=ErrorSeverity.HIGH,
            )
        if status == 408:
            return ClassifiedError(
                is_retryable=True,
                error_type=ErrorType.TIMEOUT,
                category=category,
                severity=ErrorSeverity.MEDIUM,
            )
        if status == 401:
            return ClassifiedError(
                is_retryable=False,
                error_type=ErrorType.AUTHENTICATION_ERROR,
                category=category,
                severity=ErrorSeverity.CRITICAL,
            )
        if status == 403:
            return ClassifiedError(
                is_retryable=False,
                error_type=ErrorType.PERMISSION_ERROR,
                category=category,
                severity=ErrorSeverity.HIGH,
            )
        if status in (400, 404, 422):
            return ClassifiedError(
                is_retryable=False,
                error_type=ErrorType.VALIDATION_ERROR,
                category=category,
                severity=ErrorSeverity.MEDIUM,
            )

        return ClassifiedError(
            is_retryable=status >= 500,
            error_type=ErrorType.SERVER_ERROR if status >= 500 else ErrorType.CLIENT_ERROR,
            category=category,
            severity=ErrorSeverity.MEDIUM,
        )

    def _classify_http_error(self, error: BaseException) -> ClassifiedError:
        status, headers = _status_and_headers(error)
        if status is None:
            return self._classify_network_error(error, ErrorCategory.HTTP_CLIENT)

        return ClassifiedError(
            is_retryable=status >= 500 or status in (408, 429),
            error_type=_error_type_from_status(status),
            category=ErrorCategory.HTTP_CLIENT,
            severity=ErrorSeverity.HIGH if status >= 500 else ErrorSeverity.MEDIUM,
            retry_after=parse_retry_after(headers) if status == 429 else None,
        )

    def _classify_network_error(
        self, error: BaseException, category: ErrorCategory
    ) -> ClassifiedError:
        if _is_timeout(error):
            return ClassifiedError(
                is_retryable=True,
                error_type=ErrorType.TIMEOUT,
                category=category,
                severity=ErrorSeverity.MEDIUM,
            )

        # APITimeoutError subclasses APIConnectionError, so timeouts are checked first
        if isinstance(
            error, (openai.APIConnectionError, httpx.TransportError, ConnectionError)
        ):
            return ClassifiedError(
                is_retryable=True,
                error_type=ErrorType.NETWORK_ERROR,
                category=category,
                severity=ErrorSeverity.HIGH,
            )

        return _default_classification(category)

    def _classify_system_error(self, error: BaseException) -> ClassifiedError:
        if _is_timeout(error):
            return ClassifiedError(
                is_retryable=True,
                error_type=ErrorType.TIMEOUT,
                category=ErrorCategory.SYSTEM,
                severity=ErrorSeverity.MEDIUM,
            )

        return ClassifiedError(
            is_retryable=False,
            error_type=ErrorType.UNKNOWN_ERROR,
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.HIGH,
        )


def _is_timeout(error: BaseException) -> bool:
    return isinstance(
        error,
        (
            OperationTimeoutError,
            asyncio.TimeoutError,
            TimeoutError,
            httpx.TimeoutException,
            openai.APITimeoutError,
        ),
    )


def _error_type_from_status(status: int) -> ErrorType:
    if status == 429:
        return ErrorType.RATE_LIMIT
    if status == 408:
        return ErrorType.TIMEOUT
    if status == 401:
        return ErrorType.AUTHENTICATION_ERROR
    if status == 403:
        return ErrorType.PERMISSION_ERROR
    if status >= 500:
        return ErrorType.SERVER_ERROR
    if status >= 400:
        return ErrorType.CLIENT_ERROR
    return ErrorType.UNKNOWN_ERROR


def _default_classification(category: ErrorCategory) -> ClassifiedError:
    return ClassifiedError(
        is_retryable=False,
        error_type=ErrorType.UNKNOWN_ERROR,
        category=category,
        severity=ErrorSeverity.MEDIUM,
    )
