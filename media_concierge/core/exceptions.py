"""Exception hierarchy for Media Concierge.

Every error raised by the resolution pipeline derives from
MediaConciergeError. Parse and context errors are recovered locally;
external-service errors are classified and retried by the resilience layer
before they surface to the orchestrator.
"""


class MediaConciergeError(Exception):
    """Base exception for all Media Concierge errors."""

    pass


class ParseError(MediaConciergeError):
    """Raised when the model output cannot be turned into a selection or query."""

    pass


class ContextStateError(MediaConciergeError):
    """Raised when a pending context is missing, expired or of the wrong kind."""

    pass


class CatalogConfigurationError(MediaConciergeError):
    """Raised when a catalog client is missing its base URL or API key."""

    pass


class ExternalServiceError(MediaConciergeError):
    """Raised when an external service (LLM, catalog) fails."""

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.service = service


class OperationTimeoutError(ExternalServiceError):
    """Raised when a single attempt exceeds its retry-policy timeout."""

    def __init__(self, operation_name: str, timeout: float):
        super().__init__(f"{operation_name} timed out after {timeout}s")
        self.operation_name = operation_name
        self.timeout = timeout


class CircuitOpenError(ExternalServiceError):
    """Raised when a call is rejected because the service's breaker is open."""

    def __init__(self, service_key: str, retry_in: float | None = None):
        message = f"Circuit breaker open for {service_key}"
        if retry_in is not None:
            message += f" (retry in {retry_in:.1f}s)"
        super().__init__(message, service=service_key)
        self.service_key = service_key
        self.retry_in = retry_in
