"""Unit tests for the resilience layer (classifier, retries, circuit breaker)."""

import asyncio
import os
from unittest.mock import AsyncMock, patch

import httpx
import openai
import pytest

from media_concierge.core.exceptions import CircuitOpenError, OperationTimeoutError
from media_concierge.services.resilience import (
    CircuitBreakerConfig,
    CircuitState,
    ErrorCategory,
    ErrorClassifier,
    ErrorSeverity,
    ErrorType,
    RetryPolicy,
    RetryService,
    get_retry_service,
    parse_retry_after,
    reset_retry_service,
)

REQUEST = httpx.Request("GET", "http://radarr.local/api/v3/movie/lookup")


def http_status_error(status: int, headers: dict | None = None) -> httpx.HTTPStatusError:
    response = httpx.Response(status, headers=headers or {}, request=REQUEST)
    return httpx.HTTPStatusError(f"HTTP {status}", request=REQUEST, response=response)


def openai_status_error(status: int, headers: dict | None = None) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return openai.APIStatusError(f"status {status}", response=response, body=None)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(sleeps, clock):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryService(
        breaker_config=CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0),
        sleep=fake_sleep,
        clock=clock,
        random_fn=lambda: 0.5,
    )


NO_JITTER = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=60.0, jitter=False, timeout=None)


# =============================================================================
# Classifier Tests
# =============================================================================


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_parses_seconds_case_insensitively(self):
        """Should read Retry-After regardless of header case."""
        assert parse_retry_after({"Retry-After": "7"}) == 7.0
        assert parse_retry_after({"retry-after": "3"}) == 3.0

    def test_missing_or_invalid(self):
        """Should return None when absent or not an integer."""
        assert parse_retry_after(None) is None
        assert parse_retry_after({}) is None
        assert parse_retry_after({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) is None


class TestErrorClassifier:
    """Tests for ErrorClassifier."""

    @pytest.fixture
    def classifier(self):
        return ErrorClassifier()

    def test_rate_limit_is_retryable_with_retry_after(self, classifier):
        """Should treat 429 as retryable and carry the Retry-After hint."""
        result = classifier.classify(
            http_status_error(429, {"Retry-After": "12"}), ErrorCategory.MEDIA_API
        )

        assert result.is_retryable is True
        assert result.error_type == ErrorType.RATE_LIMIT
        assert result.retry_after == 12.0

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_retryable(self, classifier, status):
        """Should retry 5xx gateway/server errors with HIGH severity."""
        result = classifier.classify(http_status_error(status), ErrorCategory.MEDIA_API)

        assert result.is_retryable is True
        assert result.error_type == ErrorType.SERVER_ERROR
        assert result.severity == ErrorSeverity.HIGH

    def test_auth_error_not_retryable(self, classifier):
        """Should never retry a 401 and flag it critical."""
        result = classifier.classify(openai_status_error(401), ErrorCategory.LLM_API)

        assert result.is_retryable is False
        assert result.error_type == ErrorType.AUTHENTICATION_ERROR
        assert result.severity == ErrorSeverity.CRITICAL

    @pytest.mark.parametrize("status", [400, 404, 422])
    def test_validation_errors_not_retryable(self, classifier, status):
        """Should not retry request validation failures."""
        result = classifier.classify(openai_status_error(status), ErrorCategory.LLM_API)

        assert result.is_retryable is False
        assert result.error_type == ErrorType.VALIDATION_ERROR

    def test_unlisted_status_retryable_only_when_5xx(self, classifier):
        """Should fall back to status >= 500 for unlisted codes."""
        assert classifier.classify(http_status_error(507), ErrorCategory.MEDIA_API).is_retryable
        result = classifier.classify(http_status_error(409), ErrorCategory.MEDIA_API)
        assert result.is_retryable is False
        assert result.error_type == ErrorType.CLIENT_ERROR

    def test_openai_timeout_is_retryable(self, classifier):
        """Should classify openai timeouts as retryable timeouts."""
        error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com"))
        result = classifier.classify(error, ErrorCategory.LLM_API)

        assert result.is_retryable is True
        assert result.error_type == ErrorType.TIMEOUT

    def test_connection_errors_are_network_errors(self, classifier):
        """Should retry connection failures from either client library."""
        httpx_error = httpx.ConnectError("refused", request=REQUEST)
        openai_error = openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.openai.com")
        )

        for error, category in (
            (httpx_error, ErrorCategory.MEDIA_API),
            (openai_error, ErrorCategory.LLM_API),
        ):
            result = classifier.classify(error, category)
            assert result.is_retryable is True
            assert result.error_type == ErrorType.NETWORK_ERROR

    def test_operation_timeout_retryable(self, classifier):
        """Should retry attempts that exceeded the policy timeout."""
        result = classifier.classify(OperationTimeoutError("op", 1.0), ErrorCategory.MEDIA_API)

        assert result.is_retryable is True
        assert result.error_type == ErrorType.TIMEOUT

    def test_unknown_error_not_retryable(self, classifier):
        """Should not retry programming errors."""
        result = classifier.classify(ValueError("boom"), ErrorCategory.LLM_API)

        assert result.is_retryable is False
        assert result.error_type == ErrorType.UNKNOWN_ERROR

    def test_system_category(self, classifier):
        """Should retry only timeouts in the system category."""
        assert classifier.classify(asyncio.TimeoutError(), ErrorCategory.SYSTEM).is_retryable
        result = classifier.classify(RuntimeError("x"), ErrorCategory.SYSTEM)
        assert result.is_retryable is False
        assert result.severity == ErrorSeverity.HIGH

    def test_http_client_category(self, classifier):
        """Should apply the generic HTTP rule set."""
        assert classifier.classify(http_status_error(408), ErrorCategory.HTTP_CLIENT).is_retryable
        assert not classifier.classify(http_status_error(403), ErrorCategory.HTTP_CLIENT).is_retryable


# =============================================================================
# RetryPolicy / CircuitBreakerConfig Tests
# =============================================================================


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        """Should default to 3 attempts, 1s base, 2x backoff, jitter."""
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.backoff_factor == 2.0
        assert policy.jitter is True

    def test_llm_policy(self):
        """Should use a 30s delay cap and 15s attempt timeout for the LLM."""
        policy = RetryPolicy.for_llm()

        assert policy.max_delay == 30.0
        assert policy.timeout == 15.0

    def test_from_env_overrides(self):
        """Should apply <SERVICE>_RETRY_* overrides."""
        env = {"CATALOG_RETRY_MAX_ATTEMPTS": "5", "CATALOG_RETRY_TIMEOUT": "4.5"}
        with patch.dict(os.environ, env, clear=True):
            policy = RetryPolicy.from_env("catalog")

        assert policy.max_attempts == 5
        assert policy.timeout == 4.5
        assert policy.max_delay == 60.0

    def test_breaker_config_from_env(self):
        """Should read breaker thresholds from env."""
        env = {
            "CIRCUIT_BREAKER_FAILURE_THRESHOLD": "2",
            "CIRCUIT_BREAKER_RESET_TIMEOUT": "10",
        }
        with patch.dict(os.environ, env, clear=True):
            config = CircuitBreakerConfig.from_env()

        assert config.failure_threshold == 2
        assert config.reset_timeout == 10.0


# =============================================================================
# Retry Tests
# =============================================================================


class TestComputeDelay:
    """Tests for RetryService.compute_delay."""

    def test_exponential_backoff_without_jitter(self, service):
        """Should double the delay on each retry."""
        assert service.compute_delay(1, NO_JITTER) == 1.0
        assert service.compute_delay(2, NO_JITTER) == 2.0
        assert service.compute_delay(3, NO_JITTER) == 4.0

    def test_delay_capped(self, service):
        """Should never exceed max_delay."""
        policy = RetryPolicy(base_delay=10.0, max_delay=15.0, jitter=False)

        assert service.compute_delay(3, policy) == 15.0

    def test_full_jitter(self, service):
        """Should scale the delay by the jitter factor."""
        policy = RetryPolicy(base_delay=4.0, jitter=True)

        assert service.compute_delay(1, policy) == 2.0

    def test_retry_after_raises_delay_within_cap(self, service):
        """Should honor Retry-After but still cap at max_delay."""
        classification = ErrorClassifier().classify(
            http_status_error(429, {"Retry-After": "120"}), ErrorCategory.MEDIA_API
        )

        assert service.compute_delay(1, NO_JITTER, classification) == 60.0


class TestExecuteWithRetry:
    """Tests for RetryService.execute_with_retry."""

    def test_success_first_attempt(self, service, sleeps):
        """Should return immediately without sleeping."""
        operation = AsyncMock(return_value="ok")

        result = asyncio.run(service.execute_with_retry(operation, NO_JITTER, "op"))

        assert result == "ok"
        assert operation.await_count == 1
        assert sleeps == []

    def test_retries_retryable_errors(self, service, sleeps):
        """Should retry a retryable error and succeed."""
        operation = AsyncMock(side_effect=[http_status_error(503), "ok"])

        result = asyncio.run(
            service.execute_with_retry(operation, NO_JITTER, "op", ErrorCategory.MEDIA_API)
        )

        assert result == "ok"
        assert operation.await_count == 2
        assert sleeps == [1.0]

    def test_non_retryable_raises_immediately(self, service, sleeps):
        """Should re-raise a non-retryable error after one attempt."""
        operation = AsyncMock(side_effect=http_status_error(401))

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(
                service.execute_with_retry(operation, NO_JITTER, "op", ErrorCategory.MEDIA_API)
            )

        assert operation.await_count == 1
        assert sleeps == []

    def test_exhaustion_raises_last_error(self, service, sleeps):
        """Should raise after max_attempts with no wait after the last attempt."""
        operation = AsyncMock(side_effect=http_status_error(500))

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(
                service.execute_with_retry(operation, NO_JITTER, "op", ErrorCategory.MEDIA_API)
            )

        assert operation.await_count == 3
        assert sleeps == [1.0, 2.0]

    def test_attempt_timeout(self, service):
        """Should fail a slow attempt with OperationTimeoutError."""
        policy = RetryPolicy(max_attempts=1, timeout=0.01, jitter=False)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeoutError):
            asyncio.run(service.execute_with_retry(slow, policy, "slow"))


# =============================================================================
# Circuit Breaker Tests
# =============================================================================


class TestCircuitBreaker:
    """Tests for RetryService.execute_with_circuit_breaker."""

    SINGLE = RetryPolicy(max_attempts=1, timeout=None, jitter=False)

    def _fail(self, service, key="radarr"):
        operation = AsyncMock(side_effect=http_status_error(500))
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(
                service.execute_with_circuit_breaker(
                    operation, key, self.SINGLE, "op", ErrorCategory.MEDIA_API
                )
            )

    def test_opens_after_threshold(self, service):
        """Should open after failure_threshold failed calls and reject quickly."""
        for _ in range(3):
            self._fail(service)

        assert service.get_circuit_breaker_status("radarr").state == CircuitState.OPEN

        operation = AsyncMock(return_value="ok")
        with pytest.raises(CircuitOpenError):
            asyncio.run(service.execute_with_circuit_breaker(operation, "radarr", self.SINGLE))
        operation.assert_not_awaited()

    def test_half_open_success_closes(self, service, clock):
        """Should run one trial after reset_timeout and close on success."""
        for _ in range(3):
            self._fail(service)
        clock.advance(31)

        result = asyncio.run(
            service.execute_with_circuit_breaker(AsyncMock(return_value="ok"), "radarr", self.SINGLE)
        )

        status = service.get_circuit_breaker_status("radarr")
        assert result == "ok"
        assert status.state == CircuitState.CLOSED
        assert status.failures == 0

    def test_half_open_failure_reopens(self, service, clock):
        """Should re-open immediately when the trial fails."""
        for _ in range(3):
            self._fail(service)
        clock.advance(31)

        self._fail(service)

        assert service.get_circuit_breaker_status("radarr").state == CircuitState.OPEN

    def test_half_open_rejects_concurrent_calls(self, service, clock):
        """Should allow only one trial call while half-open."""
        for _ in range(3):
            self._fail(service)
        clock.advance(31)

        async def scenario():
            gate = asyncio.Event()

            async def trial():
                await gate.wait()
                return "trial"

            first = asyncio.create_task(
                service.execute_with_circuit_breaker(trial, "radarr", self.SINGLE)
            )
            await asyncio.sleep(0)
            with pytest.raises(CircuitOpenError):
                await service.execute_with_circuit_breaker(
                    AsyncMock(return_value="second"), "radarr", self.SINGLE
                )
            gate.set()
            return await first

        assert asyncio.run(scenario()) == "trial"

    def test_success_resets_counter(self, service):
        """Should reset the failure counter after a closed-state success."""
        self._fail(service)
        self._fail(service)
        asyncio.run(
            service.execute_with_circuit_breaker(AsyncMock(return_value=1), "radarr", self.SINGLE)
        )
        self._fail(service)

        status = service.get_circuit_breaker_status("radarr")
        assert status.failures == 1
        assert status.state == CircuitState.CLOSED

    def test_breakers_are_per_key(self, service):
        """Should not share failures between services."""
        for _ in range(3):
            self._fail(service, "sonarr")

        assert service.get_circuit_breaker_status("radarr") is None
        assert service.get_circuit_breaker_status("sonarr").state == CircuitState.OPEN

    def test_reset_circuit_breaker(self, service):
        """Should forget breaker state on reset."""
        for _ in range(3):
            self._fail(service)

        service.reset_circuit_breaker("radarr")

        assert service.get_circuit_breaker_status("radarr") is None


class TestGlobalRetryService:
    """Tests for the process-wide accessor."""

    def test_singleton_and_reset(self):
        """Should return the same instance until reset."""
        reset_retry_service()
        first = get_retry_service()

        assert get_retry_service() is first
        reset_retry_service()
        assert get_retry_service() is not first
        reset_retry_service()
