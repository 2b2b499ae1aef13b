"""Shared pytest fixtures."""

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from media_concierge.models.catalog_models import CatalogItem, LibraryFields
from media_concierge.services.resilience import CircuitBreakerConfig, RetryPolicy, RetryService


@pytest.fixture
def matrix_movies():
    """Fixture providing three movie search results."""
    return [
        CatalogItem(external_id=603, title="The Matrix", year=1999, genres=("Action",)),
        CatalogItem(external_id=604, title="The Matrix Reloaded", year=2003),
        CatalogItem(external_id=605, title="The Matrix Revolutions", year=2003),
    ]


@pytest.fixture
def office_series():
    """Fixture providing a single series search result."""
    return CatalogItem(external_id=73244, title="The Office", year=2005, status="ended")


@pytest.fixture
def library_movie():
    """Fixture providing a movie that is already in the library."""
    return CatalogItem(
        external_id=603,
        title="The Matrix",
        year=1999,
        library=LibraryFields(library_id=12, monitored=True, path="/movies/The Matrix (1999)"),
    )


@pytest.fixture
def fast_policy():
    """Single-attempt policy with no timeout or delays."""
    return RetryPolicy(max_attempts=1, base_delay=0, jitter=False, timeout=None)


@pytest.fixture
def retry_service():
    """RetryService that never sleeps and rarely opens breakers."""

    async def no_sleep(delay: float) -> None:
        return None

    return RetryService(
        breaker_config=CircuitBreakerConfig(failure_threshold=100, reset_timeout=30),
        sleep=no_sleep,
    )


def routed_llm(responses: dict[str, object]) -> MagicMock:
    """Build a fake chat model answering by system prompt.

    Args:
        responses: Map of system prompt text to reply content, or to an
            exception instance to raise.

    Returns:
        MagicMock whose ``ainvoke`` returns AIMessage replies.
    """
    llm = MagicMock()

    async def ainvoke(messages, *args, **kwargs):
        prompt = messages[0].content
        reply = responses.get(prompt)
        if reply is None:
            raise RuntimeError("unexpected prompt")
        if isinstance(reply, Exception):
            raise reply
        return AIMessage(content=reply)

    llm.ainvoke = MagicMock(side_effect=ainvoke)
    return llm


@pytest.fixture
def make_llm():
    """Fixture exposing the routed fake chat model factory."""
    return routed_llm
