"""Unit tests for the response generator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from media_concierge.services.response_generator import ResponseGenerator


def build_generator(llm, retry_service, fast_policy, **kwargs):
    return ResponseGenerator(llm=llm, retry_service=retry_service, policy=fast_policy, **kwargs)


class TestResponseGenerator:
    """Tests for ResponseGenerator.generate."""

    def test_uses_model_reply(self, retry_service, fast_policy):
        """Should return the model's reply with the system prompt first."""
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content="  Added it!  "))
        generator = build_generator(llm, retry_service, fast_policy)
        history = [HumanMessage(content="download the matrix")]

        reply = asyncio.run(
            generator.generate(history, "resolved", "added", {"title": "The Matrix"})
        )

        assert reply.content == "Added it!"
        messages = llm.ainvoke.call_args.args[0]
        assert isinstance(messages[0], SystemMessage)
        assert "The Matrix" in messages[0].content
        assert messages[1:] == history

    def test_falls_back_when_model_fails(self, retry_service, fast_policy):
        """Should render the deterministic template when the model raises."""
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("boom"))
        generator = build_generator(llm, retry_service, fast_policy)

        reply = asyncio.run(
            generator.generate([], "error", "no_results", {"query": "dune"})
        )

        assert reply.content == 'I couldn\'t find anything matching "dune".'

    def test_falls_back_on_empty_reply(self, retry_service, fast_policy):
        """Should treat a blank model reply as a failure."""
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content="   "))
        generator = build_generator(llm, retry_service, fast_policy)

        reply = asyncio.run(
            generator.generate([], "error", "operation_failed", {"message": "Couldn't add X"})
        )

        assert reply.content == "Couldn't add X"

    def test_falls_back_when_model_unavailable(self, retry_service, fast_policy):
        """Should fall back when the model cannot be created (no API key)."""
        factory = MagicMock(side_effect=ValueError("OPENAI_API_KEY environment variable is required"))
        generator = ResponseGenerator(
            retry_service=retry_service, policy=fast_policy, llm_factory=factory
        )

        reply = asyncio.run(generator.generate([], "error", "clarify_query", {}))

        assert reply.content == "Which movie or show are you looking for?"

    def test_unknown_template_uses_message(self, retry_service, fast_policy):
        """Should fall back to the message for an unknown template key."""
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content="unused"))
        generator = build_generator(llm, retry_service, fast_policy)

        reply = asyncio.run(generator.generate([], "error", "mystery", {"message": "hello"}))

        assert reply.content == "hello"
        llm.ainvoke.assert_not_called()
