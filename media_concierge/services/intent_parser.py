"""Intent and selection extraction from chat messages.

The parser turns free text into the pieces the resolution pipeline needs:
a search query, an ordinal/year selection and a season/episode selection.
Every model call goes through the shared RetryService behind the "openai"
circuit breaker.

Query extraction never fails: it walks an ordered ladder of steps, each
returning a ParseAttempt, and the last step is a deterministic stop-word
filter. Selection parsing has no fallback; a failure raises ParseError and
``parse_initial`` turns that into ``None`` for the affected field only.
"""

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from media_concierge.core.exceptions import ParseError
from media_concierge.core.logging_config import get_logger
from media_concierge.models.catalog_models import MediaKind
from media_concierge.models.context_models import (
    ContextKind,
    PendingSelectionContext,
    context_kind,
)
from media_concierge.models.selection_models import SelectionCriterion, StructuredSelection
from media_concierge.services.llm_config import LLM_SERVICE_KEY, get_parser_llm
from media_concierge.services.prompts import (
    EXTRACT_QUERY_PROMPT,
    SELECTION_PARSING_PROMPT,
    STRUCTURED_SELECTION_PARSING_PROMPT,
    TOPIC_SWITCH_DETECTION_PROMPT,
)
from media_concierge.services.resilience import (
    ErrorCategory,
    RetryPolicy,
    RetryService,
    get_retry_service,
)

logger = get_logger(__name__)

_ACTION_WORDS = re.compile(
    r"\b(get rid of|search for|look for|download|add|get|grab|find|delete|remove|unmonitor)\b",
    re.IGNORECASE,
)
_MEDIA_NOUNS = re.compile(r"\b(show|series|tv|television|movie|film|the)\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_EDGE_PUNCTUATION = " \t\n\"'.,!?;:"
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

_REMOVAL_WORDS = re.compile(r"\b(delete|remove|unmonitor|get rid of)\b", re.IGNORECASE)
_SERIES_WORDS = re.compile(
    r"\b(show|shows|series|tv|television|season|seasons|episode|episodes)\b", re.IGNORECASE
)
_MOVIE_WORDS = re.compile(r"\b(movie|movies|film|films)\b", re.IGNORECASE)
_STATUS_PHRASES = re.compile(
    r"\b(download status|download progress|downloading|downloads)\b", re.IGNORECASE
)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ParseAttempt:
    """Outcome of one step of the query extraction ladder."""

    step: str
    value: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.value)


class InitialParse(BaseModel):
    """Everything extracted from the first message of a request.

    ``query`` is always present; the selections are None when the message
    did not contain one or when parsing it failed.
    """

    query: str
    selection: SelectionCriterion | None = None
    structured_selection: StructuredSelection | None = None


# =============================================================================
# Helpers
# =============================================================================


def strip_stop_words(text: str) -> str:
    """Remove action verbs and media nouns from text.

    Args:
        text: Raw user message.

    Returns:
        Lower-cased remainder with collapsed whitespace.
    """
    remainder = _ACTION_WORDS.sub(" ", text.lower())
    remainder = _MEDIA_NOUNS.sub(" ", remainder)
    remainder = _WHITESPACE.sub(" ", remainder)
    return remainder.strip(_EDGE_PUNCTUATION)


def strip_surrounding_quotes(text: str) -> str:
    return re.sub(r"^[\"']|[\"']$", "", text.strip()).strip()


def is_status_request(text: str) -> bool:
    """Whether a message asks about current downloads."""
    return _STATUS_PHRASES.search(text) is not None


def named_media_kind(text: str) -> MediaKind | None:
    """The media kind a message names explicitly, or None if it names neither or both."""
    is_series = _SERIES_WORDS.search(text) is not None
    is_movie = _MOVIE_WORDS.search(text) is not None
    if is_series == is_movie:
        return None
    return MediaKind.SERIES if is_series else MediaKind.MOVIE


def detect_operation(text: str, default_media: MediaKind = MediaKind.MOVIE) -> ContextKind:
    """Guess the operation family from keywords in a message.

    Removal verbs select a remove operation. The media kind is the one the
    message names, else ``default_media``.
    """
    is_removal = _REMOVAL_WORDS.search(text) is not None
    is_series = (named_media_kind(text) or default_media) is MediaKind.SERIES

    if is_removal:
        return ContextKind.SERIES_REMOVE if is_series else ContextKind.MOVIE_REMOVE
    return ContextKind.SERIES_ADD if is_series else ContextKind.MOVIE_ADD


def _load_json_object(raw: str) -> dict:
    cleaned = _CODE_FENCE.sub("", raw.strip())
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"Model returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError(f"Model returned {type(payload).__name__}, expected an object")
    if "error" in payload:
        raise ParseError(f"Model reported no selection: {payload['error']}")
    return payload


# =============================================================================
# Intent Parser
# =============================================================================


class IntentParser:
    """LLM-assisted parser for queries and selections.

    Args:
        llm: Chat model to use. If None, one is created from the parser
            LLM config on first use (so a missing API key surfaces as a
            parse failure, not a construction error).
        retry_service: Shared retry/circuit-breaker service.
        policy: Retry policy for model calls.
    """

    def __init__(
        self,
        llm: BaseChatModel | None = None,
        retry_service: RetryService | None = None,
        policy: RetryPolicy | None = None,
        llm_factory: Callable[[], BaseChatModel] = get_parser_llm,
    ):
        self._llm = llm
        self._llm_factory = llm_factory
        self.retry_service = retry_service or get_retry_service()
        self.policy = policy or RetryPolicy.from_env("llm")

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = self._llm_factory()
        return self._llm

    async def _invoke_model(self, system_prompt: str, text: str, operation_name: str) -> str:
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=text)]
        response = await self.retry_service.execute_with_circuit_breaker(
            lambda: self.llm.ainvoke(messages),
            service_key=LLM_SERVICE_KEY,
            policy=self.policy,
            operation_name=operation_name,
            category=ErrorCategory.LLM_API,
        )
        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        return str(content)

    # -------------------------------------------------------------------------
    # Query extraction
    # -------------------------------------------------------------------------

    async def _model_query_step(self, text: str) -> ParseAttempt:
        try:
            raw = await self._invoke_model(EXTRACT_QUERY_PROMPT, text, "llm.extract_query")
        except Exception as e:
            return ParseAttempt(step="model", error=e)

        extracted = strip_surrounding_quotes(raw)
        return ParseAttempt(step="model", value=extracted or text.strip())

    async def _stop_word_step(self, text: str) -> ParseAttempt:
        return ParseAttempt(step="stop_words", value=strip_stop_words(text))

    def _query_ladder(self) -> list[Callable[[str], Awaitable[ParseAttempt]]]:
        return [self._model_query_step, self._stop_word_step]

    async def extract_query(self, text: str) -> str:
        """Extract the search query from a message.

        Args:
            text: Raw user message.

        Returns:
            The search query; empty only when the message has no
            non-stop-word content.
        """
        attempts = []
        for step in self._query_ladder():
            attempt = await step(text)
            attempts.append(attempt)
            if attempt.ok:
                logger.info(
                    "Extracted search query",
                    extra={
                        "extra_data": {
                            "step": attempt.step,
                            "query": attempt.value,
                            "failed_steps": [a.step for a in attempts if not a.ok],
                        }
                    },
                )
                return attempt.value or ""

            if attempt.error is not None:
                logger.warning(
                    f"Query extraction step '{attempt.step}' failed, falling back",
                    extra={"extra_data": {"step": attempt.step, "error": str(attempt.error)}},
                )

        return ""

    # -------------------------------------------------------------------------
    # Selection parsing
    # -------------------------------------------------------------------------

    async def _parse_json(self, system_prompt: str, text: str, operation_name: str) -> dict:
        try:
            raw = await self._invoke_model(system_prompt, text, operation_name)
        except Exception as e:
            raise ParseError(f"{operation_name} model call failed: {e}") from e

        logger.debug(
            "Raw selection parse response",
            extra={"extra_data": {"operation": operation_name, "raw": raw[:200]}},
        )
        return _load_json_object(raw)

    async def parse_selection(self, text: str) -> SelectionCriterion:
        """Parse an ordinal or year selection.

        Raises:
            ParseError: If the model fails, returns invalid JSON, reports an
                error, or returns an unrecognized shape.
        """
        payload = await self._parse_json(SELECTION_PARSING_PROMPT, text, "llm.parse_selection")
        try:
            return SelectionCriterion.model_validate(payload)
        except ValidationError as e:
            raise ParseError(f"Invalid selection payload: {e.error_count()} errors") from e

    async def parse_structured_selection(self, text: str) -> StructuredSelection:
        """Parse a season/episode selection.

        Raises:
            ParseError: Same contract as parse_selection.
        """
        payload = await self._parse_json(
            STRUCTURED_SELECTION_PARSING_PROMPT, text, "llm.parse_structured_selection"
        )
        try:
            return StructuredSelection.model_validate(payload)
        except ValidationError as e:
            raise ParseError(f"Invalid season selection payload: {e.error_count()} errors") from e

    async def _optional(self, parse: Callable[[str], Awaitable], text: str, name: str):
        try:
            return await parse(text)
        except ParseError as e:
            logger.debug(
                f"No {name} in message",
                extra={"extra_data": {"parser": name, "reason": str(e)}},
            )
            return None

    async def parse_initial(self, text: str) -> InitialParse:
        """Extract query, selection and season selection concurrently.

        Args:
            text: The first message of a request.

        Returns:
            InitialParse; a failing sub-parse only nulls its own field.
        """
        query, selection, structured = await asyncio.gather(
            self.extract_query(text),
            self._optional(self.parse_selection, text, "selection"),
            self._optional(self.parse_structured_selection, text, "structured_selection"),
        )

        result = InitialParse(query=query, selection=selection, structured_selection=structured)
        logger.info(
            "Parsed initial request",
            extra={
                "extra_data": {
                    "query": result.query,
                    "selection": selection.describe() if selection else None,
                    "has_structured_selection": structured is not None,
                }
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Topic switches
    # -------------------------------------------------------------------------

    async def detect_topic_switch(self, text: str, context: PendingSelectionContext) -> bool:
        """Ask the model whether a message abandons a pending question.

        Any model failure counts as a continuation, so an outage never drops
        a pending context.

        Args:
            text: Follow-up message.
            context: The live pending context.

        Returns:
            True if the message starts a new request.
        """
        titles = ", ".join(item.display_name for item in context.candidates[:5])
        prompt = (
            f"Pending question: which of [{titles}] for \"{context.query}\" "
            f"({context_kind(context).value})\n"
            f"User message: {text}"
        )
        try:
            raw = await self._invoke_model(
                TOPIC_SWITCH_DETECTION_PROMPT, prompt, "llm.detect_topic_switch"
            )
        except Exception as e:
            logger.warning(
                "Topic switch check failed, continuing pending request",
                extra={"extra_data": {"error": str(e)}},
            )
            return False

        switched = raw.strip().strip(_EDGE_PUNCTUATION).upper() == "SWITCH"
        logger.info(
            "Checked for topic switch",
            extra={"extra_data": {"switched": switched, "raw": raw[:20]}},
        )
        return switched
