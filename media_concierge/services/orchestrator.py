"""Request-resolution state machine with LangGraph.

This module resolves a multi-turn chat request ("download the matrix", then
"the second one") into a single add/remove against a media catalog:
1. Loads the user's pending selection context (if any) and decides whether
   the message continues it or starts a new request
2. Routes the turn to the new-request, pending-selection,
   season-selection or download-status step
3. Executes the catalog mutation once the request is fully resolved
4. Renders the reply and screens it for invented titles
5. Clears the pending context when the turn ends the request

The graph follows:
START -> load_context -> (new_request | pending_selection | granular_selection)
      -> [execute_mutation] -> render_reply -> validate_reply -> finalize -> END
and, for download status questions:
START -> load_context -> download_status -> render_reply -> validate_reply -> finalize -> END
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage
from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from media_concierge.core.exceptions import (
    CatalogConfigurationError,
    CircuitOpenError,
    ContextStateError,
    OperationTimeoutError,
    ParseError,
)
from media_concierge.core.logging_config import get_logger
from media_concierge.models.catalog_models import (
    CatalogItem,
    MediaKind,
    OperationOutcome,
    QueueItem,
)
from media_concierge.models.context_models import (
    ContextKind,
    PendingSelectionContext,
    build_context,
    context_kind,
)
from media_concierge.models.selection_models import ResolvedSeriesSelection, StructuredSelection
from media_concierge.services.catalog import CatalogClient, CatalogConfig, RadarrClient, SonarrClient
from media_concierge.services.context_store import (
    PendingContextStore,
    UserTurnSequencer,
    get_context_store,
)
from media_concierge.services.intent_parser import (
    IntentParser,
    detect_operation,
    is_status_request,
    named_media_kind,
)
from media_concierge.services.resilience import (
    ErrorCategory,
    RetryPolicy,
    RetryService,
    get_retry_service,
)
from media_concierge.services.response_generator import ResponseGenerator
from media_concierge.services.selection_resolver import (
    resolve_selection,
    resolve_structured_selection,
)
from media_concierge.services.validators import ResponseValidator

logger = get_logger(__name__)


# =============================================================================
# Enums and Constants
# =============================================================================


class ResolutionPhase(str, Enum):
    """Lifecycle phase a turn ends in."""

    NEW = "new"
    PENDING = "pending"
    GRANULAR_PENDING = "granular_pending"
    RESOLVED = "resolved"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ResolutionPhase.RESOLVED, ResolutionPhase.ERROR)


class TurnIntent(str, Enum):
    """What a turn asks for."""

    REQUEST = "request"
    DOWNLOAD_STATUS = "download_status"


GENERIC_FAILURE_MESSAGE = "Something went wrong while handling that request. Please try again."


# =============================================================================
# Request/Response Models
# =============================================================================


class ResolutionRequest(BaseModel):
    """One inbound chat turn.

    Attributes:
        text: The user's message.
        history: Prior chat messages, oldest first.
        user_id: Id of the user the turn belongs to.
        operation: Explicit operation family; detected from keywords when None.
    """

    text: str = Field(description="The user's message")
    history: list[BaseMessage] = Field(default_factory=list, description="Prior chat messages")
    user_id: str = Field(description="Id of the user sending the message")
    operation: ContextKind | None = Field(
        default=None, description="Explicit operation; detected from the text when omitted"
    )


class ResolutionResult(BaseModel):
    """Outcome of one chat turn.

    Attributes:
        messages: Reply messages to send back.
        images: Poster URLs to show with the reply.
        phase: Phase the turn ended in.
        selected: Item the turn acted on, if any.
        outcome: Catalog outcome when a mutation ran.
        suspicious_titles: Titles in the reply that the turn never saw.
    """

    messages: list[AIMessage] = Field(default_factory=list, description="Reply messages")
    images: list[str] = Field(default_factory=list, description="Poster URLs")
    phase: ResolutionPhase = Field(description="Phase the turn ended in")
    selected: CatalogItem | None = Field(default=None, description="Item acted on")
    outcome: OperationOutcome | None = Field(default=None, description="Catalog outcome")
    suspicious_titles: list[str] = Field(
        default_factory=list, description="Possibly invented titles in the reply"
    )


# =============================================================================
# LangGraph State
# =============================================================================


class ResolutionState(BaseModel):
    """State for the resolution LangGraph execution."""

    # Input
    request: ResolutionRequest
    intent: TurnIntent = TurnIntent.REQUEST
    operation: ContextKind = ContextKind.MOVIE_ADD
    pending_context: PendingSelectionContext | None = None

    # Resolution
    phase: ResolutionPhase = ResolutionPhase.NEW
    query: str = ""
    candidates: list[CatalogItem] = Field(default_factory=list)
    chosen: CatalogItem | None = None
    series_selection: ResolvedSeriesSelection | None = None
    outcome: OperationOutcome | None = None
    queue: list[QueueItem] = Field(default_factory=list)

    # Rendering
    template_key: str = ""
    template_data: dict[str, Any] = Field(default_factory=dict)
    reply: AIMessage | None = None
    suspicious_titles: list[str] = Field(default_factory=list)
    context_cleared: bool = False


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class OrchestratorConfig:
    """Configuration for request resolution.

    Attributes:
        max_candidates: Most candidates stored in a context or listed to the user.
        serialize_user_turns: Run turns from the same user one at a time.
    """

    max_candidates: int = 10
    serialize_user_turns: bool = False

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Create config from environment variables.

        Environment variables:
            RESOLUTION_MAX_CANDIDATES: Candidate cap (default: 10)
            RESOLUTION_SERIALIZE_USER_TURNS: "true" to sequence same-user turns

        Returns:
            OrchestratorConfig from environment.
        """
        return cls(
            max_candidates=int(os.getenv("RESOLUTION_MAX_CANDIDATES", "10")),
            serialize_user_turns=os.getenv("RESOLUTION_SERIALIZE_USER_TURNS", "false").lower()
            in ("1", "true", "yes"),
        )


# =============================================================================
# Helpers
# =============================================================================


def format_candidate_list(candidates: list[CatalogItem]) -> str:
    """Render candidates as a numbered list (1-based)."""
    return "\n".join(f"{i}. {item.display_name}" for i, item in enumerate(candidates, 1))


def describe_error(error: Exception) -> str:
    """Short user-facing reason for a failed external call."""
    if isinstance(error, CircuitOpenError):
        return "the service is temporarily unavailable"
    if isinstance(error, OperationTimeoutError):
        return "the request timed out"
    text = str(error).strip()
    return text.splitlines()[0] if text else type(error).__name__


def require_context(
    context: PendingSelectionContext | None, operation: ContextKind
) -> PendingSelectionContext:
    """Return the context if it can continue ``operation``.

    Raises:
        ContextStateError: If there is no live context or it belongs to
            another operation family.
    """
    if context is None:
        raise ContextStateError("No pending context")
    if context_kind(context) != operation:
        raise ContextStateError(
            f"Pending context is {context.kind}, request is {operation.value}"
        )
    return context


def _selection_label(item: CatalogItem, selection: ResolvedSeriesSelection | None) -> str:
    if selection is not None:
        return selection.describe()
    return str(item.year) if item.year else "movie"


# =============================================================================
# Orchestrator Implementation
# =============================================================================


class Orchestrator:
    """Resolves chat turns into catalog operations.

    Every collaborator is injected; missing ones fall back to the process
    defaults (shared store, shared retry service, env-configured models).

    Attributes:
        config: Resolution settings.
        catalogs: Catalog client per media kind.
        store: Pending-context store.
        graph: The compiled LangGraph for execution.
    """

    def __init__(
        self,
        catalogs: Mapping[MediaKind, CatalogClient],
        config: OrchestratorConfig | None = None,
        store: PendingContextStore | None = None,
        parser: IntentParser | None = None,
        generator: ResponseGenerator | None = None,
        validator: ResponseValidator | None = None,
        retry_service: RetryService | None = None,
        catalog_policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self.catalogs = dict(catalogs)
        self.store = store or get_context_store()
        self.retry_service = retry_service or get_retry_service()
        self.parser = parser or IntentParser(retry_service=self.retry_service)
        self.generator = generator or ResponseGenerator(retry_service=self.retry_service)
        self.validator = validator or ResponseValidator()
        self.catalog_policy = catalog_policy or RetryPolicy.from_env("catalog")
        self._sequencer = UserTurnSequencer()
        self.graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph for one turn.

        Returns:
            Compiled StateGraph ready for execution.
        """
        graph = StateGraph(ResolutionState)

        graph.add_node("load_context", self._load_context_node)
        graph.add_node("new_request", self._new_request_node)
        graph.add_node("pending_selection", self._pending_selection_node)
        graph.add_node("granular_selection", self._granular_selection_node)
        graph.add_node("download_status", self._download_status_node)
        graph.add_node("execute_mutation", self._execute_mutation_node)
        graph.add_node("render_reply", self._render_reply_node)
        graph.add_node("validate_reply", self._validate_reply_node)
        graph.add_node("finalize", self._finalize_node)

        graph.set_entry_point("load_context")

        def route_turn(state: ResolutionState) -> str:
            if state.intent is TurnIntent.DOWNLOAD_STATUS:
                return "download_status"
            context = state.pending_context
            if context is None:
                return "new_request"
            if state.operation.media_kind is MediaKind.SERIES and len(context.candidates) == 1:
                return "granular_selection"
            return "pending_selection"

        graph.add_conditional_edges(
            "load_context",
            route_turn,
            {
                "new_request": "new_request",
                "pending_selection": "pending_selection",
                "granular_selection": "granular_selection",
                "download_status": "download_status",
            },
        )

        def ready_to_execute(state: ResolutionState) -> str:
            if state.chosen is not None and not state.phase.is_terminal:
                return "execute_mutation"
            return "render_reply"

        for node in ("new_request", "pending_selection", "granular_selection"):
            graph.add_conditional_edges(
                node,
                ready_to_execute,
                {"execute_mutation": "execute_mutation", "render_reply": "render_reply"},
            )

        graph.add_edge("execute_mutation", "render_reply")
        graph.add_edge("download_status", "render_reply")
        graph.add_edge("render_reply", "validate_reply")
        graph.add_edge("validate_reply", "finalize")
        graph.add_edge("finalize", END)

        return graph.compile()

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    def _catalog_for(self, operation: ContextKind) -> CatalogClient:
        client = self.catalogs.get(operation.media_kind)
        if client is None:
            raise CatalogConfigurationError(
                f"No catalog configured for {operation.media_kind.value}"
            )
        return client

    async def _call_catalog(self, client: CatalogClient, call, operation_name: str):
        return await self.retry_service.execute_with_circuit_breaker(
            call,
            service_key=client.service_name,
            policy=self.catalog_policy,
            operation_name=operation_name,
            category=ErrorCategory.MEDIA_API,
        )

    async def _find_candidates(self, operation: ContextKind, query: str) -> list[CatalogItem]:
        client = self._catalog_for(operation)
        if operation.is_removal:
            library = await self._call_catalog(
                client, client.list_library, f"{client.service_name}.list_library"
            )
            needle = query.lower()
            return [item for item in library if needle in item.title.lower()]

        return await self._call_catalog(
            client, lambda: client.search(query), f"{client.service_name}.search"
        )

    async def _optional_structured(self, text: str) -> StructuredSelection | None:
        try:
            return await self.parser.parse_structured_selection(text)
        except ParseError:
            return None

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def _load_context_node(self, state: ResolutionState) -> dict[str, Any]:
        """Pick the turn intent, the operation family and the live context.

        A live context is continued unless the message clearly starts a new
        request: it names the other media kind, or the parser model judges it
        a topic switch. Download status questions leave the context alone.
        """
        request = state.request
        context = self.store.get(request.user_id)

        if request.operation is None and is_status_request(request.text):
            logger.info(
                "Loaded download status turn",
                extra={
                    "extra_data": {"user_id": request.user_id, "has_context": context is not None}
                },
            )
            return {"intent": TurnIntent.DOWNLOAD_STATUS}

        if request.operation is not None:
            operation = request.operation
        elif context is not None:
            operation, switched = await self._continue_or_switch(request, context)
            if switched:
                context = None
        else:
            operation = detect_operation(request.text)

        if context is not None:
            try:
                context = require_context(context, operation)
            except ContextStateError as e:
                logger.info(
                    f"{e}; starting new request",
                    extra={
                        "extra_data": {"user_id": request.user_id, "operation": operation.value}
                    },
                )
                context = None

        logger.info(
            "Loaded resolution turn",
            extra={
                "extra_data": {
                    "user_id": request.user_id,
                    "operation": operation.value,
                    "has_context": context is not None,
                }
            },
        )
        return {"operation": operation, "pending_context": context}

    async def _continue_or_switch(
        self, request: ResolutionRequest, context: PendingSelectionContext
    ) -> tuple[ContextKind, bool]:
        """Operation for a message sent while a context is live, and whether it is a new request."""
        current = context_kind(context)
        named = named_media_kind(request.text)
        if named is not None and named is not current.media_kind:
            logger.info(
                f"Message names {named.value}, pending request is {current.value}",
                extra={"extra_data": {"user_id": request.user_id}},
            )
            return detect_operation(request.text), True

        if await self.parser.detect_topic_switch(request.text, context):
            logger.info(
                "Message starts a new request, dropping pending context",
                extra={"extra_data": {"user_id": request.user_id, "pending": current.value}},
            )
            return detect_operation(request.text, default_media=current.media_kind), True
        return current, False

    async def _download_status_node(self, state: ResolutionState) -> dict[str, Any]:
        """Report active downloads from every configured catalog."""
        queue: list[QueueItem] = []
        errors = []
        for media_kind, client in self.catalogs.items():
            try:
                items = await self._call_catalog(
                    client, client.queue, f"{client.service_name}.queue"
                )
            except Exception as e:
                logger.warning(
                    f"Download queue read failed: {e}",
                    extra={"extra_data": {"media_kind": media_kind.value}},
                )
                errors.append(e)
                continue
            queue.extend(items)

        if not self.catalogs or len(errors) == len(self.catalogs):
            reason = describe_error(errors[0]) if errors else "no catalog is configured"
            return {
                "phase": ResolutionPhase.ERROR,
                "template_key": "status_failed",
                "template_data": {"error": reason},
            }

        logger.info(
            "Read download queues",
            extra={"extra_data": {"downloads": len(queue), "failed_catalogs": len(errors)}},
        )
        if not queue:
            return {"phase": ResolutionPhase.RESOLVED, "template_key": "no_downloads"}
        return {
            "phase": ResolutionPhase.RESOLVED,
            "queue": queue,
            "template_key": "download_status",
            "template_data": {"status_list": "\n".join(item.describe() for item in queue)},
        }

    async def _new_request_node(self, state: ResolutionState) -> dict[str, Any]:
        request = state.request
        operation = state.operation
        parsed = await self.parser.parse_initial(request.text)
        query = parsed.query

        if not query:
            return {
                "phase": ResolutionPhase.ERROR,
                "template_key": "clarify_query",
                "template_data": {},
            }

        try:
            results = await self._find_candidates(operation, query)
        except Exception as e:
            logger.error(
                f"Catalog search failed: {e}",
                extra={"extra_data": {"query": query, "operation": operation.value}},
                exc_info=True,
            )
            return {
                "phase": ResolutionPhase.ERROR,
                "query": query,
                "template_key": "search_failed",
                "template_data": {"query": query, "error": describe_error(e)},
            }

        if not results:
            return {
                "phase": ResolutionPhase.ERROR,
                "query": query,
                "template_key": "no_results",
                "template_data": {"query": query},
            }

        candidates = results[: self.config.max_candidates]
        chosen = resolve_selection(parsed.selection, candidates) if parsed.selection else None
        if chosen is None and len(candidates) == 1:
            chosen = candidates[0]

        if operation.media_kind is MediaKind.MOVIE:
            if chosen is not None:
                return {"query": query, "candidates": candidates, "chosen": chosen}
            return self._await_candidate_choice(state, query, candidates)

        series_selection = (
            resolve_structured_selection(parsed.structured_selection)
            if parsed.structured_selection is not None
            else None
        )
        if chosen is not None and series_selection is not None:
            return {
                "query": query,
                "candidates": candidates,
                "chosen": chosen,
                "series_selection": series_selection,
            }
        if chosen is not None:
            return self._await_season_choice(state, query, chosen, self.store.now())

        carried = parsed.structured_selection if series_selection is not None else None
        return self._await_candidate_choice(state, query, candidates, carried)

    async def _pending_selection_node(self, state: ResolutionState) -> dict[str, Any]:
        request = state.request
        context = state.pending_context
        is_series = state.operation.media_kind is MediaKind.SERIES

        try:
            selection = await self.parser.parse_selection(request.text)
        except ParseError:
            selection = None
        chosen = resolve_selection(selection, context.candidates) if selection else None

        if is_series:
            structured = await self._optional_structured(request.text)
            if structured is not None:
                context = context.model_copy(update={"resolved_series_selection": structured})

        if chosen is None:
            logger.info(
                "Selection did not match a candidate, re-prompting",
                extra={
                    "extra_data": {
                        "user_id": request.user_id,
                        "selection": selection.describe() if selection else None,
                        "candidates": len(context.candidates),
                    }
                },
            )
            self.store.set(request.user_id, context)
            return {
                "phase": ResolutionPhase.PENDING,
                "pending_context": context,
                "query": context.query,
                "candidates": context.candidates,
                "template_key": "reprompt_candidate",
                "template_data": {
                    "query": context.query,
                    "candidate_list": format_candidate_list(context.candidates),
                },
            }

        if not is_series:
            return {"query": context.query, "candidates": context.candidates, "chosen": chosen}

        carried = context.resolved_series_selection
        series_selection = resolve_structured_selection(carried) if carried is not None else None
        if series_selection is not None:
            return {
                "query": context.query,
                "candidates": context.candidates,
                "chosen": chosen,
                "series_selection": series_selection,
            }
        return self._await_season_choice(state, context.query, chosen, context.created_at)

    async def _granular_selection_node(self, state: ResolutionState) -> dict[str, Any]:
        request = state.request
        context = state.pending_context
        item = context.candidates[0]

        structured = await self._optional_structured(request.text)
        series_selection = (
            resolve_structured_selection(structured) if structured is not None else None
        )

        if series_selection is None:
            logger.info(
                "Season selection not understood, re-prompting",
                extra={"extra_data": {"user_id": request.user_id, "title": item.title}},
            )
            return {
                "phase": ResolutionPhase.GRANULAR_PENDING,
                "query": context.query,
                "candidates": context.candidates,
                "template_key": "reprompt_seasons",
                "template_data": {"title": item.title},
            }

        return {
            "query": context.query,
            "candidates": context.candidates,
            "chosen": item,
            "series_selection": series_selection,
        }

    async def _execute_mutation_node(self, state: ResolutionState) -> dict[str, Any]:
        operation = state.operation
        item = state.chosen
        selection = state.series_selection
        verb, past = ("remove", "removed") if operation.is_removal else ("add", "added")

        try:
            client = self._catalog_for(operation)
            if operation.is_removal:
                outcome = await self._call_catalog(
                    client,
                    lambda: client.remove_or_unmonitor(item, selection),
                    f"{client.service_name}.remove_or_unmonitor",
                )
            else:
                outcome = await self._call_catalog(
                    client,
                    lambda: client.add_or_monitor(item.external_id, selection),
                    f"{client.service_name}.add_or_monitor",
                )
        except Exception as e:
            logger.error(
                f"Catalog {verb} failed: {e}",
                extra={
                    "extra_data": {
                        "operation": operation.value,
                        "external_id": item.external_id,
                        "title": item.title,
                    }
                },
                exc_info=True,
            )
            action = "remove" if operation.is_removal else "download"
            message = f"Couldn't {action} {item.title}: {describe_error(e)}"
            return {
                "phase": ResolutionPhase.ERROR,
                "template_key": "operation_failed",
                "template_data": {"message": message, "title": item.title},
            }

        if not outcome.success:
            logger.warning(
                f"Catalog rejected {verb}",
                extra={
                    "extra_data": {
                        "operation": operation.value,
                        "external_id": item.external_id,
                        "error": outcome.error,
                    }
                },
            )
            message = f"Failed to {verb} {item.title}: {outcome.error or 'unknown error'}"
            return {
                "phase": ResolutionPhase.ERROR,
                "outcome": outcome,
                "template_key": "operation_failed",
                "template_data": {"message": message, "title": item.title},
            }

        logger.info(
            f"Request resolved: {past} {item.title}",
            extra={
                "extra_data": {
                    "operation": operation.value,
                    "external_id": item.external_id,
                    "selection": selection.describe() if selection else None,
                    "changed": outcome.changed,
                    "search_triggered": outcome.search_triggered,
                }
            },
        )
        return {
            "phase": ResolutionPhase.RESOLVED,
            "outcome": outcome,
            "template_key": past,
            "template_data": {
                "title": item.title,
                "selection": _selection_label(item, selection),
                "warnings": outcome.warnings,
            },
        }

    async def _render_reply_node(self, state: ResolutionState) -> dict[str, Any]:
        reply = await self.generator.generate(
            state.request.history,
            state.phase.value,
            state.template_key,
            state.template_data,
        )
        return {"reply": reply}

    async def _validate_reply_node(self, state: ResolutionState) -> dict[str, Any]:
        known_titles = [item.title for item in state.candidates]
        if state.chosen is not None:
            known_titles.append(state.chosen.title)
        if state.query:
            known_titles.append(state.query)
        known_titles.extend(item.title for item in state.queue)

        content = state.reply.content if state.reply is not None else ""
        suspicious = self.validator.validate(
            content if isinstance(content, str) else "",
            known_titles,
            user_id=state.request.user_id,
        )
        return {"suspicious_titles": suspicious}

    async def _finalize_node(self, state: ResolutionState) -> dict[str, Any]:
        # Status turns neither start nor end a request
        if state.intent is TurnIntent.DOWNLOAD_STATUS or not state.phase.is_terminal:
            return {"context_cleared": False}

        self._clear_context(state.request.user_id)
        return {"context_cleared": True}

    # -------------------------------------------------------------------------
    # Phase transitions
    # -------------------------------------------------------------------------

    def _await_candidate_choice(
        self,
        state: ResolutionState,
        query: str,
        candidates: list[CatalogItem],
        carried: StructuredSelection | None = None,
    ) -> dict[str, Any]:
        context = build_context(
            state.operation, candidates, query, self.store.now(), resolved_series_selection=carried
        )
        self.store.set(state.request.user_id, context)
        return {
            "phase": ResolutionPhase.PENDING,
            "pending_context": context,
            "query": query,
            "candidates": candidates,
            "template_key": "choose_candidate",
            "template_data": {
                "query": query,
                "candidate_list": format_candidate_list(candidates),
            },
        }

    def _await_season_choice(
        self,
        state: ResolutionState,
        query: str,
        item: CatalogItem,
        created_at: float,
    ) -> dict[str, Any]:
        context = build_context(state.operation, [item], query, created_at)
        self.store.set(state.request.user_id, context)
        return {
            "phase": ResolutionPhase.GRANULAR_PENDING,
            "pending_context": context,
            "query": query,
            "candidates": [item],
            "template_key": "choose_seasons",
            "template_data": {"title": item.title},
        }

    def _clear_context(self, user_id: str) -> None:
        try:
            self.store.clear(user_id)
        except Exception as e:
            logger.warning(
                f"Failed to clear pending context: {e}",
                extra={"extra_data": {"user_id": user_id}},
                exc_info=True,
            )

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def _run(self, request: ResolutionRequest) -> ResolutionResult:
        try:
            final_state = await self.graph.ainvoke(ResolutionState(request=request))
        except Exception as e:
            logger.error(
                f"Resolution failed: {e}",
                extra={"extra_data": {"user_id": request.user_id}},
                exc_info=True,
            )
            self._clear_context(request.user_id)
            return ResolutionResult(
                messages=[AIMessage(content=GENERIC_FAILURE_MESSAGE)],
                phase=ResolutionPhase.ERROR,
            )

        phase = ResolutionPhase(final_state.get("phase", ResolutionPhase.ERROR))
        chosen = final_state.get("chosen")
        if phase in (ResolutionPhase.PENDING, ResolutionPhase.GRANULAR_PENDING):
            shown = final_state.get("candidates") or []
        else:
            shown = [chosen] if chosen is not None else []
        images = [item.poster_url for item in shown if item.poster_url]

        reply = final_state.get("reply")
        return ResolutionResult(
            messages=[reply] if reply is not None else [],
            images=images,
            phase=phase,
            selected=chosen,
            outcome=final_state.get("outcome"),
            suspicious_titles=final_state.get("suspicious_titles") or [],
        )

    async def resolve(self, request: ResolutionRequest) -> ResolutionResult:
        """Process one chat turn.

        Args:
            request: The inbound turn.

        Returns:
            ResolutionResult with the reply and the phase the turn ended in.
            Failures are reported as reply text, never raised.
        """
        if self.config.serialize_user_turns:
            async with self._sequencer.turn(request.user_id):
                return await self._run(request)
        return await self._run(request)

    async def close(self) -> None:
        """Close the catalog clients."""
        for client in self.catalogs.values():
            await client.close()


# =============================================================================
# Factory Functions
# =============================================================================


def build_catalogs(catalog_config: CatalogConfig | None = None) -> dict[MediaKind, CatalogClient]:
    """Create a client for every configured catalog.

    Services without a URL or API key are skipped (and logged); requests for
    them fail with a friendly message instead.
    """
    catalog_config = catalog_config or CatalogConfig.from_env()
    catalogs: dict[MediaKind, CatalogClient] = {}
    for kind, client_cls, settings in (
        (MediaKind.MOVIE, RadarrClient, catalog_config.radarr),
        (MediaKind.SERIES, SonarrClient, catalog_config.sonarr),
    ):
        try:
            catalogs[kind] = client_cls(settings, timeout=catalog_config.request_timeout)
        except CatalogConfigurationError as e:
            logger.warning(
                f"Catalog for {kind.value} disabled: {e}",
                extra={"extra_data": {"media_kind": kind.value}},
            )
    return catalogs


def create_orchestrator(
    config: OrchestratorConfig | None = None,
    catalog_config: CatalogConfig | None = None,
    store: PendingContextStore | None = None,
) -> Orchestrator:
    """Create an Orchestrator wired to the env-configured catalogs.

    Args:
        config: Optional resolution configuration (defaults to env).
        catalog_config: Optional catalog configuration (defaults to env).
        store: Optional context store (defaults to the shared store).

    Returns:
        Configured Orchestrator instance.
    """
    return Orchestrator(
        catalogs=build_catalogs(catalog_config),
        config=config or OrchestratorConfig.from_env(),
        store=store,
    )


_default_orchestrator: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    """Get the process-wide Orchestrator.

    Returns:
        Orchestrator singleton instance.
    """
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = create_orchestrator()
    return _default_orchestrator


async def reset_orchestrator() -> None:
    """Close and discard the process-wide Orchestrator."""
    global _default_orchestrator
    if _default_orchestrator is not None:
        await _default_orchestrator.close()
    _default_orchestrator = None


async def process_chat_message(
    message: str,
    user_id: str,
    history: list[BaseMessage] | None = None,
    operation: ContextKind | None = None,
) -> dict:
    """Process a chat message through the shared orchestrator.

    This is the main entry point for the chat API.

    Args:
        message: User message.
        user_id: Id of the sending user.
        history: Optional prior chat messages, oldest first.
        operation: Optional explicit operation family.

    Returns:
        Dictionary with:
            - reply: The reply text
            - images: Poster URLs to show
            - phase: Phase the turn ended in
            - structured_data: ResolutionResult as dict
    """
    logger.info(
        "Processing chat message",
        extra={
            "extra_data": {
                "message_preview": message[:100] if message else None,
                "user_id": user_id,
                "operation": operation.value if operation else None,
            }
        },
    )

    request = ResolutionRequest(
        text=message, history=history or [], user_id=user_id, operation=operation
    )
    result = await get_orchestrator().resolve(request)
    reply = "\n".join(str(m.content) for m in result.messages)

    logger.info(
        "Chat message processed",
        extra={
            "extra_data": {
                "user_id": user_id,
                "phase": result.phase.value,
                "suspicious_titles": len(result.suspicious_titles),
            }
        },
    )

    return {
        "reply": reply,
        "images": result.images,
        "phase": result.phase.value,
        "structured_data": result.model_dump(mode="json", exclude={"messages"}),
    }
