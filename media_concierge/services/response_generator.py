"""Chat reply rendering.

Replies are produced by the responder model from a per-template instruction
and a block of facts. When the model cannot be reached (or returns nothing)
the generator falls back to a deterministic text, so a reply is always
produced.
"""

from collections.abc import Callable, Sequence
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from media_concierge.core.logging_config import get_logger
from media_concierge.services.llm_config import LLM_SERVICE_KEY, get_responder_llm
from media_concierge.services.prompts import format_fallback_response, format_responder_prompt
from media_concierge.services.resilience import (
    ErrorCategory,
    RetryPolicy,
    RetryService,
    get_retry_service,
)

logger = get_logger(__name__)


class ResponseGenerator:
    """Renders chat replies with the responder model.

    Args:
        llm: Chat model to use; created lazily from the responder config
            when None.
        retry_service: Shared retry/circuit-breaker service.
        policy: Retry policy for model calls.
        llm_factory: Factory used when no model is given.
    """

    def __init__(
        self,
        llm: BaseChatModel | None = None,
        retry_service: RetryService | None = None,
        policy: RetryPolicy | None = None,
        llm_factory: Callable[[], BaseChatModel] = get_responder_llm,
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

    async def generate(
        self,
        history: Sequence[BaseMessage],
        phase: str,
        template_key: str,
        template_data: dict[str, Any],
    ) -> AIMessage:
        """Render the reply for one turn.

        Args:
            history: Prior chat messages, oldest first.
            phase: Resolution phase of the turn.
            template_key: Which reply to produce.
            template_data: Facts the reply may use.

        Returns:
            AIMessage with the reply text; never raises.
        """
        try:
            system_prompt = format_responder_prompt(phase, template_key, template_data)
            messages = [SystemMessage(content=system_prompt), *history]
            response = await self.retry_service.execute_with_circuit_breaker(
                lambda: self.llm.ainvoke(messages),
                service_key=LLM_SERVICE_KEY,
                policy=self.policy,
                operation_name="llm.generate_response",
                category=ErrorCategory.LLM_API,
            )
            content = response.content if isinstance(response.content, str) else ""
            if content.strip():
                return AIMessage(content=content.strip())

            logger.warning(
                "Responder model returned an empty reply",
                extra={"extra_data": {"template_key": template_key}},
            )
        except Exception as e:
            logger.warning(
                f"Response generation failed, using fallback text: {e}",
                extra={
                    "extra_data": {
                        "template_key": template_key,
                        "phase": phase,
                        "error_type": type(e).__name__,
                    }
                },
            )

        return AIMessage(content=format_fallback_response(template_key, template_data))
