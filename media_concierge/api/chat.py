"""Chat API endpoint for media requests."""

from typing import Literal

from fastapi import APIRouter, HTTPException
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, Field

from media_concierge.core.logging_config import get_logger
from media_concierge.models.context_models import ContextKind
from media_concierge.services.orchestrator import process_chat_message

router = APIRouter()
logger = get_logger(__name__)


class ChatHistoryEntry(BaseModel):
    """One prior message of the conversation."""

    role: Literal["user", "assistant"] = Field(description="Who sent the message")
    content: str = Field(description="Message text")


class ChatRequest(BaseModel):
    """Chat request from the transport (bot, web client)."""

    message: str = Field(min_length=1, description="The user's message")
    user_id: str = Field(min_length=1, description="Id of the sending user")
    operation: ContextKind | None = Field(
        default=None, description="Explicit operation, e.g. from a slash command"
    )
    history: list[ChatHistoryEntry] = Field(
        default_factory=list, description="Prior messages, oldest first"
    )


class ChatResponse(BaseModel):
    """Reply for one chat turn."""

    reply: str = Field(description="Reply text")
    images: list[str] = Field(default_factory=list, description="Poster URLs to show")
    phase: str = Field(description="Phase the request is in after this turn")
    structured_data: dict | None = Field(default=None, description="Full resolution result")


def to_messages(history: list[ChatHistoryEntry]) -> list[BaseMessage]:
    """Convert transport history entries to LangChain messages."""
    return [
        HumanMessage(content=entry.content)
        if entry.role == "user"
        else AIMessage(content=entry.content)
        for entry in history
    ]


@router.post("/", response_model=ChatResponse)
async def chat(request: ChatRequest) -> ChatResponse:
    """Resolve one chat turn into a reply."""
    try:
        result = await process_chat_message(
            message=request.message,
            user_id=request.user_id,
            history=to_messages(request.history),
            operation=request.operation,
        )
    except Exception as e:
        logger.error(
            f"Chat processing failed: {e}",
            extra={"extra_data": {"user_id": request.user_id}},
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail=f"Chat processing failed: {str(e)}")

    return ChatResponse(**result)
