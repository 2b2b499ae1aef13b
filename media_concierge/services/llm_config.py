"""Centralized LLM configuration for Media Concierge.

Two model roles exist: the parser (query and selection extraction, topic
switch checks) and the responder (chat replies). Both clients are built with
``max_retries=0``; retries, timeouts per attempt and the circuit breaker
belong to the resilience layer, and the client timeout is only a ceiling for
a single HTTP request.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI

# Load environment variables from .env file
load_dotenv()


# Default model configurations
DEFAULT_PARSER_MODEL = "gpt-4o-mini"
DEFAULT_RESPONDER_MODEL = "gpt-4o"
DEFAULT_PARSER_TIMEOUT = 10.0
DEFAULT_RESPONDER_TIMEOUT = 20.0

# Parser replies are a short JSON object or a single word
PARSER_MAX_TOKENS = 200

# Circuit-breaker key shared by every model call
LLM_SERVICE_KEY = "openai"


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for LLM models.

    Attributes:
        parser_model: Model for extraction and classification prompts.
        responder_model: Model for chat replies.
        api_key: OpenAI API key.
        parser_timeout: HTTP timeout in seconds for one parser request.
        responder_timeout: HTTP timeout in seconds for one responder request.
    """

    parser_model: str
    responder_model: str
    api_key: str | None
    parser_timeout: float = DEFAULT_PARSER_TIMEOUT
    responder_timeout: float = DEFAULT_RESPONDER_TIMEOUT


@lru_cache(maxsize=1)
def get_llm_config() -> LLMConfig:
    """Load LLM configuration from environment variables.

    Environment variables:
        PARSER_MODEL, RESPONDER_MODEL: Model names
        OPENAI_API_KEY: API key
        PARSER_TIMEOUT, RESPONDER_TIMEOUT: Per-request timeouts in seconds

    Returns:
        LLMConfig with model names, API key and timeouts.
    """
    return LLMConfig(
        parser_model=os.getenv("PARSER_MODEL", DEFAULT_PARSER_MODEL),
        responder_model=os.getenv("RESPONDER_MODEL", DEFAULT_RESPONDER_MODEL),
        api_key=os.getenv("OPENAI_API_KEY"),
        parser_timeout=float(os.getenv("PARSER_TIMEOUT", str(DEFAULT_PARSER_TIMEOUT))),
        responder_timeout=float(os.getenv("RESPONDER_TIMEOUT", str(DEFAULT_RESPONDER_TIMEOUT))),
    )


def _require_api_key(config: LLMConfig) -> str:
    if not config.api_key:
        raise ValueError("OPENAI_API_KEY environment variable is required")
    return config.api_key


def get_parser_llm(temperature: float = 0.0) -> ChatOpenAI:
    """Create a ChatOpenAI client configured for intent parsing.

    Parsing is a narrow extraction task, so it uses a small, fast model
    at zero temperature with a short reply budget.

    Args:
        temperature: Sampling temperature (0.0 = deterministic).

    Returns:
        Configured ChatOpenAI instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    config = get_llm_config()
    return ChatOpenAI(
        model=config.parser_model,
        temperature=temperature,
        api_key=_require_api_key(config),
        timeout=config.parser_timeout,
        max_retries=0,
        max_tokens=PARSER_MAX_TOKENS,
    )


def get_responder_llm(temperature: float = 0.7) -> ChatOpenAI:
    """Create a ChatOpenAI client configured for reply generation.

    Args:
        temperature: Sampling temperature.

    Returns:
        Configured ChatOpenAI instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    config = get_llm_config()
    return ChatOpenAI(
        model=config.responder_model,
        temperature=temperature,
        api_key=_require_api_key(config),
        timeout=config.responder_timeout,
        max_retries=0,
    )


def clear_config_cache() -> None:
    """Clear the cached LLM configuration.

    Useful for testing when environment variables change.
    """
    get_llm_config.cache_clear()
