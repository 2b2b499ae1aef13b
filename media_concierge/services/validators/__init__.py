"""Validators for Media Concierge.

Pure Python validation (no LLM) of generated replies.
"""

from media_concierge.services.validators.response_validator import ResponseValidator

__all__ = ["ResponseValidator"]
