"""Hallucination guard for generated replies.

Scans a generated reply for things that look like media titles (quoted
strings, "<title> at 42%" progress lines) and flags any that do not match a
title the turn actually knew about. Findings are logged; the reply is never
altered or blocked.
"""

import re

from media_concierge.core.logging_config import get_logger

logger = get_logger(__name__)


class ResponseValidator:
    """Flags titles in generated text that the catalog never returned.

    Matching is case-insensitive and substring-tolerant in both directions,
    so "Matrix" is accepted when "The Matrix" is known and vice versa.
    """

    TITLE_PATTERNS = (
        re.compile(r'"([^"]+)"'),
        re.compile(r"(\w+\s+\w+(?:\s+\w+)*)\s+(?:at\s+)?[\d.]+%"),
    )
    MIN_TITLE_LENGTH = 3

    def extract_candidates(self, text: str) -> list[str]:
        """Extract lower-cased title candidates from text.

        Overlapping patterns may yield the same title twice.
        """
        lowered = text.lower()
        candidates = []
        for pattern in self.TITLE_PATTERNS:
            for match in pattern.finditer(lowered):
                candidate = match.group(1).strip()
                if len(candidate) >= self.MIN_TITLE_LENGTH:
                    candidates.append(candidate)
        return candidates

    def validate(
        self,
        text: str,
        known_titles: list[str],
        user_id: str | None = None,
    ) -> list[str]:
        """Return title candidates in ``text`` that match no known title.

        Args:
            text: Generated reply text.
            known_titles: Titles the current turn retrieved or stored.
            user_id: User id, for the log event only.

        Returns:
            Suspicious titles (lower-cased), in order of appearance per pattern.
        """
        valid_titles = [title.lower() for title in known_titles]
        suspicious = [
            candidate
            for candidate in self.extract_candidates(text)
            if not any(candidate in title or title in candidate for title in valid_titles)
        ]

        if suspicious:
            logger.warning(
                "Potential hallucination detected in generated response",
                extra={
                    "extra_data": {
                        "user_id": user_id,
                        "suspicious_titles": suspicious,
                        "valid_titles": valid_titles,
                        "response_preview": text[:200],
                    }
                },
            )
        return suspicious
