"""Unit tests for the response hallucination validator."""

from unittest.mock import patch

import pytest

from media_concierge.services.validators import ResponseValidator


@pytest.fixture
def validator():
    return ResponseValidator()


class TestResponseValidator:
    """Tests for ResponseValidator.validate."""

    def test_known_quoted_title_not_flagged(self, validator):
        """Should accept a quoted title that is known."""
        text = 'I\'ve added "The Matrix" to your downloads.'

        assert validator.validate(text, ["The Matrix"]) == []

    def test_case_insensitive_and_substring(self, validator):
        """Should accept partial matches in either direction."""
        assert validator.validate('Grabbing "MATRIX" now', ["The Matrix"]) == []
        assert validator.validate('Grabbing "the matrix (1999)"', ["The Matrix"]) == []

    def test_unknown_title_flagged(self, validator):
        """Should flag a quoted title that was never retrieved."""
        text = 'Added "The Matrix" and "Inception".'

        assert validator.validate(text, ["The Matrix"]) == ["inception"]

    def test_progress_pattern(self, validator):
        """Should extract titles followed by a progress percentage."""
        text = "Blade Runner 45% and The Matrix 80.5%"

        assert validator.validate(text, ["The Matrix"]) == ["blade runner"]

    def test_empty_known_titles_flags_everything(self, validator):
        """Should flag every candidate when nothing is known."""
        assert validator.validate('"Alien" is queued', []) == ["alien"]

    def test_short_candidates_ignored(self, validator):
        """Should ignore candidates shorter than three characters."""
        assert validator.validate('Pick "ok" or "no"', []) == []

    def test_malformed_quotes_do_not_raise(self, validator):
        """Should tolerate unbalanced quotes."""
        result = validator.validate('He said "The Matrix and "Alien', ["The Matrix"])

        assert isinstance(result, list)

    def test_single_aggregated_warning(self, validator):
        """Should log one warning carrying every suspicious title."""
        with patch("media_concierge.services.validators.response_validator.logger") as logger:
            validator.validate('"Alien" and "Aliens 2"', [], user_id="u1")

        assert logger.warning.call_count == 1
        extra = logger.warning.call_args.kwargs["extra"]["extra_data"]
        assert extra["suspicious_titles"] == ["alien", "aliens 2"]
        assert extra["user_id"] == "u1"

    def test_no_warning_when_clean(self, validator):
        """Should stay silent when nothing is suspicious."""
        with patch("media_concierge.services.validators.response_validator.logger") as logger:
            validator.validate("Nothing to see here", ["The Matrix"])

        logger.warning.assert_not_called()
