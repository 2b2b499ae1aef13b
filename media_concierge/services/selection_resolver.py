"""Selection resolution against an ordered candidate list.

Pure functions that turn a parsed user selection into a concrete catalog
item (or a season/episode list). Ordinal and year selections treat
out-of-range input differently:

- ordinal: unparseable or non-positive values fall back to the first
  candidate, values past the end resolve to nothing;
- year: only an exact year match resolves, there is no default.
"""

import re

from media_concierge.models.catalog_models import CatalogItem
from media_concierge.models.selection_models import (
    ResolvedSeason,
    ResolvedSeriesSelection,
    SelectionCriterion,
    StructuredSelection,
)

_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")
_DIGITS = re.compile(r"[0-9]+")


def parse_leading_int(value: str) -> int | None:
    """Parse the leading integer of a string.

    Leading whitespace and a sign are allowed; parsing stops at the first
    non-digit, so ``"1.5"`` gives 1 and ``"01999"`` gives 1999.

    Args:
        value: Raw selection value.

    Returns:
        The parsed integer, or None when the string has no leading digits.
    """
    match = _LEADING_INT.match(value)
    if match is None:
        return None
    return int(match.group(1))


def resolve_ordinal(value: str, candidates: list[CatalogItem]) -> CatalogItem | None:
    if not candidates:
        return None

    parsed = parse_leading_int(value)
    if parsed is None:
        return candidates[0]

    index = parsed - 1
    if index < 0:
        return candidates[0]
    if index >= len(candidates):
        return None
    return candidates[index]


def resolve_year(value: str, candidates: list[CatalogItem]) -> CatalogItem | None:
    target = parse_leading_int(value)
    if target is None:
        return None
    for candidate in candidates:
        if candidate.year == target:
            return candidate
    return None


def resolve_selection(
    criterion: SelectionCriterion, candidates: list[CatalogItem]
) -> CatalogItem | None:
    """Resolve an ordinal or year selection against ordered candidates.

    Args:
        criterion: The parsed selection.
        candidates: Candidates in the order they were shown to the user.

    Returns:
        The selected item, or None when nothing matches.
    """
    if criterion.selection_type == "ordinal":
        return resolve_ordinal(criterion.value, candidates)
    return resolve_year(criterion.value, candidates)


def _non_negative_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and _DIGITS.fullmatch(value.strip()):
        return int(value.strip())
    return None


def resolve_structured_selection(
    selection: StructuredSelection,
) -> ResolvedSeriesSelection | None:
    """Validate a season/episode selection.

    An absent or empty entry list means the entire series. Otherwise every
    season and every listed episode must be a non-negative integer (or a
    string of digits); a single malformed value rejects the whole selection.

    Args:
        selection: Selection as received from the parser.

    Returns:
        ResolvedSeriesSelection, or None when any value is malformed.
    """
    if selection.is_entire_series:
        return ResolvedSeriesSelection(entire_series=True)

    seasons: list[ResolvedSeason] = []
    for entry in selection.entries or []:
        season = _non_negative_int(entry.season)
        if season is None:
            return None

        episodes: list[int] | None = None
        if entry.episodes is not None:
            episodes = []
            for raw_episode in entry.episodes:
                episode = _non_negative_int(raw_episode)
                if episode is None:
                    return None
                episodes.append(episode)

        seasons.append(ResolvedSeason(season=season, episodes=episodes))

    return ResolvedSeriesSelection(entire_series=False, seasons=seasons)
