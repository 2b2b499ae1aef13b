"""Pending selection context models.

A pending context is the per-user state stored while the bot waits for the
user to disambiguate a search. It is a discriminated union on ``kind`` with
one variant per operation family.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from media_concierge.models.catalog_models import CatalogItem, MediaKind
from media_concierge.models.selection_models import StructuredSelection


class ContextKind(str, Enum):
    """Operation families a pending context can belong to."""

    MOVIE_ADD = "movie-add"
    MOVIE_REMOVE = "movie-remove"
    SERIES_ADD = "series-add"
    SERIES_REMOVE = "series-remove"

    @property
    def media_kind(self) -> MediaKind:
        if self in (ContextKind.MOVIE_ADD, ContextKind.MOVIE_REMOVE):
            return MediaKind.MOVIE
        return MediaKind.SERIES

    @property
    def is_removal(self) -> bool:
        return self in (ContextKind.MOVIE_REMOVE, ContextKind.SERIES_REMOVE)


class _ContextBase(BaseModel):
    candidates: list[CatalogItem] = Field(description="Ordered candidates shown to the user")
    query: str = Field(description="Search query that produced the candidates")
    created_at: float = Field(description="Unix timestamp the context was created")
    active: bool = Field(default=True, description="Inactive contexts read as absent")


class MovieAddContext(_ContextBase):
    kind: Literal["movie-add"] = "movie-add"


class MovieRemoveContext(_ContextBase):
    kind: Literal["movie-remove"] = "movie-remove"


class SeriesAddContext(_ContextBase):
    kind: Literal["series-add"] = "series-add"
    resolved_series_selection: StructuredSelection | None = None


class SeriesRemoveContext(_ContextBase):
    kind: Literal["series-remove"] = "series-remove"
    resolved_series_selection: StructuredSelection | None = None


PendingSelectionContext = Annotated[
    Union[MovieAddContext, MovieRemoveContext, SeriesAddContext, SeriesRemoveContext],
    Field(discriminator="kind"),
]

_CONTEXT_CLASSES: dict[ContextKind, type[_ContextBase]] = {
    ContextKind.MOVIE_ADD: MovieAddContext,
    ContextKind.MOVIE_REMOVE: MovieRemoveContext,
    ContextKind.SERIES_ADD: SeriesAddContext,
    ContextKind.SERIES_REMOVE: SeriesRemoveContext,
}


def context_kind(context: _ContextBase) -> ContextKind:
    """Return the ContextKind of a pending context instance."""
    return ContextKind(context.kind)  # type: ignore[attr-defined]


def build_context(
    kind: ContextKind,
    candidates: list[CatalogItem],
    query: str,
    created_at: float,
    resolved_series_selection: StructuredSelection | None = None,
) -> PendingSelectionContext:
    """Create the context variant for ``kind``.

    Args:
        kind: Operation family.
        candidates: Ordered candidates to store.
        query: The search query.
        created_at: Creation timestamp (unix seconds).
        resolved_series_selection: Structured selection carried forward
            (series kinds only; ignored for movies).

    Returns:
        The matching context variant.
    """
    context_cls = _CONTEXT_CLASSES[kind]
    fields = {
        "candidates": candidates,
        "query": query,
        "created_at": created_at,
    }
    if kind.media_kind is MediaKind.SERIES:
        fields["resolved_series_selection"] = resolved_series_selection
    return context_cls(**fields)
