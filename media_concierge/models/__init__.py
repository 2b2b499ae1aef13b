"""Pydantic models for Media Concierge."""

from media_concierge.models.catalog_models import (
    CatalogItem,
    LibraryFields,
    MediaKind,
    OperationOutcome,
    QueueItem,
)
from media_concierge.models.context_models import (
    ContextKind,
    MovieAddContext,
    MovieRemoveContext,
    PendingSelectionContext,
    SeriesAddContext,
    SeriesRemoveContext,
    build_context,
    context_kind,
)
from media_concierge.models.selection_models import (
    ResolvedSeason,
    ResolvedSeriesSelection,
    SeasonEntry,
    SelectionCriterion,
    StructuredSelection,
)

__all__ = [
    # Catalog models
    "CatalogItem",
    "LibraryFields",
    "MediaKind",
    "OperationOutcome",
    "QueueItem",
    # Pending context models
    "ContextKind",
    "MovieAddContext",
    "MovieRemoveContext",
    "PendingSelectionContext",
    "SeriesAddContext",
    "SeriesRemoveContext",
    "build_context",
    "context_kind",
    # Selection models
    "ResolvedSeason",
    "ResolvedSeriesSelection",
    "SeasonEntry",
    "SelectionCriterion",
    "StructuredSelection",
]
