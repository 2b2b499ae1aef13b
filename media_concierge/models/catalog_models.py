"""Pydantic models for media-catalog data.

These are the snapshots the catalog clients hand to the resolution
pipeline: search and library results, and the outcome of add/remove
mutations.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MediaKind(str, Enum):
    """Kinds of media the catalog manages."""

    MOVIE = "movie"
    SERIES = "series"


class LibraryFields(BaseModel):
    """Fields only present on items that already live in the library."""

    model_config = ConfigDict(frozen=True)

    library_id: int = Field(description="Catalog-internal id (Radarr/Sonarr id)")
    monitored: bool = Field(default=True, description="Whether the item is monitored")
    path: str | None = Field(default=None, description="Path on disk")


class CatalogItem(BaseModel):
    """Immutable snapshot of a movie or series returned by a search/list call.

    Attributes:
        external_id: TMDB id for movies, TVDB id for series.
        title: Display title.
        year: Release year, if known.
        genres: Genre names.
        status: Catalog status string (e.g. "released", "continuing").
        poster_url: Remote poster image, if the catalog has one.
        library: Library-only fields when the item is already in the library.
    """

    model_config = ConfigDict(frozen=True)

    external_id: int = Field(description="TMDB (movie) or TVDB (series) id")
    title: str = Field(description="Display title")
    year: int | None = Field(default=None, description="Release year")
    genres: tuple[str, ...] = Field(default=(), description="Genre names")
    status: str = Field(default="unknown", description="Catalog status")
    poster_url: str | None = Field(default=None, description="Remote poster image URL")
    library: LibraryFields | None = Field(
        default=None, description="Library fields for items already in the catalog"
    )

    @property
    def display_name(self) -> str:
        """Title with the year appended when known."""
        if self.year:
            return f"{self.title} ({self.year})"
        return self.title


class OperationOutcome(BaseModel):
    """Result of an add/monitor or remove/unmonitor call.

    The outcome itself is never retried; only the call producing it is.
    """

    success: bool = Field(description="Whether the catalog accepted the operation")
    changed: bool = Field(default=False, description="Whether catalog state changed")
    search_triggered: bool = Field(
        default=False, description="Whether a download search was started"
    )
    error: str | None = Field(default=None, description="Error text when success is False")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")

    @classmethod
    def failed(cls, error: str) -> OperationOutcome:
        """Create an unsuccessful outcome."""
        return cls(success=False, error=error)


class QueueItem(BaseModel):
    """One entry of a catalog's download queue.

    Attributes:
        title: Movie or series title.
        media_kind: Which catalog the download belongs to.
        progress: Percent downloaded (0-100).
        status: Download client status (e.g. "downloading", "queued").
        time_left: Remaining time as reported by the catalog ("HH:MM:SS").
        episode: Episode code for series downloads (e.g. "S01E02").
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(description="Movie or series title")
    media_kind: MediaKind = Field(description="Catalog the download belongs to")
    progress: float = Field(default=0.0, ge=0, le=100, description="Percent downloaded")
    status: str = Field(default="unknown", description="Download status")
    time_left: str | None = Field(default=None, description="Remaining time")
    episode: str | None = Field(default=None, description="Episode code for series")

    @property
    def label(self) -> str:
        """Title with the episode code appended for series downloads."""
        if self.episode:
            return f"{self.title} {self.episode}"
        return self.title

    def describe(self) -> str:
        """Progress line, e.g. ``The Matrix at 42% (downloading, 00:12:00 left)``."""
        details = self.status
        if self.time_left:
            details = f"{details}, {self.time_left} left"
        return f"{self.label} at {self.progress:.0f}% ({details})"
