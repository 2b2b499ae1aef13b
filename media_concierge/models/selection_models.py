"""Pydantic models for user selections.

A selection is what the user says to pick among candidates ("the second
one", "the 1999 one") or, for series, which seasons/episodes they want.
The wire shapes here match what the parsing prompts ask the model to emit.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SelectionCriterion(BaseModel):
    """Tagged selection: an ordinal position or a release year.

    The value is kept as a string; numeric interpretation happens in the
    selection resolver so that the parsing rules live in one place.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    selection_type: Literal["ordinal", "year"] = Field(alias="selectionType")
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Any:
        # Models frequently answer {"value": 2} instead of {"value": "2"}
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def describe(self) -> str:
        """Short human-readable form, e.g. ``ordinal: 2``."""
        return f"{self.selection_type}: {self.value}"


class SeasonEntry(BaseModel):
    """One season (optionally restricted to episodes) as received from the model.

    Values are left raw; ``resolve_structured_selection`` decides whether
    they are usable integers.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    season: int | str
    episodes: list[int | str] | None = None


class StructuredSelection(BaseModel):
    """Seasons and episodes requested for a series.

    ``{}`` (no entries) means the entire series.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    entries: list[SeasonEntry] | None = Field(default=None, alias="selection")

    @property
    def is_entire_series(self) -> bool:
        return not self.entries


class ResolvedSeason(BaseModel):
    """A validated season entry."""

    model_config = ConfigDict(frozen=True)

    season: int = Field(ge=0)
    episodes: list[int] | None = None


class ResolvedSeriesSelection(BaseModel):
    """A structured selection whose every field parsed as a non-negative integer."""

    model_config = ConfigDict(frozen=True)

    entire_series: bool = True
    seasons: list[ResolvedSeason] = Field(default_factory=list)

    def describe(self) -> str:
        if self.entire_series:
            return "entire series"
        parts = []
        for entry in self.seasons:
            if entry.episodes:
                episodes = ", ".join(str(e) for e in entry.episodes)
                parts.append(f"season {entry.season} (episodes {episodes})")
            else:
                parts.append(f"season {entry.season}")
        return "; ".join(parts)
