"""Radarr (movies) catalog client."""

from typing import Any

from media_concierge.core.logging_config import get_logger
from media_concierge.models.catalog_models import (
    CatalogItem,
    MediaKind,
    OperationOutcome,
    QueueItem,
)
from media_concierge.models.selection_models import ResolvedSeriesSelection
from media_concierge.services.catalog.base import ArrClient, queue_progress, to_catalog_item

logger = get_logger(__name__)


class RadarrClient(ArrClient):
    """Movie catalog backed by the Radarr v3 API."""

    service_name = "radarr"

    async def search(self, query: str) -> list[CatalogItem]:
        results = await self._get("/api/v3/movie/lookup", params={"term": query}) or []
        return [to_catalog_item(movie, "tmdbId") for movie in results]

    async def list_library(self) -> list[CatalogItem]:
        movies = await self._get("/api/v3/movie") or []
        return [to_catalog_item(movie, "tmdbId") for movie in movies]

    async def queue(self) -> list[QueueItem]:
        records = await self._queue_records(includeMovie="true")
        return [
            QueueItem(
                title=(record.get("movie") or {}).get("title") or record.get("title", ""),
                media_kind=MediaKind.MOVIE,
                progress=queue_progress(record),
                status=record.get("status") or "unknown",
                time_left=record.get("timeleft"),
            )
            for record in records
        ]

    async def _find_in_library(self, tmdb_id: int) -> dict[str, Any] | None:
        movies = await self._get("/api/v3/movie", params={"tmdbId": tmdb_id}) or []
        return movies[0] if movies else None

    async def add_or_monitor(
        self,
        external_id: int,
        selection: ResolvedSeriesSelection | None = None,
    ) -> OperationOutcome:
        """Add a movie by TMDB id and trigger a download search.

        A movie already in the library is re-monitored (if needed) and
        searched again instead of being added twice.
        """
        existing = await self._find_in_library(external_id)
        if existing is not None:
            warnings = []
            changed = False
            if existing.get("monitored"):
                warnings.append("Movie already monitored in library")
            else:
                await self._put(f"/api/v3/movie/{existing['id']}", {**existing, "monitored": True})
                changed = True
                warnings.append("Movie was in library but not monitored")

            await self._command("MoviesSearch", movieIds=[existing["id"]])
            logger.info(
                "Re-triggered search for existing movie",
                extra={"extra_data": {"tmdb_id": external_id, "movie_id": existing["id"]}},
            )
            return OperationOutcome(
                success=True, changed=changed, search_triggered=True, warnings=warnings
            )

        movie = await self._get("/api/v3/movie/lookup/tmdb", params={"tmdbId": external_id})
        if not movie:
            return OperationOutcome.failed(f"Movie with TMDB id {external_id} not found")

        quality_profile_id = await self._quality_profile_id()
        root_folder = await self._root_folder()
        if quality_profile_id is None or root_folder is None:
            return OperationOutcome.failed(
                "Configuration error: no quality profile or root folder available"
            )

        added = await self._post(
            "/api/v3/movie",
            {
                **movie,
                "qualityProfileId": quality_profile_id,
                "rootFolderPath": root_folder,
                "monitored": True,
                "minimumAvailability": "released",
                "addOptions": {"searchForMovie": True},
            },
        )
        logger.info(
            "Added movie to Radarr",
            extra={
                "extra_data": {
                    "tmdb_id": external_id,
                    "movie_id": (added or {}).get("id"),
                    "title": movie.get("title"),
                }
            },
        )
        return OperationOutcome(success=True, changed=True, search_triggered=True)

    async def remove_or_unmonitor(
        self,
        item: CatalogItem,
        selection: ResolvedSeriesSelection | None = None,
        delete_files: bool = True,
    ) -> OperationOutcome:
        """Delete a movie from the library (optionally with its files)."""
        movie_id = item.library.library_id if item.library else None
        if movie_id is None:
            existing = await self._find_in_library(item.external_id)
            if existing is None:
                return OperationOutcome.failed("Movie not found in Radarr library")
            movie_id = existing["id"]

        await self._delete(
            f"/api/v3/movie/{movie_id}",
            params={"deleteFiles": str(delete_files).lower()},
        )
        logger.info(
            "Deleted movie from Radarr",
            extra={"extra_data": {"movie_id": movie_id, "delete_files": delete_files}},
        )
        return OperationOutcome(success=True, changed=True)
