"""Sonarr (series) catalog client.

Series support granular selections: a ResolvedSeriesSelection naming seasons
(optionally restricted to episodes) monitors or unmonitors exactly those
episodes instead of the whole series.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from media_concierge.core.logging_config import get_logger
from media_concierge.models.catalog_models import (
    CatalogItem,
    MediaKind,
    OperationOutcome,
    QueueItem,
)
from media_concierge.models.selection_models import ResolvedSeriesSelection
from media_concierge.services.catalog.base import (
    ArrClient,
    ServiceSettings,
    queue_progress,
    to_catalog_item,
)

logger = get_logger(__name__)

# Sonarr fills in the episode list of a new series asynchronously; waits
# between episode list reads after an add
EPISODE_POLL_DELAYS = (2.0, 4.0, 6.0)


def select_episode_ids(
    episodes: list[dict[str, Any]], selection: ResolvedSeriesSelection
) -> list[int]:
    """Pick the ids of episodes covered by a granular selection.

    A season listed without episodes covers the whole season, even if the
    same season is also listed with specific episodes.

    Args:
        episodes: Sonarr episode resources for one series.
        selection: Granular (not entire-series) selection.

    Returns:
        Matching episode ids in API order.
    """
    wanted: dict[int, set[int] | None] = {}
    for entry in selection.seasons:
        if entry.episodes is None or wanted.get(entry.season, set()) is None:
            wanted[entry.season] = None
        else:
            wanted[entry.season] = wanted.get(entry.season, set()) | set(entry.episodes)

    ids = []
    for episode in episodes:
        season = episode.get("seasonNumber")
        if season not in wanted:
            continue
        numbers = wanted[season]
        if numbers is None or episode.get("episodeNumber") in numbers:
            ids.append(episode["id"])
    return ids


def _episode_code(episode: dict[str, Any] | None) -> str | None:
    if not episode or episode.get("seasonNumber") is None:
        return None
    return f"S{episode['seasonNumber']:02d}E{episode.get('episodeNumber') or 0:02d}"


class SonarrClient(ArrClient):
    """Series catalog backed by the Sonarr v3 API.

    Args:
        settings: Connection settings.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport.
        episode_poll_delays: Waits (seconds) between episode list reads
            while a newly added series has no episodes yet.
        sleep: Awaitable sleep, replaceable in tests.
    """

    service_name = "sonarr"

    def __init__(
        self,
        settings: ServiceSettings,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        episode_poll_delays: Sequence[float] = EPISODE_POLL_DELAYS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(settings, timeout=timeout, transport=transport)
        self.episode_poll_delays = tuple(episode_poll_delays)
        self._sleep = sleep

    async def search(self, query: str) -> list[CatalogItem]:
        results = await self._get("/api/v3/series/lookup", params={"term": query}) or []
        return [to_catalog_item(series, "tvdbId") for series in results]

    async def list_library(self) -> list[CatalogItem]:
        series = await self._get("/api/v3/series") or []
        return [to_catalog_item(show, "tvdbId") for show in series]

    async def queue(self) -> list[QueueItem]:
        records = await self._queue_records(includeSeries="true", includeEpisode="true")
        return [
            QueueItem(
                title=(record.get("series") or {}).get("title") or record.get("title", ""),
                media_kind=MediaKind.SERIES,
                progress=queue_progress(record),
                status=record.get("status") or "unknown",
                time_left=record.get("timeleft"),
                episode=_episode_code(record.get("episode")),
            )
            for record in records
        ]

    async def _find_in_library(self, tvdb_id: int) -> dict[str, Any] | None:
        series = await self._get("/api/v3/series", params={"tvdbId": tvdb_id}) or []
        return series[0] if series else None

    async def _episodes(self, series_id: int) -> list[dict[str, Any]]:
        return await self._get("/api/v3/episode", params={"seriesId": series_id}) or []

    async def _wait_for_episodes(self, series_id: int) -> list[dict[str, Any]]:
        """Read the episode list of a just-added series, polling while it is empty."""
        episodes = await self._episodes(series_id)
        for attempt, delay in enumerate(self.episode_poll_delays, 1):
            if episodes:
                break
            logger.info(
                "Episodes not listed yet, waiting",
                extra={
                    "extra_data": {
                        "series_id": series_id,
                        "attempt": attempt,
                        "delay_seconds": delay,
                    }
                },
            )
            await self._sleep(delay)
            episodes = await self._episodes(series_id)
        return episodes

    async def _set_episode_monitoring(
        self,
        series_id: int,
        selection: ResolvedSeriesSelection,
        monitored: bool,
        newly_added: bool = False,
    ) -> OperationOutcome:
        if newly_added:
            episodes = await self._wait_for_episodes(series_id)
        else:
            episodes = await self._episodes(series_id)
        episode_ids = select_episode_ids(episodes, selection)
        if not episode_ids:
            if newly_added and not episodes:
                return OperationOutcome.failed(
                    f"Series was added but Sonarr has not listed its episodes yet, "
                    f"so {selection.describe()} could not be monitored"
                )
            return OperationOutcome.failed(f"No episodes matched {selection.describe()}")

        await self._put(
            "/api/v3/episode/monitor",
            {"episodeIds": episode_ids, "monitored": monitored},
        )
        if monitored:
            await self._command("EpisodeSearch", episodeIds=episode_ids)

        logger.info(
            f"{'Monitored' if monitored else 'Unmonitored'} {len(episode_ids)} episodes",
            extra={
                "extra_data": {
                    "series_id": series_id,
                    "episodes": len(episode_ids),
                    "selection": selection.describe(),
                }
            },
        )
        return OperationOutcome(success=True, changed=True, search_triggered=monitored)

    async def add_or_monitor(
        self,
        external_id: int,
        selection: ResolvedSeriesSelection | None = None,
    ) -> OperationOutcome:
        """Add (or re-monitor) a series by TVDB id and search for episodes.

        Args:
            external_id: TVDB id.
            selection: Seasons/episodes to monitor; None means everything.
        """
        entire = selection is None or selection.entire_series
        existing = await self._find_in_library(external_id)

        if existing is None:
            lookup = await self._get("/api/v3/series/lookup", params={"term": f"tvdb:{external_id}"})
            match = next((s for s in lookup or [] if s.get("tvdbId") == external_id), None)
            if match is None:
                return OperationOutcome.failed(f"Series with TVDB id {external_id} not found")

            quality_profile_id = await self._quality_profile_id()
            root_folder = await self._root_folder()
            if quality_profile_id is None or root_folder is None:
                return OperationOutcome.failed(
                    "Configuration error: no quality profile or root folder available"
                )

            added = await self._post(
                "/api/v3/series",
                {
                    **match,
                    "qualityProfileId": quality_profile_id,
                    "rootFolderPath": root_folder,
                    "monitored": True,
                    "seasonFolder": True,
                    "seasons": [
                        {**season, "monitored": entire} for season in match.get("seasons", [])
                    ],
                    "addOptions": {
                        "monitor": "all" if entire else "none",
                        "searchForMissingEpisodes": entire,
                    },
                },
            )
            series_id = added["id"]
            logger.info(
                "Added series to Sonarr",
                extra={
                    "extra_data": {
                        "tvdb_id": external_id,
                        "series_id": series_id,
                        "entire_series": entire,
                    }
                },
            )
            if entire:
                return OperationOutcome(success=True, changed=True, search_triggered=True)
            return await self._set_episode_monitoring(
                series_id, selection, monitored=True, newly_added=True
            )

        series_id = existing["id"]
        if not entire:
            return await self._set_episode_monitoring(series_id, selection, monitored=True)

        await self._put(
            f"/api/v3/series/{series_id}",
            {
                **existing,
                "monitored": True,
                "seasons": [
                    {**season, "monitored": True} for season in existing.get("seasons", [])
                ],
            },
        )
        await self._command("SeriesSearch", seriesId=series_id)
        return OperationOutcome(
            success=True,
            changed=True,
            search_triggered=True,
            warnings=["Series already in library; monitoring updated"],
        )

    async def remove_or_unmonitor(
        self,
        item: CatalogItem,
        selection: ResolvedSeriesSelection | None = None,
        delete_files: bool = True,
    ) -> OperationOutcome:
        """Delete a whole series, or unmonitor the selected episodes."""
        series_id = item.library.library_id if item.library else None
        if series_id is None:
            existing = await self._find_in_library(item.external_id)
            if existing is None:
                return OperationOutcome.failed("Series not found in Sonarr library")
            series_id = existing["id"]

        if selection is not None and not selection.entire_series:
            return await self._set_episode_monitoring(series_id, selection, monitored=False)

        await self._delete(
            f"/api/v3/series/{series_id}",
            params={"deleteFiles": str(delete_files).lower()},
        )
        logger.info(
            "Deleted series from Sonarr",
            extra={"extra_data": {"series_id": series_id, "delete_files": delete_files}},
        )
        return OperationOutcome(success=True, changed=True)
