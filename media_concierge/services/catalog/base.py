"""Catalog client interface and shared HTTP plumbing.

The resolution pipeline only talks to catalogs through CatalogClient. The
concrete Radarr/Sonarr clients share ArrClient, a thin wrapper around
``httpx.AsyncClient`` that authenticates with the ``X-Api-Key`` header and
raises ``httpx.HTTPStatusError`` on non-2xx responses so the resilience
layer can classify them.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from media_concierge.core.exceptions import CatalogConfigurationError
from media_concierge.core.logging_config import get_logger
from media_concierge.models.catalog_models import (
    CatalogItem,
    LibraryFields,
    OperationOutcome,
    QueueItem,
)
from media_concierge.models.selection_models import ResolvedSeriesSelection

logger = get_logger(__name__)

# Downloads listed per queue request
QUEUE_PAGE_SIZE = 50


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class ServiceSettings:
    """Connection settings for one *arr service.

    Attributes:
        base_url: Service root URL (e.g. http://radarr:7878).
        api_key: API key sent as X-Api-Key.
        quality_profile_id: Profile for new items; None picks the first one.
        root_folder: Root folder for new items; None picks the first one.
    """

    base_url: str | None = None
    api_key: str | None = None
    quality_profile_id: int | None = None
    root_folder: str | None = None

    def require(self, service: str) -> tuple[str, str]:
        """Return (base_url, api_key) or raise if either is missing.

        Raises:
            CatalogConfigurationError: If the URL or API key is not set.
        """
        if not self.base_url:
            raise CatalogConfigurationError(f"{service.upper()}_URL is not configured")
        if not self.api_key:
            raise CatalogConfigurationError(f"{service.upper()}_API_KEY is not configured")
        return self.base_url.rstrip("/"), self.api_key


@dataclass(frozen=True)
class CatalogConfig:
    """Configuration for the movie and series catalogs.

    Attributes:
        radarr: Radarr (movies) settings.
        sonarr: Sonarr (series) settings.
        request_timeout: HTTP timeout per request in seconds.
    """

    radarr: ServiceSettings = ServiceSettings()
    sonarr: ServiceSettings = ServiceSettings()
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "CatalogConfig":
        """Create config from environment variables.

        Environment variables:
            RADARR_URL, RADARR_API_KEY: Radarr connection
            RADARR_QUALITY_PROFILE_ID, RADARR_ROOT_FOLDER: Defaults for new movies
            SONARR_URL, SONARR_API_KEY: Sonarr connection
            SONARR_QUALITY_PROFILE_ID, SONARR_ROOT_FOLDER: Defaults for new series
            CATALOG_REQUEST_TIMEOUT: HTTP timeout in seconds (default: 30)

        Returns:
            CatalogConfig from environment.
        """
        return cls(
            radarr=_service_from_env("RADARR"),
            sonarr=_service_from_env("SONARR"),
            request_timeout=float(os.getenv("CATALOG_REQUEST_TIMEOUT", "30")),
        )


def _service_from_env(prefix: str) -> ServiceSettings:
    profile = os.getenv(f"{prefix}_QUALITY_PROFILE_ID")
    return ServiceSettings(
        base_url=os.getenv(f"{prefix}_URL"),
        api_key=os.getenv(f"{prefix}_API_KEY"),
        quality_profile_id=int(profile) if profile else None,
        root_folder=os.getenv(f"{prefix}_ROOT_FOLDER"),
    )


# =============================================================================
# Client Interface
# =============================================================================


class CatalogClient(ABC):
    """Interface the resolution pipeline uses for a media catalog.

    Transport failures are raised (typically ``httpx`` errors) so they can
    be retried; business failures come back as an unsuccessful
    OperationOutcome.
    """

    service_name: str = "catalog"

    @abstractmethod
    async def search(self, query: str) -> list[CatalogItem]:
        """Search the external metadata source for a title."""

    @abstractmethod
    async def list_library(self) -> list[CatalogItem]:
        """List every item currently in the library."""

    @abstractmethod
    async def add_or_monitor(
        self,
        external_id: int,
        selection: ResolvedSeriesSelection | None = None,
    ) -> OperationOutcome:
        """Add an item (or re-monitor it) and start a download search."""

    @abstractmethod
    async def remove_or_unmonitor(
        self,
        item: CatalogItem,
        selection: ResolvedSeriesSelection | None = None,
        delete_files: bool = True,
    ) -> OperationOutcome:
        """Remove an item from the library, or unmonitor part of it."""

    @abstractmethod
    async def queue(self) -> list[QueueItem]:
        """List active and pending downloads."""

    async def close(self) -> None:
        """Release client resources."""
        return None


# =============================================================================
# HTTP Base
# =============================================================================


class ArrClient(CatalogClient):
    """Shared HTTP plumbing for Radarr/Sonarr v3 APIs.

    Args:
        settings: Connection settings for this service.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).

    Raises:
        CatalogConfigurationError: If the URL or API key is missing.
    """

    def __init__(
        self,
        settings: ServiceSettings,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        base_url, api_key = settings.require(self.service_name)
        self.settings = settings
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={"X-Api-Key": api_key},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        logger.debug(
            f"{self.service_name} {method} {path}",
            extra={"extra_data": {"service": self.service_name, "params": params}},
        )
        response = await self.client.request(method, path, params=params, json=json)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def _post(self, path: str, json: Any) -> Any:
        return await self._request("POST", path, json=json)

    async def _put(self, path: str, json: Any, params: dict[str, Any] | None = None) -> Any:
        return await self._request("PUT", path, params=params, json=json)

    async def _delete(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("DELETE", path, params=params)

    async def _command(self, name: str, **body: Any) -> Any:
        return await self._post("/api/v3/command", {"name": name, **body})

    async def _quality_profile_id(self) -> int | None:
        if self.settings.quality_profile_id is not None:
            return self.settings.quality_profile_id
        profiles = await self._get("/api/v3/qualityprofile") or []
        return profiles[0]["id"] if profiles else None

    async def _root_folder(self) -> str | None:
        if self.settings.root_folder:
            return self.settings.root_folder
        folders = await self._get("/api/v3/rootfolder") or []
        return folders[0]["path"] if folders else None

    async def _queue_records(self, **params: Any) -> list[dict[str, Any]]:
        page = await self._get("/api/v3/queue", params={"pageSize": QUEUE_PAGE_SIZE, **params})
        return (page or {}).get("records") or []


def to_catalog_item(payload: dict[str, Any], id_field: str) -> CatalogItem:
    """Convert a Radarr/Sonarr resource into a CatalogItem.

    Args:
        payload: JSON resource from the API.
        id_field: External id key ("tmdbId" or "tvdbId").

    Returns:
        CatalogItem; ``library`` is set when the resource has a library id.
    """
    library = None
    if payload.get("id"):
        library = LibraryFields(
            library_id=payload["id"],
            monitored=payload.get("monitored", True),
            path=payload.get("path"),
        )

    return CatalogItem(
        external_id=payload.get(id_field) or 0,
        title=payload.get("title", ""),
        year=payload.get("year") or None,
        genres=tuple(payload.get("genres") or ()),
        status=payload.get("status") or "unknown",
        poster_url=_poster_url(payload),
        library=library,
    )


def _poster_url(payload: dict[str, Any]) -> str | None:
    for image in payload.get("images") or []:
        if image.get("coverType") == "poster":
            return image.get("remoteUrl") or image.get("url")
    return None


def queue_progress(record: dict[str, Any]) -> float:
    """Percent downloaded for a queue record, from ``size`` and ``sizeleft``."""
    size = record.get("size") or 0
    if size <= 0:
        return 0.0
    left = min(max(record.get("sizeleft") or 0, 0), size)
    return round((size - left) / size * 100, 1)
