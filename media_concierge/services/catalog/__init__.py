"""Media catalog clients (Radarr for movies, Sonarr for series)."""

from media_concierge.services.catalog.base import (
    ArrClient,
    CatalogClient,
    CatalogConfig,
    ServiceSettings,
)
from media_concierge.services.catalog.radarr_client import RadarrClient
from media_concierge.services.catalog.sonarr_client import SonarrClient

__all__ = [
    "ArrClient",
    "CatalogClient",
    "CatalogConfig",
    "RadarrClient",
    "ServiceSettings",
    "SonarrClient",
]
