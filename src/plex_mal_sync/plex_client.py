"""Plex Media Server client used to look up show-level provider ids."""

import logging

import requests

from .base_client import BaseAPIClient
from .errors import UnsupportedAgent
from .models import ProviderGuid

logger = logging.getLogger(__name__)


class PlexClient(BaseAPIClient):
    """Minimal Plex API client.

    Episodes tagged by the native Plex agent carry episode-level provider
    ids; mapping needs the series ids, which live on the show item.
    """

    def __init__(self, base_url: str, token: str):
        """Initialize Plex client with server URL and token."""
        super().__init__(
            access_token=token,
            base_url=base_url,
            headers={"Accept": "application/json"},
            token_header="X-Plex-Token",
        )

    def get_show_guids(self, key: str) -> list[ProviderGuid]:
        """Fetch the provider ids of the item at `key` (a grandparentKey)."""
        url = f"{self.base_url}/{key.lstrip('/')}"
        try:
            response = self.session.get(url, params={"includeGuids": 1}, timeout=self.timeout)
            self._handle_auth_error(response, "Plex")
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise UnsupportedAgent(f"failed to get show guid from plex: {e}", {"key": key})

        container = data.get("MediaContainer") if isinstance(data, dict) else None
        if not isinstance(container, dict):
            raise UnsupportedAgent(f"unexpected plex response for {key}", {"key": key})

        items = container.get("Metadata") or []
        if len(items) != 1:
            raise UnsupportedAgent(f"expected one plex item for {key}, got {len(items)}")

        guids = [ProviderGuid(id=g["id"]) for g in items[0].get("Guid") or [] if g.get("id")]
        logger.debug(f"Plex show {key} has provider ids {[g.id for g in guids]}")
        return guids
