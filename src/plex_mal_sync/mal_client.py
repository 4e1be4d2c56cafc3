"""MyAnimeList API client."""

import logging
from typing import Optional, Protocol

import requests

from .base_client import BaseAPIClient
from .errors import MALFetchFailed, MALUpdateFailed
from .models import ListSnapshot, UpdatePlan, WatchStatus

logger = logging.getLogger(__name__)


class MALListClient(Protocol):
    """The two MAL operations the sync engine needs."""

    def fetch_list_entry(self, mal_id: int) -> ListSnapshot:
        ...

    def apply_update(self, mal_id: int, plan: UpdatePlan, previous: Optional[ListSnapshot] = None) -> ListSnapshot:
        ...


def _status(value: Optional[str]) -> Optional[WatchStatus]:
    try:
        return WatchStatus(value) if value else None
    except ValueError:
        logger.warning(f"Unknown MAL list status: {value}")
        return None


def _status_code(error: requests.RequestException) -> Optional[int]:
    response = getattr(error, "response", None)
    return response.status_code if response is not None else None


class MALClient(BaseAPIClient):
    """Client for MyAnimeList API v2."""

    BASE_URL = "https://api.myanimelist.net/v2"
    DETAIL_FIELDS = (
        "num_episodes,title,main_picture{medium,large},"
        "my_list_status{status,score,num_times_rewatched,num_episodes_watched,is_rewatching}"
    )

    def __init__(self, access_token: str, client_id: Optional[str] = None):
        """Initialize MAL client with access token."""
        headers = {"X-MAL-CLIENT-ID": client_id} if client_id else None
        super().__init__(access_token=access_token, base_url=self.BASE_URL, headers=headers)

    def fetch_list_entry(self, mal_id: int) -> ListSnapshot:
        """Read the title details and the user's list status for one anime."""
        url = f"{self.base_url}/anime/{mal_id}"
        try:
            response = self.session.get(url, params={"fields": self.DETAIL_FIELDS}, timeout=self.timeout)
            self._handle_auth_error(response, "MyAnimeList")
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise MALFetchFailed(f"failed to fetch MAL entry {mal_id}: {e}", status_code=_status_code(e))

        return self._parse_snapshot(data)

    def _parse_snapshot(self, data: dict) -> ListSnapshot:
        """Parse an anime details response into a ListSnapshot."""
        list_status = data.get("my_list_status") or {}
        picture = data.get("main_picture") or {}

        return ListSnapshot(
            status=_status(list_status.get("status")),
            rewatch_count=list_status.get("num_times_rewatched", 0) or 0,
            total_episodes=data.get("num_episodes", 0) or 0,
            watched_count=list_status.get("num_episodes_watched", 0) or 0,
            score=list_status.get("score", 0) or 0,
            is_rewatching=bool(list_status.get("is_rewatching", False)),
            title=data.get("title", ""),
            picture_url=picture.get("medium", ""),
        )

    def apply_update(self, mal_id: int, plan: UpdatePlan, previous: Optional[ListSnapshot] = None) -> ListSnapshot:
        """Send a plan to MAL and return the list state it reports back."""
        url = f"{self.base_url}/anime/{mal_id}/my_list_status"
        try:
            response = self.session.patch(url, data=plan.as_form(), timeout=self.timeout)
            self._handle_auth_error(response, "MyAnimeList")
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise MALUpdateFailed(f"failed to update MAL entry {mal_id}: {e}", status_code=_status_code(e))

        previous = previous or ListSnapshot()
        snapshot = ListSnapshot(
            status=_status(data.get("status")) or plan.status,
            rewatch_count=data.get("num_times_rewatched", plan.rewatch_count) or 0,
            total_episodes=previous.total_episodes,
            watched_count=data.get("num_episodes_watched", previous.watched_count) or 0,
            score=data.get("score", previous.score) or 0,
            is_rewatching=bool(data.get("is_rewatching", False)),
            title=previous.title,
            picture_url=previous.picture_url,
        )
        logger.info(f"Updated MAL entry: {previous.title or mal_id}")
        return snapshot
