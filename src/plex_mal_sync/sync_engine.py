"""Sync engine: run one webhook through normalize, resolve, plan and apply."""

import logging
from typing import Callable, Optional, Union

from .anime_db import AnimeDatabase
from .constants import AGENT_MARKERS, AgentKind, MediaKind, PlexEvent
from .errors import AnimeNotInDatabase, EnvelopeRejected, MappingNotFound, SyncError, UnsupportedAgent
from .mal_client import MALListClient
from .mapping import MappingService, calculate_episode
from .models import (
    AnimeUpdateFailed,
    AnimeUpdateSuccess,
    CanonicalEvent,
    SyncResult,
    WebhookEnvelope,
    WebhookMetadata,
)
from .normalizer import normalize
from .plex_client import PlexClient
from .watch_state import plan_rating, plan_update
from .webhook import check_envelope

logger = logging.getLogger(__name__)

Outcome = Union[AnimeUpdateSuccess, AnimeUpdateFailed]
Subscriber = Callable[[Outcome], None]


class SyncEngine:
    """Engine for applying Plex playback events to a MyAnimeList list."""

    def __init__(
        self,
        mapping: MappingService,
        mal_client: MALListClient,
        plex_user: str,
        anime_libraries: list[str],
        anime_db: Optional[AnimeDatabase] = None,
        plex_client: Optional[PlexClient] = None,
        dry_run: bool = False,
        subscribers: Optional[list[Subscriber]] = None,
    ):
        """Initialize sync engine with its collaborators."""
        self.mapping = mapping
        self.mal = mal_client
        self.plex_user = plex_user
        self.anime_libraries = anime_libraries
        self.anime_db = anime_db
        self.plex = plex_client
        self.dry_run = dry_run
        self.subscribers = list(subscribers or [])

    @staticmethod
    def _safe_title(title: str) -> str:
        """Return a console-safe title string (avoid encoding errors on Windows)."""
        if not title:
            return ""
        return title.encode("ascii", "replace").decode("ascii")

    def subscribe(self, subscriber: Subscriber) -> None:
        self.subscribers.append(subscriber)

    def _emit(self, outcome: Outcome) -> None:
        for subscriber in self.subscribers:
            try:
                subscriber(outcome)
            except Exception as e:
                logger.error(f"Outcome subscriber {subscriber!r} failed: {e}")

    def _raw_guid(self, metadata: WebhookMetadata, agent: AgentKind):
        """Pick the GUID to parse; HAMA/MAL GUIDs may only be on the show."""
        if agent == AgentKind.PLEX:
            if metadata.media_type != MediaKind.EPISODE.value:
                return metadata.guid
            # episode provider ids are not series ids
            if self.plex is None:
                raise UnsupportedAgent("plex metadata agent cannot be used: Plex Token not set")
            if not metadata.grandparent_key:
                raise UnsupportedAgent("plex metadata agent cannot be used: no grandparentKey on episode")
            return self.plex.get_show_guids(metadata.grandparent_key)

        markers = [m for m, a in AGENT_MARKERS.items() if a == agent]
        if not any(m in metadata.guid_string for m in markers) and metadata.grandparent_guid:
            return metadata.grandparent_guid
        return metadata.guid

    def _resolve_from_database(self, event: CanonicalEvent, not_found: MappingNotFound) -> int:
        """Season 1 fallback: take the MAL id straight from the anime table."""
        if self.anime_db is None:
            raise not_found

        record = self.anime_db.get(event.source_database, event.source_id)
        if record is None:
            raise AnimeNotInDatabase(
                "anime not found in internal database",
                {"source": event.source_database.value, "id": event.source_id},
            )
        if record.mal_id == 0:
            raise AnimeNotInDatabase("could not retrieve malid from internal database", {"id": event.source_id})

        logger.debug(f"Anime from DB: MAL {record.mal_id}")
        return record.mal_id

    def resolve(self, event: CanonicalEvent, is_scrobble: bool = True) -> tuple[int, int]:
        """Return (MAL id, MAL episode) for a canonical event."""
        try:
            resolved = self.mapping.resolve(event)
        except MappingNotFound as e:
            if event.season != 1:
                raise
            return self._resolve_from_database(event, e), event.episode

        episode = calculate_episode(resolved, event.episode) if is_scrobble else event.episode
        return resolved.mal_id, episode

    def process(self, envelope: WebhookEnvelope) -> SyncResult:
        """Process a single webhook envelope end to end."""
        md = envelope.metadata
        title = self._safe_title(md.display_title)

        try:
            agent = check_envelope(envelope, self.plex_user, self.anime_libraries)
        except EnvelopeRejected as e:
            logger.info(f"Ignoring webhook for {title}: {e}")
            return SyncResult(success=True, skipped=True, error_kind=e.error_kind, errors=[str(e)], dry_run=self.dry_run)
        except SyncError as e:
            return self._fail(None, e, title)

        is_scrobble = envelope.event == PlexEvent.SCROBBLE.value
        event = None
        try:
            event = normalize(self._raw_guid(md, agent), md.media_type, envelope, self.anime_db)
            mal_id, episode = self.resolve(event, is_scrobble)

            snapshot = self.mal.fetch_list_entry(mal_id)
            if is_scrobble:
                plan = plan_update(mal_id, episode, snapshot)
            else:
                plan = plan_rating(mal_id, event.rating, snapshot)

            if self.dry_run:
                logger.info(f"[DRY RUN] Would update MAL {mal_id} ({self._safe_title(snapshot.title)}): {plan.as_form()}")
                new_snapshot = snapshot
            else:
                new_snapshot = self.mal.apply_update(mal_id, plan, snapshot)
        except SyncError as e:
            return self._fail(event, e, title)

        logger.info(f"MyAnimeList updated successfully: {self._safe_title(snapshot.title)} ({plan.as_form()})")
        self._emit(AnimeUpdateSuccess(
            mal_id=mal_id,
            episode=episode if is_scrobble else None,
            event=event,
            plan=plan,
            snapshot=new_snapshot,
            dry_run=self.dry_run,
        ))
        return SyncResult(
            success=True,
            mal_id=mal_id,
            episode=episode if is_scrobble else None,
            plan=plan,
            dry_run=self.dry_run,
        )

    def _fail(self, event: Optional[CanonicalEvent], error: SyncError, title: str) -> SyncResult:
        skipped = isinstance(error, MappingNotFound)
        if skipped:
            logger.warning(f"Skipping {title}: {error}")
        else:
            logger.error(f"Failed to sync {title}: {error}")

        self._emit(AnimeUpdateFailed(event=event, error_kind=error.error_kind, message=str(error)))
        return SyncResult(
            success=False,
            skipped=skipped,
            error_kind=error.error_kind,
            errors=[f"{title}: {error}"],
            dry_run=self.dry_run,
        )
