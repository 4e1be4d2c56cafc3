"""Turn agent GUIDs from Plex/Tautulli webhooks into canonical events."""

import logging
import re
from typing import Optional, Protocol, Union

from .constants import AGENT_MARKERS, AgentKind, MediaKind, PlexEvent, SourceDatabase
from .errors import MalformedIdentifier, UnsupportedAgent
from .models import CanonicalEvent, ProviderGuid, WebhookEnvelope

logger = logging.getLogger(__name__)

# com.plexapp.agents.hama://anidb-12345/1/1?lang=en
RANGE_AGENT_PATTERN = re.compile(
    r"^[^:/\s]+://\s*(?P<db>[a-z][a-z0-9]*)\s*-\s*(?P<id>[^/?]+?)\s*"
    r"(?:/(?P<season>[^/?]+)/(?P<episode>[^/?]+))?/?(?:\?.*)?$"
)
# net.fribbtastic.coding.plex.myanimelist://12345?lang=en
DIRECT_MAL_PATTERN = re.compile(r"^[^:/\s]+://\s*(?P<id>[^/?]+?)\s*(?:[/?].*)?$")
# tvdb://81797
PROVIDER_ID_PATTERN = re.compile(r"^(?P<db>[a-z][a-z0-9]*)://(?P<id>.+)$")

RawGuid = Union[str, list]


class AnimeLookup(Protocol):
    """Anything that can answer "which TVDB series is this AniDB id"."""

    def tvdb_id_for_anidb(self, anidb_id: int) -> Optional[int]:
        ...


def detect_agent(guid: RawGuid, grandparent_guid: str = "") -> AgentKind:
    """Work out which metadata agent produced a GUID."""
    if isinstance(guid, list):
        return AgentKind.PLEX

    for marker, agent in AGENT_MARKERS.items():
        if marker in (guid or "") or marker in (grandparent_guid or ""):
            return agent

    raise UnsupportedAgent(f"metadata agent not supported: {guid or grandparent_guid!r}")


def _to_int(value: Optional[str], guid: str, what: str) -> int:
    if value is None or not (value.isascii() and value.isdigit()):
        raise MalformedIdentifier(f"unable to parse GUID: {guid}", {what: value})
    return int(value)


def _source_database(token: str, guid: str) -> SourceDatabase:
    try:
        return SourceDatabase(token)
    except ValueError:
        raise UnsupportedAgent(f"source database {token!r} not supported", {"guid": guid})


def parse_range_agent(guid: str) -> tuple[SourceDatabase, int, Optional[int], Optional[int]]:
    """Parse `<ns>://<db>-<id>[/<season>/<episode>]`.

    Season and episode are None when the GUID does not carry them.
    """
    match = RANGE_AGENT_PATTERN.match(guid or "")
    if not match:
        raise MalformedIdentifier(f"unable to parse GUID: {guid}")

    source_id = _to_int(match.group("id"), guid, "id")
    season = episode = None
    if match.group("season") is not None:
        season = _to_int(match.group("season"), guid, "season")
        episode = _to_int(match.group("episode"), guid, "episode")

    return _source_database(match.group("db"), guid), source_id, season, episode


def parse_direct_mal(guid: str) -> int:
    """Parse `<ns>://<malId>[/...]` and return the MAL id."""
    match = DIRECT_MAL_PATTERN.match(guid or "")
    if not match:
        raise MalformedIdentifier(f"unable to parse GUID: {guid}")
    return _to_int(match.group("id"), guid, "id")


def select_provider_id(providers: list, media_kind: MediaKind) -> tuple[SourceDatabase, int]:
    """Pick the TVDB id for episodes or the TMDB id for movies."""
    wanted = SourceDatabase.TVDB if media_kind == MediaKind.EPISODE else SourceDatabase.TMDB

    for provider in providers:
        raw = provider.id if isinstance(provider, ProviderGuid) else (
            provider.get("id", "") if isinstance(provider, dict) else str(provider)
        )
        match = PROVIDER_ID_PATTERN.match(raw)
        if not match or match.group("db") != wanted.value:
            continue
        return wanted, _to_int(match.group("id"), raw, "id")

    raise UnsupportedAgent(f"no supported online database found for {media_kind.value}")


def _envelope_numbering(media_kind: MediaKind, envelope: Optional[WebhookEnvelope]) -> tuple[int, int]:
    if media_kind == MediaKind.MOVIE or envelope is None:
        return 1, 1
    md = envelope.metadata
    season = md.parent_index if md.parent_index is not None else 1
    episode = md.index if md.index is not None else 1
    return season, episode


def _rating(envelope: Optional[WebhookEnvelope]) -> Optional[float]:
    if envelope is None or envelope.event != PlexEvent.RATE.value:
        return None
    return envelope.rating


def normalize(
    raw_guid: RawGuid,
    media_kind: Union[MediaKind, str],
    envelope: Optional[WebhookEnvelope] = None,
    anime_lookup: Optional[AnimeLookup] = None,
) -> CanonicalEvent:
    """Build a CanonicalEvent from an agent GUID and its webhook envelope.

    Raises UnsupportedAgent when the agent or database is unknown and
    MalformedIdentifier when a known agent's GUID does not parse.
    """
    media_kind = MediaKind(media_kind)
    grandparent_guid = envelope.metadata.grandparent_guid if envelope else ""
    agent = detect_agent(raw_guid, grandparent_guid)

    if agent == AgentKind.HAMA:
        source_db, source_id, season, episode = parse_range_agent(raw_guid)
        if season is None:
            if media_kind == MediaKind.EPISODE and envelope and envelope.metadata.index is not None:
                season, episode = _envelope_numbering(media_kind, envelope)
            else:
                media_kind = MediaKind.MOVIE
                season, episode = 1, 1
    elif agent == AgentKind.MAL:
        source_db = SourceDatabase.MAL
        source_id = parse_direct_mal(raw_guid)
        season, episode = _envelope_numbering(media_kind, envelope)
    else:
        providers = raw_guid if isinstance(raw_guid, list) else (
            envelope.metadata.provider_list if envelope else []
        )
        source_db, source_id = select_provider_id(providers, media_kind)
        season, episode = _envelope_numbering(media_kind, envelope)

    event = CanonicalEvent(
        source_database=source_db,
        source_id=source_id,
        season=season,
        episode=episode,
        media_kind=media_kind,
        rating=_rating(envelope),
    )
    logger.debug(f"Normalized {agent.value} GUID {raw_guid!r} to {event}")

    if anime_lookup is not None:
        event = apply_anidb_fallback(event, anime_lookup)
    return event


def apply_anidb_fallback(event: CanonicalEvent, anime_lookup: AnimeLookup) -> CanonicalEvent:
    """Swap a multi-season AniDB id for the TVDB series on file, if any."""
    if event.source_database != SourceDatabase.ANIDB or event.season <= 1:
        return event

    tvdb_id = anime_lookup.tvdb_id_for_anidb(event.source_id)
    if not tvdb_id:
        logger.debug(f"No TVDB id on file for anidb-{event.source_id}, keeping AniDB identity")
        return event

    logger.debug(f"Converted anidb-{event.source_id} to tvdb-{tvdb_id}")
    return event.model_copy(update={"source_database": SourceDatabase.TVDB, "source_id": tvdb_id})
