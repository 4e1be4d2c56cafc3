"""Parse Plex/Tautulli webhook bodies and decide whether to act on them."""

import json
import logging
from typing import Union

from pydantic import ValidationError

from .constants import AgentKind, MediaKind, PayloadSource, PlexEvent
from .errors import EnvelopeRejected, PayloadError
from .models import WebhookEnvelope
from .normalizer import detect_agent

logger = logging.getLogger(__name__)

RawPayload = Union[bytes, str, dict]


def _load_json(payload: RawPayload) -> dict:
    if isinstance(payload, dict):
        return payload
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"failed to unmarshal payload: {e}")
    if not isinstance(data, dict):
        raise PayloadError("payload is not a JSON object")
    return data


def parse_plex_payload(payload: RawPayload) -> WebhookEnvelope:
    """Parse the JSON `payload` part of a native Plex webhook."""
    data = _load_json(payload)
    try:
        envelope = WebhookEnvelope.model_validate({**data, "source": PayloadSource.PLEX_WEBHOOK})
    except ValidationError as e:
        raise PayloadError(f"failed to unmarshal plex payload: {e.error_count()} error(s)", {"errors": e.errors()})
    return envelope


def _tautulli_index(value, field: str, media_type: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        if media_type == MediaKind.EPISODE.value:
            raise PayloadError(f"tautulli payload is missing {field}")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PayloadError(f"tautulli {field} is not a number: {value!r}")


def parse_tautulli_payload(payload: RawPayload) -> WebhookEnvelope:
    """Parse a Tautulli webhook that mimics the Plex payload.

    Tautulli's templates send `index` and `parentIndex` as strings.
    """
    data = _load_json(payload)
    metadata = dict(data.get("Metadata") or {})
    media_type = metadata.get("type", "")
    metadata["index"] = _tautulli_index(metadata.get("index"), "index", media_type)
    metadata["parentIndex"] = _tautulli_index(metadata.get("parentIndex"), "parentIndex", media_type)

    try:
        return WebhookEnvelope.model_validate({
            "event": data.get("event", ""),
            "source": PayloadSource.TAUTULLI,
            "rating": data.get("rating"),
            "Account": {"title": (data.get("Account") or {}).get("title", "")},
            "Metadata": metadata,
        })
    except ValidationError as e:
        raise PayloadError(f"failed to unmarshal tautulli payload: {e.error_count()} error(s)", {"errors": e.errors()})


def check_envelope(envelope: WebhookEnvelope, plex_user: str, anime_libraries: list[str]) -> AgentKind:
    """Gatekeeping before the pipeline runs; returns the detected agent.

    Checks, in order: account, event, library, media type, metadata agent.
    """
    md = envelope.metadata

    if envelope.account.title != (plex_user or ""):
        raise EnvelopeRejected("unauthorized plex user", {"user": envelope.account.title})

    if envelope.event not in (PlexEvent.SCROBBLE.value, PlexEvent.RATE.value):
        raise EnvelopeRejected("plex event not supported", {"event": envelope.event})

    if not md.library_section_title or md.library_section_title not in (anime_libraries or []):
        raise EnvelopeRejected("plex library not set as an anime library", {"library": md.library_section_title})

    if md.media_type not in (MediaKind.EPISODE.value, MediaKind.MOVIE.value):
        raise EnvelopeRejected("plex media type not supported", {"type": md.media_type})

    if envelope.event == PlexEvent.RATE.value and (envelope.rating is None or envelope.rating < 0):
        raise EnvelopeRejected("plex rating missing or negative", {"rating": envelope.rating})

    agent = detect_agent(md.guid, md.grandparent_guid)
    logger.debug(f"Accepted {envelope.event} for {md.display_title} ({agent.value} agent)")
    return agent
