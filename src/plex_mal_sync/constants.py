"""Constants used throughout the application."""

from enum import Enum


class SourceDatabase(str, Enum):
    """Numbering scheme an identifier is expressed in."""

    TVDB = "tvdb"
    TMDB = "tmdb"
    ANIDB = "anidb"
    MAL = "mal"


class MediaKind(str, Enum):
    """Plex media types the pipeline understands."""

    EPISODE = "episode"
    MOVIE = "movie"


class MappingMode(str, Enum):
    """How a season rule translates source episodes to MAL episodes."""

    RANGE = "range"
    EXPLICIT = "explicit"


class PlexEvent(str, Enum):
    """Webhook events that trigger a MAL update."""

    SCROBBLE = "media.scrobble"
    RATE = "media.rate"


class PayloadSource(str, Enum):
    """Where a webhook payload came from."""

    PLEX_WEBHOOK = "Plex Webhook"
    TAUTULLI = "Tautulli"


class AgentKind(str, Enum):
    """Metadata agents whose GUIDs can be normalized."""

    HAMA = "hama"
    MAL = "mal"
    PLEX = "plex"


# GUID substrings used to detect the metadata agent
AGENT_MARKERS = {
    "agents.hama": AgentKind.HAMA,
    "myanimelist": AgentKind.MAL,
    "plex://": AgentKind.PLEX,
}

# HTTP Status Codes
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429

# Remote data sources
COMMUNITY_MAP_TVDB_URL = "https://github.com/varoOP/shinkro-mapping/raw/main/tvdb-mal.yaml"
COMMUNITY_MAP_TMDB_URL = "https://github.com/varoOP/shinkro-mapping/raw/main/tmdb-mal.yaml"
ANIME_DB_URL = "https://github.com/varoOP/shinkrodb/raw/main/for-shinkro.json"

# Default values
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MAL_MAX_SCORE = 10
