"""Data models shared by the normalizer, resolver and watch-state machine."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import MappingMode, MediaKind, PayloadSource, SourceDatabase


class WatchStatus(str, Enum):
    """Anime watch status."""

    WATCHING = "watching"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    DROPPED = "dropped"
    PLAN_TO_WATCH = "plan_to_watch"


class PlanField(str, Enum):
    """MAL list fields an update plan can touch."""

    STATUS = "status"
    NUM_WATCHED_EPISODES = "num_watched_episodes"
    START_DATE = "start_date"
    FINISH_DATE = "finish_date"
    NUM_TIMES_REWATCHED = "num_times_rewatched"
    IS_REWATCHING = "is_rewatching"
    SCORE = "score"


def _none_to_empty_list(v):
    return [] if v is None else v


# Mapping table


class SeasonRule(BaseModel):
    """Per-season override inside a range-mapped entry."""

    model_config = ConfigDict(populate_by_name=True)

    source_season: int = Field(alias="tvdbseason")
    start: int = 0
    mapping_mode: MappingMode = Field(default=MappingMode.RANGE, alias="mappingType")
    explicit_episode_map: dict[int, int] = Field(default_factory=dict, alias="explicitEpisodes")
    skip_mal_episodes: list[int] = Field(default_factory=list, alias="skipMalEpisodes")

    @field_validator("mapping_mode", mode="before")
    @classmethod
    def default_mapping_mode(cls, v):
        """Treat a missing or blank mode as range."""
        return v or MappingMode.RANGE

    @field_validator("explicit_episode_map", mode="before")
    @classmethod
    def ensure_episode_map(cls, v):
        return {} if v is None else v

    @field_validator("skip_mal_episodes", mode="before")
    @classmethod
    def ensure_skip_list(cls, v):
        return _none_to_empty_list(v)


class MappingEntry(BaseModel):
    """One TV row of the mapping table (`AnimeMap`)."""

    model_config = ConfigDict(populate_by_name=True)

    mal_id: int = Field(alias="malid")
    title: str = ""
    media_kind: Optional[str] = Field(default=None, alias="type")
    source_database: SourceDatabase = SourceDatabase.TVDB
    source_id: int = Field(alias="tvdbid")
    source_season: int = Field(default=0, alias="tvdbseason")
    start: int = 0
    use_range_mapping: bool = Field(default=False, alias="useMapping")
    season_rules: list[SeasonRule] = Field(default_factory=list, alias="animeMapping")

    @field_validator("season_rules", mode="before")
    @classmethod
    def ensure_rules(cls, v):
        return _none_to_empty_list(v)


class MovieMappingEntry(BaseModel):
    """One movie row of the mapping table (`animeMovies`)."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(default="", alias="mainTitle")
    tmdb_id: int = Field(alias="tmdbid")
    mal_id: int = Field(alias="malid")


class MappingTable(BaseModel):
    """TV and movie mappings used by the resolver."""

    model_config = ConfigDict(populate_by_name=True)

    tv: list[MappingEntry] = Field(default_factory=list, alias="AnimeMap")
    movies: list[MovieMappingEntry] = Field(default_factory=list, alias="animeMovies")

    @field_validator("tv", "movies", mode="before")
    @classmethod
    def ensure_lists(cls, v):
        return _none_to_empty_list(v)


class ResolvedMapping(BaseModel):
    """The part of a mapping entry selected for a single event."""

    model_config = ConfigDict(frozen=True)

    mal_id: int
    start: int = 0
    use_range_mapping: bool = False
    mapping_mode: MappingMode = MappingMode.RANGE
    explicit_episode_map: dict[int, int] = Field(default_factory=dict)
    skip_mal_episodes: tuple[int, ...] = ()


# Pipeline values


class CanonicalEvent(BaseModel):
    """Normalized identity of what was watched or rated."""

    model_config = ConfigDict(frozen=True)

    source_database: SourceDatabase
    source_id: int
    season: int = 1
    episode: int = 1
    media_kind: MediaKind = MediaKind.EPISODE
    rating: Optional[float] = None


class ListSnapshot(BaseModel):
    """Point-in-time read of a MAL list entry."""

    model_config = ConfigDict(frozen=True)

    status: Optional[WatchStatus] = None
    rewatch_count: int = Field(default=0, ge=0)
    total_episodes: int = Field(default=0, ge=0)
    watched_count: int = Field(default=0, ge=0)
    score: int = Field(default=0, ge=0, le=10)
    is_rewatching: bool = False
    title: str = ""
    picture_url: str = ""


class FieldMutation(BaseModel):
    """A single field write in an update plan."""

    model_config = ConfigDict(frozen=True)

    field: PlanField
    value: Any


class UpdatePlan(BaseModel):
    """Ordered MAL list mutations plus the state they lead to."""

    mal_id: int
    mutations: list[FieldMutation] = Field(default_factory=list)
    status: Optional[WatchStatus] = None
    rewatch_count: int = 0

    def get(self, field: PlanField, default: Any = None) -> Any:
        """Return the value planned for a field, if any."""
        for mutation in self.mutations:
            if mutation.field == field:
                return mutation.value
        return default

    def fields(self) -> list[PlanField]:
        """Fields touched by this plan, in order."""
        return [m.field for m in self.mutations]

    def as_form(self) -> dict[str, str]:
        """Render the plan as a MAL v2 `my_list_status` form body."""
        form = {}
        for mutation in self.mutations:
            value = mutation.value
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (date, datetime)):
                value = value.strftime("%Y-%m-%d")
            form[mutation.field.value] = str(value)
        return form


# Anime metadata table


class AnimeRecord(BaseModel):
    """One row of the local anime metadata table."""

    model_config = ConfigDict(populate_by_name=True)

    mal_id: int = Field(default=0, alias="malid")
    title: str = ""
    en_title: str = Field(default="", alias="enTitle")
    anidb_id: int = Field(default=0, alias="anidbid")
    tvdb_id: int = Field(default=0, alias="tvdbid")
    tmdb_id: int = Field(default=0, alias="tmdbid")
    anime_type: str = Field(default="", alias="type")
    release_date: str = Field(default="", alias="releaseDate")

    @field_validator("mal_id", "anidb_id", "tvdb_id", "tmdb_id", mode="before")
    @classmethod
    def null_ids(cls, v):
        return 0 if v is None else v

    @field_validator("title", "en_title", "anime_type", "release_date", mode="before")
    @classmethod
    def null_strings(cls, v):
        return "" if v is None else v


# Webhook envelope


class ProviderGuid(BaseModel):
    """`{"id": "tvdb://123"}` entry used by the native Plex agent."""

    id: str


class WebhookAccount(BaseModel):
    """Plex account that produced the event."""

    id: Optional[int] = None
    title: str = ""


class WebhookMetadata(BaseModel):
    """The `Metadata` block of a Plex or Tautulli webhook."""

    model_config = ConfigDict(populate_by_name=True)

    guid: Union[str, list[ProviderGuid]] = ""
    provider_guids: list[ProviderGuid] = Field(default_factory=list, alias="Guid")
    grandparent_guid: str = Field(default="", alias="grandparentGuid")
    media_type: str = Field(default="", alias="type")
    title: str = ""
    grandparent_title: str = Field(default="", alias="grandparentTitle")
    grandparent_key: str = Field(default="", alias="grandparentKey")
    library_section_title: str = Field(default="", alias="librarySectionTitle")
    index: Optional[int] = None
    parent_index: Optional[int] = Field(default=None, alias="parentIndex")

    @field_validator("guid", "grandparent_guid", mode="before")
    @classmethod
    def null_guid(cls, v):
        return "" if v is None else v

    @field_validator("provider_guids", mode="before")
    @classmethod
    def ensure_provider_guids(cls, v):
        return _none_to_empty_list(v)

    @property
    def guid_string(self) -> str:
        """The GUID when Plex sent it as a plain string."""
        return self.guid if isinstance(self.guid, str) else ""

    @property
    def provider_list(self) -> list[ProviderGuid]:
        """Provider ids, from whichever field Plex put them in."""
        if isinstance(self.guid, list) and self.guid:
            return self.guid
        return self.provider_guids

    @property
    def display_title(self) -> str:
        if self.grandparent_title:
            return f"{self.grandparent_title} - {self.title}"
        return self.title


class WebhookEnvelope(BaseModel):
    """A deserialized Plex or Tautulli webhook."""

    model_config = ConfigDict(populate_by_name=True)

    event: str = ""
    source: PayloadSource = PayloadSource.PLEX_WEBHOOK
    rating: Optional[float] = None
    account: WebhookAccount = Field(default_factory=WebhookAccount, alias="Account")
    metadata: WebhookMetadata = Field(default_factory=WebhookMetadata, alias="Metadata")


# Outcomes


class AnimeUpdateSuccess(BaseModel):
    """Emitted after MAL accepted (or would accept, in dry-run) an update."""

    mal_id: int
    episode: Optional[int] = None
    event: CanonicalEvent
    plan: UpdatePlan
    snapshot: ListSnapshot
    dry_run: bool = False
    timestamp: datetime = Field(default_factory=datetime.now)


class AnimeUpdateFailed(BaseModel):
    """Emitted when an event could not be applied to MAL."""

    event: Optional[CanonicalEvent] = None
    error_kind: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)


class SyncResult(BaseModel):
    """Result of processing one webhook."""

    success: bool
    skipped: bool = False
    mal_id: Optional[int] = None
    episode: Optional[int] = None
    plan: Optional[UpdatePlan] = None
    error_kind: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = False
