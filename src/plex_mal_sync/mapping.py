"""Mapping tables and the resolver that turns source ids into MAL ids."""

import logging
import threading
from pathlib import Path
from typing import Optional

import requests
import yaml
from pydantic import ValidationError

from .constants import (
    COMMUNITY_MAP_TMDB_URL,
    COMMUNITY_MAP_TVDB_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MappingMode,
    MediaKind,
    SourceDatabase,
)
from .errors import IncorrectEpisodeCalculation, MappingNotFound, MappingTableError
from .models import (
    CanonicalEvent,
    MappingEntry,
    MappingTable,
    MovieMappingEntry,
    ResolvedMapping,
    SeasonRule,
)

logger = logging.getLogger(__name__)

TV_ROOT_KEY = "AnimeMap"
MOVIE_ROOT_KEY = "animeMovies"


# Resolution


def find_season_rule(entry: MappingEntry, season: int) -> Optional[SeasonRule]:
    """Return the first season rule for `season`, or None."""
    return next((rule for rule in entry.season_rules if rule.source_season == season), None)


def _from_rule(entry: MappingEntry, rule: SeasonRule) -> ResolvedMapping:
    return ResolvedMapping(
        mal_id=entry.mal_id,
        start=rule.start,
        use_range_mapping=True,
        mapping_mode=rule.mapping_mode,
        explicit_episode_map=dict(rule.explicit_episode_map),
        skip_mal_episodes=tuple(rule.skip_mal_episodes),
    )


def _from_entry(entry: MappingEntry) -> ResolvedMapping:
    return ResolvedMapping(mal_id=entry.mal_id, start=entry.start, use_range_mapping=False)


def select_tv_entry(entries: list[MappingEntry], event: CanonicalEvent) -> ResolvedMapping:
    """Pick the mapping entry for a TV event.

    A matching season rule on a range-mapped entry wins outright. Otherwise
    plain entries for the season are candidates, and a season split over
    several MAL titles goes to the candidate with the largest start that is
    not past the episode.
    """
    candidates = []
    for entry in entries:
        if entry.source_id != event.source_id or entry.source_database != event.source_database:
            continue

        if entry.use_range_mapping:
            rule = find_season_rule(entry, event.season)
            if rule is not None:
                return _from_rule(entry, rule)
            continue

        if entry.source_season == event.season:
            candidates.append(entry)

    if not candidates:
        raise MappingNotFound(
            "anime not found in map",
            {"source": event.source_database.value, "id": event.source_id, "season": event.season},
        )

    if len(candidates) == 1:
        return _from_entry(candidates[0])

    eligible = [c for c in candidates if c.start <= event.episode]
    if not eligible:
        raise MappingNotFound(
            "no split-season entry starts at or before the episode",
            {"id": event.source_id, "season": event.season, "episode": event.episode},
        )

    best = max(eligible, key=lambda c: c.start)
    logger.debug(f"Split season {event.season} of {event.source_id}: picked MAL {best.mal_id} (start {best.start})")
    return _from_entry(best)


def select_movie_entry(movies: list[MovieMappingEntry], event: CanonicalEvent) -> ResolvedMapping:
    """Exact TMDB id match, first one wins."""
    if event.source_database == SourceDatabase.TMDB:
        for movie in movies:
            if movie.tmdb_id == event.source_id:
                return ResolvedMapping(mal_id=movie.mal_id)

    raise MappingNotFound(
        "anime movie not found in map",
        {"source": event.source_database.value, "id": event.source_id},
    )


def resolve(event: CanonicalEvent, table: MappingTable) -> ResolvedMapping:
    """Resolve the MAL id and episode offset for a canonical event."""
    if event.source_database == SourceDatabase.MAL:
        return ResolvedMapping(mal_id=event.source_id, start=1)

    if event.media_kind == MediaKind.MOVIE:
        return select_movie_entry(table.movies, event)

    return select_tv_entry(table.tv, event)


def calculate_episode(resolved: ResolvedMapping, episode: int) -> int:
    """Translate a source episode number into MAL numbering."""
    # community maps use 0 for "from the first episode"
    start = resolved.start or 1

    if resolved.mapping_mode == MappingMode.EXPLICIT:
        if episode not in resolved.explicit_episode_map:
            raise MappingNotFound(
                "episode missing from explicit mapping",
                {"malid": resolved.mal_id, "episode": episode},
            )
        mal_episode = resolved.explicit_episode_map[episode]
    elif resolved.use_range_mapping:
        mal_episode = start + episode - 1
        for skip in sorted(set(resolved.skip_mal_episodes)):
            if skip <= mal_episode:
                mal_episode += 1
    else:
        mal_episode = episode - start + 1

    if mal_episode <= 0:
        raise IncorrectEpisodeCalculation(
            f"mapping produced MAL episode {mal_episode}",
            {"malid": resolved.mal_id, "start": resolved.start, "episode": episode},
        )
    return mal_episode


# Loading


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def load_mapping_document(source: str, session: Optional[requests.Session] = None) -> dict:
    """Read a YAML mapping document from a path or URL."""
    try:
        if _is_url(source):
            http = session or requests
            response = http.get(source, timeout=DEFAULT_REQUEST_TIMEOUT_SECONDS)
            response.raise_for_status()
            text = response.text
        else:
            text = Path(source).read_text(encoding="utf-8")
        document = yaml.safe_load(text) or {}
    except (requests.RequestException, OSError, yaml.YAMLError) as e:
        raise MappingTableError(f"failed to load mapping from {source}: {e}")

    if not isinstance(document, dict):
        raise MappingTableError(f"mapping document {source} is not a mapping")
    return document


def _parse_rows(rows, model, source: str, strict: bool) -> list:
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise MappingTableError(f"mapping document {source} root is not a list")

    parsed = []
    for index, row in enumerate(rows):
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as e:
            if strict:
                raise MappingTableError(f"invalid row {index} in {source}", {"errors": e.errors()})
            logger.warning(f"Skipping invalid row {index} in {source}: {e.error_count()} error(s)")
    return parsed


def load_mapping_table(
    tv_source: str = COMMUNITY_MAP_TVDB_URL,
    movie_source: str = COMMUNITY_MAP_TMDB_URL,
    strict: bool = False,
    session: Optional[requests.Session] = None,
) -> MappingTable:
    """Load TV and movie mappings into a MappingTable.

    Rows that fail validation are dropped with a warning, so a lookup that
    would have hit them ends in MappingNotFound. With `strict` the first bad
    row raises MappingTableError instead.
    """
    tv_doc = load_mapping_document(tv_source, session)
    movie_doc = load_mapping_document(movie_source, session)

    table = MappingTable(
        tv=_parse_rows(tv_doc.get(TV_ROOT_KEY), MappingEntry, tv_source, strict),
        movies=_parse_rows(movie_doc.get(MOVIE_ROOT_KEY), MovieMappingEntry, movie_source, strict),
    )
    logger.info(f"Loaded {len(table.tv)} TV and {len(table.movies)} movie mappings")
    return table


class MappingService:
    """Loads the configured mapping table once and resolves against it."""

    def __init__(
        self,
        tv_source: Optional[str] = None,
        movie_source: Optional[str] = None,
        table: Optional[MappingTable] = None,
        session: Optional[requests.Session] = None,
    ):
        self.tv_source = tv_source or COMMUNITY_MAP_TVDB_URL
        self.movie_source = movie_source or COMMUNITY_MAP_TMDB_URL
        self.session = session
        self._table = table
        self._lock = threading.Lock()

    @property
    def table(self) -> MappingTable:
        if self._table is None:
            with self._lock:
                if self._table is None:
                    self._table = load_mapping_table(self.tv_source, self.movie_source, session=self.session)
        return self._table

    def reload(self) -> MappingTable:
        """Re-read the mapping sources and swap in the new table."""
        table = load_mapping_table(self.tv_source, self.movie_source, session=self.session)
        with self._lock:
            self._table = table
        return table

    def resolve(self, event: CanonicalEvent) -> ResolvedMapping:
        return resolve(event, self.table)
