"""Local anime metadata table (MAL/AniDB/TVDB/TMDB cross references)."""

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Iterable, Optional, Union

import requests
from pydantic import ValidationError

from .constants import ANIME_DB_URL, DEFAULT_REQUEST_TIMEOUT_SECONDS, SourceDatabase
from .errors import MappingTableError
from .models import AnimeRecord

logger = logging.getLogger(__name__)

_ID_FIELDS = {
    SourceDatabase.MAL: "mal_id",
    SourceDatabase.ANIDB: "anidb_id",
    SourceDatabase.TVDB: "tvdb_id",
    SourceDatabase.TMDB: "tmdb_id",
}


class AnimeDatabase:
    """In-memory cross-reference table keyed by every id it carries."""

    def __init__(self, records: Iterable[AnimeRecord] = ()):
        self._index: dict[SourceDatabase, dict[int, list[AnimeRecord]]] = {
            db: defaultdict(list) for db in _ID_FIELDS
        }
        self.size = 0
        for record in records:
            self.add(record)

    def add(self, record: AnimeRecord) -> None:
        for db, attr in _ID_FIELDS.items():
            value = getattr(record, attr)
            if value > 0:
                self._index[db][value].append(record)
        self.size += 1

    @classmethod
    def load(cls, source: Optional[str] = None, session: Optional[requests.Session] = None) -> "AnimeDatabase":
        """Load the table from a JSON file or URL (defaults to shinkrodb)."""
        source = source or ANIME_DB_URL
        try:
            if source.startswith(("http://", "https://")):
                http = session or requests
                response = http.get(source, timeout=DEFAULT_REQUEST_TIMEOUT_SECONDS)
                response.raise_for_status()
                rows = response.json()
            else:
                with open(Path(source), "r", encoding="utf-8") as f:
                    rows = json.load(f)
        except (requests.RequestException, OSError, ValueError) as e:
            raise MappingTableError(f"failed to load anime database from {source}: {e}")

        if not isinstance(rows, list):
            raise MappingTableError(f"anime database {source} is not a list")

        records = []
        for row in rows:
            try:
                records.append(AnimeRecord.model_validate(row))
            except ValidationError as e:
                logger.debug(f"Skipping invalid anime database row: {e.error_count()} error(s)")

        logger.info(f"Loaded {len(records)} anime records from {source}")
        return cls(records)

    def get(self, id_type: Union[SourceDatabase, str], id: int) -> Optional[AnimeRecord]:
        """Return the preferred record for an id.

        Rows with a TVDB id win, then the highest MAL id. When more than one
        row matches the MAL id is reported as 0, since the id alone cannot
        tell which title was meant.
        """
        rows = self._index[SourceDatabase(id_type)].get(id, [])
        if not rows:
            return None

        ordered = sorted(rows, key=lambda r: (r.tvdb_id > 0, r.mal_id), reverse=True)
        best = ordered[0]
        if len(ordered) > 1:
            logger.debug(f"Multiple rows for {SourceDatabase(id_type).value} id {id}, MAL id is ambiguous")
            best = best.model_copy(update={"mal_id": 0})
        return best

    def tvdb_id_for_anidb(self, anidb_id: int) -> Optional[int]:
        record = self.get(SourceDatabase.ANIDB, anidb_id)
        if record is None or record.tvdb_id <= 0:
            return None
        return record.tvdb_id

    def __len__(self) -> int:
        return self.size
