"""Unit tests for the mapping resolver and loader."""

from unittest.mock import MagicMock

import pytest
import requests
from plex_mal_sync.constants import MappingMode, MediaKind, SourceDatabase
from plex_mal_sync.errors import IncorrectEpisodeCalculation, MappingNotFound, MappingTableError
from plex_mal_sync.mapping import (
    MappingService,
    calculate_episode,
    find_season_rule,
    load_mapping_table,
    resolve,
)
from plex_mal_sync.models import CanonicalEvent, MappingEntry, MappingTable, MovieMappingEntry, ResolvedMapping


TV_YAML = """\
AnimeMap:
  - malid: 21
    title: One Piece
    type: tv
    tvdbid: 81797
    tvdbseason: 0
    start: 0
    useMapping: true
    animeMapping:
      - tvdbseason: 21
        start: 892
  - malid: 53111
    title: "Dungeon ni Deai wo Motomeru no wa Machigatteiru Darou ka IV"
    type: tv
    tvdbid: 289882
    tvdbseason: 4
    start: 0
  - malid: 55888
    title: "Dungeon ni Deai wo Motomeru no wa Machigatteiru Darou ka IV Part 2"
    type: tv
    tvdbid: 289882
    tvdbseason: 4
    start: 12
"""

MOVIE_YAML = """\
animeMovies:
  - mainTitle: Kimi no Na wa.
    tmdbid: 372058
    malid: 32281
"""


def tv_event(source_id, season, episode):
    return CanonicalEvent(
        source_database=SourceDatabase.TVDB,
        source_id=source_id,
        season=season,
        episode=episode,
    )


def entry(mal_id, source_id, season, start, **kwargs):
    return MappingEntry(mal_id=mal_id, source_id=source_id, source_season=season, start=start, **kwargs)


@pytest.fixture
def map_files(tmp_path):
    tv_path = tmp_path / "tvdb-mal.yaml"
    movie_path = tmp_path / "tmdb-mal.yaml"
    tv_path.write_text(TV_YAML, encoding="utf-8")
    movie_path.write_text(MOVIE_YAML, encoding="utf-8")
    return str(tv_path), str(movie_path)


@pytest.fixture
def table(map_files):
    return load_mapping_table(*map_files)


def test_one_piece_season_rule(table):
    """Test that a season rule on a range-mapped entry is selected."""
    resolved = resolve(tv_event(81797, 21, 186), table)

    assert resolved.mal_id == 21
    assert resolved.start == 892
    assert resolved.use_range_mapping is True
    assert calculate_episode(resolved, 186) == 1077


def test_danmachi_split_season(table):
    """Test a split season goes to the greatest start not past the episode."""
    resolved = resolve(tv_event(289882, 4, 13), table)

    assert resolved.mal_id == 55888
    assert resolved.start == 12
    assert calculate_episode(resolved, 13) == 2


def test_split_season_boundary(table):
    """Test that episode == start selects that candidate."""
    assert resolve(tv_event(289882, 4, 12), table).mal_id == 55888
    assert resolve(tv_event(289882, 4, 11), table).mal_id == 53111


def test_split_season_no_eligible_candidate():
    """Test a split season where every start is past the episode."""
    table = MappingTable(tv=[entry(1, 10, 1, 5), entry(2, 10, 1, 9)])

    with pytest.raises(MappingNotFound):
        resolve(tv_event(10, 1, 3), table)


def test_single_candidate_keeps_start():
    """Test that a lone candidate is returned with its start unchanged."""
    table = MappingTable(tv=[entry(7, 10, 2, 13)])

    resolved = resolve(tv_event(10, 2, 1), table)

    assert resolved.start == 13
    assert resolved.use_range_mapping is False


def test_range_entry_without_rule_is_not_a_candidate():
    """Test that a range-mapped entry only matches through its season rules."""
    table = MappingTable(tv=[entry(21, 81797, 1, 0, use_range_mapping=True)])

    with pytest.raises(MappingNotFound):
        resolve(tv_event(81797, 1, 1), table)


def test_entry_must_match_source_database():
    """Test that ids from another database never match."""
    table = MappingTable(tv=[entry(1, 10, 1, 0)])
    event = CanonicalEvent(source_database=SourceDatabase.ANIDB, source_id=10)

    with pytest.raises(MappingNotFound):
        resolve(event, table)


def test_mapping_not_found(table):
    """Test unknown ids and seasons."""
    with pytest.raises(MappingNotFound):
        resolve(tv_event(1, 1, 1), table)

    with pytest.raises(MappingNotFound):
        resolve(tv_event(289882, 5, 1), table)


def test_direct_mal_short_circuits():
    """Test that MAL ids resolve to themselves."""
    event = CanonicalEvent(source_database=SourceDatabase.MAL, source_id=5114, episode=9)

    resolved = resolve(event, MappingTable())

    assert resolved == ResolvedMapping(mal_id=5114, start=1)
    assert calculate_episode(resolved, 9) == 9


def test_movie_lookup(table):
    """Test that movies are matched on TMDB id."""
    movie = CanonicalEvent(source_database=SourceDatabase.TMDB, source_id=372058, media_kind=MediaKind.MOVIE)

    assert resolve(movie, table).mal_id == 32281

    with pytest.raises(MappingNotFound):
        resolve(movie.model_copy(update={"source_id": 1}), table)

    with pytest.raises(MappingNotFound):
        resolve(movie.model_copy(update={"source_database": SourceDatabase.TVDB}), table)


def test_find_season_rule_first_match():
    """Test that the first rule for a season wins."""
    mapped = MappingEntry.model_validate({
        "malid": 1,
        "tvdbid": 1,
        "useMapping": True,
        "animeMapping": [{"tvdbseason": 2, "start": 5}, {"tvdbseason": 2, "start": 9}],
    })

    assert find_season_rule(mapped, 2).start == 5
    assert find_season_rule(mapped, 3) is None


def test_monogatari_explicit():
    """Test explicit episode mapping."""
    resolved = ResolvedMapping(
        mal_id=5081,
        use_range_mapping=True,
        mapping_mode=MappingMode.EXPLICIT,
        explicit_episode_map={7: 6, 8: 11, 9: 16},
    )

    assert calculate_episode(resolved, 7) == 6
    assert calculate_episode(resolved, 9) == 16


def test_explicit_miss_is_mapping_not_found():
    """Test that an episode missing from an explicit map is not guessed."""
    resolved = ResolvedMapping(mal_id=5081, mapping_mode=MappingMode.EXPLICIT, explicit_episode_map={7: 6})

    with pytest.raises(MappingNotFound):
        calculate_episode(resolved, 8)


def test_monogatari_range_with_skips():
    """Test that skipped MAL episodes shift later episodes."""
    resolved = ResolvedMapping(mal_id=5081, start=1, use_range_mapping=True, skip_mal_episodes=(6, 11, 16))

    assert calculate_episode(resolved, 23) == 26
    assert calculate_episode(resolved, 5) == 5
    assert calculate_episode(resolved, 6) == 7


def test_unsorted_skips_are_sorted():
    """Test that skip order and duplicates do not change the result."""
    unsorted = ResolvedMapping(mal_id=1, start=1, use_range_mapping=True, skip_mal_episodes=(16, 6, 11, 6))
    ordered = ResolvedMapping(mal_id=1, start=1, use_range_mapping=True, skip_mal_episodes=(6, 11, 16))

    for episode in range(1, 30):
        assert calculate_episode(unsorted, episode) == calculate_episode(ordered, episode)


def test_range_mode_is_monotonic():
    """Test that MAL episodes never go backwards as source episodes increase."""
    resolved = ResolvedMapping(mal_id=1, start=3, use_range_mapping=True, skip_mal_episodes=(4, 10))

    results = [calculate_episode(resolved, episode) for episode in range(1, 20)]

    assert results == sorted(results)


def test_range_mode_without_skips():
    """Test plain range arithmetic."""
    resolved = ResolvedMapping(mal_id=1, start=13, use_range_mapping=True)

    assert calculate_episode(resolved, 1) == 13
    assert calculate_episode(resolved, 4) == 16


def test_start_zero_is_first_episode():
    """Test that start 0 counts from episode 1."""
    assert calculate_episode(ResolvedMapping(mal_id=1, start=0), 5) == 5
    assert calculate_episode(ResolvedMapping(mal_id=1, start=0, use_range_mapping=True), 5) == 5


def test_incorrect_episode_calculation():
    """Test that a non-positive MAL episode raises."""
    with pytest.raises(IncorrectEpisodeCalculation):
        calculate_episode(ResolvedMapping(mal_id=1, start=13), 2)


def test_invalid_rows_dropped(tmp_path, map_files):
    """Test that invalid rows are skipped unless strict."""
    bad = tmp_path / "bad.yaml"
    bad.write_text("AnimeMap:\n  - malid: 1\n    tvdbid: 5\n  - title: no ids\n", encoding="utf-8")

    table = load_mapping_table(str(bad), map_files[1])
    assert len(table.tv) == 1
    assert len(table.movies) == 1

    with pytest.raises(MappingTableError):
        load_mapping_table(str(bad), map_files[1], strict=True)


def test_load_errors(tmp_path, map_files):
    """Test unreadable and malformed documents."""
    with pytest.raises(MappingTableError):
        load_mapping_table(str(tmp_path / "missing.yaml"), map_files[1])

    broken = tmp_path / "broken.yaml"
    broken.write_text("AnimeMap: [unclosed\n", encoding="utf-8")
    with pytest.raises(MappingTableError):
        load_mapping_table(str(broken), map_files[1])

    not_list = tmp_path / "not_list.yaml"
    not_list.write_text("AnimeMap: 3\n", encoding="utf-8")
    with pytest.raises(MappingTableError):
        load_mapping_table(str(not_list), map_files[1])


def test_load_from_url():
    """Test loading mappings over HTTP."""
    session = MagicMock()
    tv_response = MagicMock(text=TV_YAML)
    movie_response = MagicMock(text=MOVIE_YAML)
    session.get.side_effect = [tv_response, movie_response]

    table = load_mapping_table("https://example.com/tv.yaml", "https://example.com/movie.yaml", session=session)

    assert len(table.tv) == 3
    assert table.movies == [MovieMappingEntry(title="Kimi no Na wa.", tmdb_id=372058, mal_id=32281)]


def test_load_from_url_error():
    """Test that HTTP failures become MappingTableError."""
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("offline")

    with pytest.raises(MappingTableError):
        load_mapping_table("https://example.com/tv.yaml", "https://example.com/movie.yaml", session=session)


def test_mapping_service_lazy_load_and_reload(tmp_path, map_files):
    """Test the service loads once and reload picks up changes."""
    tv_path, movie_path = map_files
    service = MappingService(tv_path, movie_path)

    assert service.resolve(tv_event(81797, 21, 1)).mal_id == 21

    with open(tv_path, "w", encoding="utf-8") as f:
        f.write("AnimeMap:\n  - malid: 99\n    tvdbid: 81797\n    tvdbseason: 21\n")
    assert service.resolve(tv_event(81797, 21, 1)).mal_id == 21

    service.reload()
    assert service.resolve(tv_event(81797, 21, 1)).mal_id == 99
