"""Unit tests for data models."""

from datetime import date

import pytest
from plex_mal_sync.constants import MappingMode, SourceDatabase
from plex_mal_sync.models import (
    AnimeRecord,
    CanonicalEvent,
    FieldMutation,
    ListSnapshot,
    MappingEntry,
    MappingTable,
    PlanField,
    UpdatePlan,
    WatchStatus,
    WebhookEnvelope,
)


def test_mapping_entry_from_yaml_keys():
    """Test building a mapping entry from community map keys."""
    entry = MappingEntry.model_validate({
        "malid": 21,
        "title": "One Piece",
        "type": "tv",
        "tvdbid": 81797,
        "tvdbseason": 0,
        "start": 0,
        "useMapping": True,
        "animeMapping": [
            {"tvdbseason": 21, "start": 892},
            {"tvdbseason": 22, "start": 1086, "skipMalEpisodes": None},
        ],
    })

    assert entry.mal_id == 21
    assert entry.source_id == 81797
    assert entry.source_database == SourceDatabase.TVDB
    assert entry.use_range_mapping is True
    assert len(entry.season_rules) == 2
    assert entry.season_rules[0].mapping_mode == MappingMode.RANGE
    assert entry.season_rules[1].skip_mal_episodes == []


def test_season_rule_explicit_map_keys():
    """Test that explicit episode keys are coerced to ints."""
    entry = MappingEntry.model_validate({
        "malid": 5081,
        "tvdbid": 102261,
        "useMapping": True,
        "animeMapping": [
            {"tvdbseason": 0, "mappingType": "explicit", "explicitEpisodes": {"7": 6, "8": 11}},
        ],
    })

    rule = entry.season_rules[0]
    assert rule.mapping_mode == MappingMode.EXPLICIT
    assert rule.explicit_episode_map == {7: 6, 8: 11}


def test_mapping_table_empty_sections():
    """Test that null sections load as empty lists."""
    table = MappingTable.model_validate({"AnimeMap": None, "animeMovies": None})

    assert table.tv == []
    assert table.movies == []


def test_canonical_event_defaults():
    """Test canonical event defaults to season 1 episode 1."""
    event = CanonicalEvent(source_database=SourceDatabase.TVDB, source_id=1)

    assert event.season == 1
    assert event.episode == 1
    assert event.rating is None


def test_list_snapshot_score_validation():
    """Test that MAL scores are limited to 0-10."""
    assert ListSnapshot(score=10).score == 10

    with pytest.raises(Exception):
        ListSnapshot(score=11)

    with pytest.raises(Exception):
        ListSnapshot(rewatch_count=-1)


def test_update_plan_as_form():
    """Test rendering a plan as a MAL form body."""
    plan = UpdatePlan(
        mal_id=1,
        mutations=[
            FieldMutation(field=PlanField.FINISH_DATE, value=date(2024, 3, 9)),
            FieldMutation(field=PlanField.IS_REWATCHING, value=False),
            FieldMutation(field=PlanField.NUM_WATCHED_EPISODES, value=12),
            FieldMutation(field=PlanField.STATUS, value=WatchStatus.COMPLETED),
        ],
        status=WatchStatus.COMPLETED,
    )

    assert plan.as_form() == {
        "finish_date": "2024-03-09",
        "is_rewatching": "false",
        "num_watched_episodes": "12",
        "status": "completed",
    }
    assert plan.get(PlanField.NUM_WATCHED_EPISODES) == 12
    assert plan.get(PlanField.SCORE) is None
    assert plan.fields()[0] == PlanField.FINISH_DATE


def test_anime_record_null_ids():
    """Test that null ids in the anime table become 0."""
    record = AnimeRecord.model_validate({"malid": 1, "tvdbid": None, "anidbid": 23, "title": None})

    assert record.tvdb_id == 0
    assert record.anidb_id == 23
    assert record.title == ""


def test_envelope_display_title():
    """Test display title for episodes and movies."""
    episode = WebhookEnvelope.model_validate({
        "Metadata": {"grandparentTitle": "Frieren", "title": "The Journey's End"},
    })
    movie = WebhookEnvelope.model_validate({"Metadata": {"title": "Your Name."}})

    assert episode.metadata.display_title == "Frieren - The Journey's End"
    assert movie.metadata.display_title == "Your Name."


def test_envelope_guid_list():
    """Test that a native agent GUID list is exposed as provider ids."""
    envelope = WebhookEnvelope.model_validate({
        "Metadata": {"guid": [{"id": "tvdb://1"}, {"id": "tmdb://2"}]},
    })

    assert envelope.metadata.guid_string == ""
    assert [g.id for g in envelope.metadata.provider_list] == ["tvdb://1", "tmdb://2"]


def test_envelope_ignores_unknown_fields():
    """Test extra webhook keys are dropped from the envelope."""
    envelope = WebhookEnvelope.model_validate({"event": "media.scrobble", "Server": {"title": "x"}})

    assert set(envelope.model_dump()) == {"event", "source", "rating", "account", "metadata"}
