"""Watch-state machine: decide which MAL list fields an event should change."""

import logging
from datetime import date
from typing import Optional

from .constants import MAL_MAX_SCORE
from .errors import EpisodeExceedsTotal
from .models import FieldMutation, ListSnapshot, PlanField, UpdatePlan, WatchStatus

logger = logging.getLogger(__name__)


def validate_episode(episode: int, snapshot: ListSnapshot) -> None:
    """Refuse episodes past the total MAL knows about (0 means unknown)."""
    if snapshot.total_episodes != 0 and episode > snapshot.total_episodes:
        raise EpisodeExceedsTotal(
            f"number of episodes watched greater than total number of episodes: "
            f"{snapshot.title}: Episode {episode}",
            {"episode": episode, "total": snapshot.total_episodes},
        )


def _is_finished(episode: int, snapshot: ListSnapshot) -> bool:
    return episode == snapshot.total_episodes


def _is_first_episode(episode: int, snapshot: ListSnapshot) -> bool:
    return episode == 1 and snapshot.watched_count == 0


def _is_in_progress(episode: int, snapshot: ListSnapshot) -> bool:
    return (episode < snapshot.total_episodes or snapshot.total_episodes == 0) and episode >= 1


def plan_update(
    mal_id: int,
    episode: int,
    snapshot: ListSnapshot,
    today: Optional[date] = None,
) -> UpdatePlan:
    """Plan the list update for a scrobble of `episode` (MAL numbering).

    Completed titles stay completed: watching them again marks the entry as
    rewatching, and reaching the last episode again closes the cycle by
    bumping the rewatch count.
    """
    validate_episode(episode, snapshot)
    today = today or date.today()

    def mutation(field: PlanField, value) -> FieldMutation:
        return FieldMutation(field=field, value=value)

    if snapshot.status == WatchStatus.COMPLETED:
        if episode < snapshot.total_episodes or snapshot.total_episodes == 0:
            mutations = [
                mutation(PlanField.IS_REWATCHING, True),
                mutation(PlanField.NUM_WATCHED_EPISODES, episode),
                mutation(PlanField.STATUS, WatchStatus.COMPLETED),
            ]
            return UpdatePlan(
                mal_id=mal_id,
                mutations=mutations,
                status=WatchStatus.COMPLETED,
                rewatch_count=snapshot.rewatch_count,
            )

        rewatch_count = snapshot.rewatch_count + 1
        mutations = [
            mutation(PlanField.NUM_TIMES_REWATCHED, rewatch_count),
            mutation(PlanField.IS_REWATCHING, False),
            mutation(PlanField.NUM_WATCHED_EPISODES, episode),
            mutation(PlanField.STATUS, WatchStatus.COMPLETED),
        ]
        logger.debug(f"Rewatch #{rewatch_count} finished for MAL {mal_id}")
        return UpdatePlan(
            mal_id=mal_id,
            mutations=mutations,
            status=WatchStatus.COMPLETED,
            rewatch_count=rewatch_count,
        )

    status = snapshot.status
    mutations = []

    if _is_finished(episode, snapshot):
        mutations.append(mutation(PlanField.FINISH_DATE, today))
        status = WatchStatus.COMPLETED

    if _is_first_episode(episode, snapshot):
        mutations.append(mutation(PlanField.START_DATE, today))

    if _is_in_progress(episode, snapshot):
        status = WatchStatus.WATCHING

    mutations.append(mutation(PlanField.NUM_WATCHED_EPISODES, episode))
    if status is not None:
        mutations.append(mutation(PlanField.STATUS, status))

    return UpdatePlan(
        mal_id=mal_id,
        mutations=mutations,
        status=status,
        rewatch_count=snapshot.rewatch_count,
    )


def normalize_score(rating: float) -> int:
    """Normalize a rating to MAL's 0-10 integer scale."""
    normalized = rating
    if normalized > MAL_MAX_SCORE:
        normalized = normalized / 10.0
    return max(0, min(MAL_MAX_SCORE, int(round(normalized))))


def plan_rating(mal_id: int, rating: float, snapshot: ListSnapshot) -> UpdatePlan:
    """Plan a score-only update; status and progress are left alone."""
    return UpdatePlan(
        mal_id=mal_id,
        mutations=[FieldMutation(field=PlanField.SCORE, value=normalize_score(rating))],
        status=snapshot.status,
        rewatch_count=snapshot.rewatch_count,
    )
