"""
Completion evaluation for Sonarr series.

Decides whether a series belongs in its set's complete or incomplete
placement, and which episode monitored flags should change to match.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from core.models import Decision, Episode, EpisodicItem


@dataclass
class CompletionResult:
    """Outcome of evaluating one series.

    The per-episode counts are informational; a series gets at most one
    promote/demote decision per pass however many episodes qualify.
    """
    decision: Decision
    regular_count: int = 0
    aired_count: int = 0
    missing: int = 0
    missing_past_grace: int = 0
    missing_episodes: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.missing == 0


@dataclass
class MonitorChange:
    """A monitored flag that needs to flip."""
    episode_id: int
    label: str
    monitored: bool
    is_bonus: bool = False


def _counts_as_regular(episode: Episode, policy) -> bool:
    if not episode.is_bonus:
        return True
    return not policy.specials_do_not_block_completion


def has_aired(episode: Episode, now: datetime, policy) -> bool:
    """Whether an episode has aired.

    The explicit flag wins; otherwise the air date is compared to `now`;
    episodes with neither fall back to treat_unknown_air_date_as_old.
    """
    if episode.has_aired is not None:
        return episode.has_aired
    if episode.air_date_utc is not None:
        return episode.air_date_utc <= now
    return policy.treat_unknown_air_date_as_old


def is_past_grace(episode: Episode, now: datetime, policy) -> bool:
    """Whether an aired episode has been out long enough to count against completion."""
    if episode.air_date_utc is None:
        return policy.treat_unknown_air_date_as_old
    return now - episode.air_date_utc >= timedelta(days=policy.grace_days)


def evaluate_completion(item: EpisodicItem, now: datetime, policy) -> CompletionResult:
    """Evaluate a series against its completion policy.

    Promote when no aired regular episode is missing its file; Demote when
    at least one has been missing past the grace window; otherwise leave the
    placement alone. A series with no regular episodes is complete.
    """
    result = CompletionResult(decision=Decision.NO_CHANGE)

    for episode in item.episodes:
        if not _counts_as_regular(episode, policy):
            continue
        result.regular_count += 1

        if not has_aired(episode, now, policy):
            continue
        result.aired_count += 1

        if episode.has_file:
            continue

        result.missing += 1
        result.missing_episodes.append(episode.label)
        if is_past_grace(episode, now, policy):
            result.missing_past_grace += 1

    if result.missing == 0:
        result.decision = Decision.PROMOTE
    elif result.missing_past_grace > 0:
        result.decision = Decision.DEMOTE

    return result


def prospective_complete(decision: Decision, currently_complete: bool) -> bool:
    """State the series will be in once this pass's decision is applied."""
    if decision == Decision.PROMOTE:
        return True
    if decision == Decision.DEMOTE:
        return False
    return currently_complete


def plan_monitoring(episodes: List[Episode], complete: bool, policy) -> List[MonitorChange]:
    """Work out which monitored flags differ from policy.

    Specials follow the series state (monitored when complete, unmonitored
    when incomplete); regular episodes are forced on when
    monitor_non_specials is set. Only episodes whose flag must change are
    returned.
    """
    changes: List[MonitorChange] = []

    for episode in episodes:
        desired: Optional[bool] = None
        if episode.is_bonus:
            if complete and policy.monitor_specials_when_complete:
                desired = True
            elif not complete and policy.unmonitor_specials_when_incomplete:
                desired = False
        elif policy.monitor_non_specials:
            desired = True

        if desired is not None and episode.monitored != desired:
            changes.append(MonitorChange(
                episode_id=episode.id,
                label=episode.label,
                monitored=desired,
                is_bonus=episode.is_bonus,
            ))

    return changes
