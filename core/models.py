"""
Data model for CompleteARR.

Items come from two kinds of library: Sonarr series (episodic, with episodes)
and Radarr movies (singular). Both share the fields the move orchestrator
needs: an id, a path, and the raw API resource to send back on update.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from core.arr_api import ArrClient
    from core.config import BehaviorConfig
    from core.summary import RunSummary


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_api_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the *arr APIs.

    Accepts the trailing 'Z' form ("2024-03-01T02:00:00Z"). Naive values
    are assumed to be UTC. Returns None for empty or unparseable input.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_api_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format an aware datetime as ISO-8601 UTC with a 'Z' suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_path(path: str) -> str:
    """Strip trailing separators so '/a/b/' and '/a/b' compare equal."""
    if not path:
        return ""
    stripped = path.rstrip("/\\")
    return stripped or path[:1]


class ItemKind(str, Enum):
    """Which library an item belongs to."""
    EPISODIC = "episodic"
    SINGULAR = "singular"


@dataclass
class Episode:
    """A single episode of a Sonarr series.

    Attributes:
        season_number: 0 marks a special (bonus) episode.
        air_date_utc: None when Sonarr has no air date.
        has_aired: Authoritative aired flag when the API provides one.
    """
    id: int
    season_number: int
    episode_number: int = 0
    air_date_utc: Optional[datetime] = None
    has_aired: Optional[bool] = None
    has_file: bool = False
    monitored: bool = True

    @property
    def is_bonus(self) -> bool:
        return self.season_number == 0

    @property
    def label(self) -> str:
        return f"S{self.season_number:02d}E{self.episode_number:02d}"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Episode":
        has_aired = data.get("hasAired")
        return cls(
            id=data["id"],
            season_number=data.get("seasonNumber", 0),
            episode_number=data.get("episodeNumber", 0),
            air_date_utc=parse_api_datetime(data.get("airDateUtc")),
            has_aired=bool(has_aired) if has_aired is not None else None,
            has_file=bool(data.get("hasFile", False)),
            monitored=bool(data.get("monitored", False)),
        )


@dataclass
class EpisodicItem:
    """A Sonarr series."""
    id: int
    title: str
    path: str
    root_folder_path: str
    quality_profile_id: int
    episodes: List[Episode] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)
    kind: ItemKind = ItemKind.EPISODIC

    @classmethod
    def from_api(cls, data: Dict[str, Any], episodes: Optional[List[Episode]] = None) -> "EpisodicItem":
        return cls(
            id=data["id"],
            title=data.get("title", f"series {data['id']}"),
            path=data.get("path", ""),
            root_folder_path=data.get("rootFolderPath", ""),
            quality_profile_id=data.get("qualityProfileId", 0),
            episodes=list(episodes or []),
            raw=data,
        )


@dataclass
class SingularItem:
    """A Radarr movie."""
    id: int
    title: str
    path: str
    root_folder_path: str
    quality_profile_id: int
    raw: Dict[str, Any] = field(default_factory=dict)
    kind: ItemKind = ItemKind.SINGULAR

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SingularItem":
        return cls(
            id=data["id"],
            title=data.get("title", f"movie {data['id']}"),
            path=data.get("path", ""),
            root_folder_path=data.get("rootFolderPath", ""),
            quality_profile_id=data.get("qualityProfileId", 0),
            raw=data,
        )


@dataclass
class PlacementSet:
    """Incomplete/complete profile and root folder pair for a group of series."""
    name: str
    incomplete_profile: str
    incomplete_root: str
    complete_profile: str
    complete_root: str


class Decision(str, Enum):
    """Completion evaluator verdict for an episodic item."""
    PROMOTE = "promote"
    DEMOTE = "demote"
    NO_CHANGE = "no_change"


class MoveOutcome(str, Enum):
    """Terminal state of a move request."""
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"
    FAILED = "failed"


class ItemResult(str, Enum):
    """What happened to one item during a pass."""
    PROMOTED = "promoted"
    DEMOTED = "demoted"
    CORRECTED = "corrected"
    ALREADY_CORRECT = "already_correct"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class MoveTarget:
    """Kind-agnostic description of a placement change.

    `resource` is the item as last fetched from the API; the orchestrator
    sends a modified copy of it back and uses the original for reverts.
    """
    item_id: int
    title: str
    old_location: str
    new_location: str
    new_root: str
    resource: Dict[str, Any] = field(default_factory=dict)
    new_profile_id: Optional[int] = None


@dataclass
class MoveAttempt:
    """Record of a single move request and how it ended."""
    item_id: int
    title: str
    old_location: str
    new_location: str
    attempts: int = 0
    next_delay: float = 0.0
    outcome: Optional[MoveOutcome] = None
    delays: List[float] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == MoveOutcome.SUCCEEDED


@dataclass
class RunContext:
    """Everything one library's reconciliation needs, passed explicitly.

    `clock` and `sleeper` are injectable so waits and grace windows can be
    driven deterministically in tests.
    """
    client: "ArrClient"
    behavior: "BehaviorConfig"
    summary: "RunSummary"
    label: str = "ARR"
    dry_run: bool = False
    clock: Callable[[], datetime] = utc_now
    sleeper: Callable[[float], None] = time.sleep
    should_stop: Callable[[], bool] = lambda: False
