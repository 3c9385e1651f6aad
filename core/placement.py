"""
Placement resolution for Radarr movies (and root corrections for series).

A movie's quality profile decides which root folder it belongs in. The
resolver only reports what should happen; moving is left to the
orchestrator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from core.system_utils import path_is_under


class ResolutionKind(str, Enum):
    UNMAPPED = "unmapped"
    CORRECTION = "correction"
    NO_CHANGE = "no_change"


@dataclass
class Resolution:
    kind: ResolutionKind
    expected_location: Optional[str] = None

    @property
    def needs_move(self) -> bool:
        return self.kind == ResolutionKind.CORRECTION


def check_location(path: str, expected_location: str) -> Resolution:
    """Compare an item's path with the root folder it should live under."""
    if path_is_under(path, expected_location):
        return Resolution(ResolutionKind.NO_CHANGE, expected_location)
    return Resolution(ResolutionKind.CORRECTION, expected_location)


def resolve_placement(item, placement_map: Dict[int, str]) -> Resolution:
    """Resolve where a movie should live.

    Args:
        item: Anything with `quality_profile_id` and `path`.
        placement_map: Quality profile id -> root folder, already resolved
            from profile names.

    Returns:
        UNMAPPED when the profile has no configured root folder,
        CORRECTION when the path is outside the expected root,
        NO_CHANGE otherwise.
    """
    expected = placement_map.get(item.quality_profile_id)
    if expected is None:
        return Resolution(ResolutionKind.UNMAPPED)
    return check_location(item.path, expected)
