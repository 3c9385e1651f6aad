"""
Per-pass counters for CompleteARR.

One RunSummary per library per pass; it is never persisted.
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, List

from core.models import ItemKind, ItemResult

# Counter name and log label, in log order. The weekly stats reader matches these labels.
EPISODIC_LABELS = [
    ("items_checked", "Series checked"),
    ("incomplete_seen", "Incomplete series seen"),
    ("promotions", "Promotions"),
    ("demotions", "Demotions"),
    ("specials_monitored", "Specials monitored"),
    ("corrections", "Root corrections"),
    ("monitoring_changes", "Episode monitor changes"),
    ("already_correct", "Series already correct"),
    ("skipped", "Series skipped"),
    ("errors", "Errors"),
]

SINGULAR_LABELS = [
    ("items_checked", "Movies checked"),
    ("already_correct", "Movies already correct"),
    ("skipped", "Movies skipped"),
    ("corrections", "Root corrections"),
    ("errors", "Errors"),
]


@dataclass
class RunSummary:
    """Counts of what a pass did to one library."""
    items_checked: int = 0
    promotions: int = 0
    demotions: int = 0
    corrections: int = 0
    already_correct: int = 0
    skipped: int = 0
    errors: int = 0
    monitoring_changes: int = 0
    incomplete_seen: int = 0
    specials_monitored: int = 0

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, 0)

    def record(self, result: ItemResult) -> None:
        """Count an item's terminal result."""
        if result == ItemResult.PROMOTED:
            self.promotions += 1
        elif result == ItemResult.DEMOTED:
            self.demotions += 1
        elif result == ItemResult.CORRECTED:
            self.corrections += 1
        elif result == ItemResult.ALREADY_CORRECT:
            self.already_correct += 1
        elif result == ItemResult.SKIPPED:
            self.skipped += 1
        elif result == ItemResult.FAILED:
            self.errors += 1

    def record_monitoring(self, changes) -> None:
        """Count monitored-flag changes that were applied (or would be, in dry run)."""
        self.monitoring_changes += len(changes)
        self.specials_monitored += sum(1 for c in changes if c.is_bonus and c.monitored)

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)

    def format_lines(self, kind: ItemKind) -> List[str]:
        """Render the summary as "<Label>: <n>" lines for the log and webhook."""
        labels = EPISODIC_LABELS if kind == ItemKind.EPISODIC else SINGULAR_LABELS
        return [f"{label}: {getattr(self, name)}" for name, label in labels]
