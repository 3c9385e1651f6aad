"""Weekly stats service - reads end-of-pass summaries back out of the run logs"""

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from core.logging_config import LOG_FILE_PREFIX
from core.models import format_api_datetime
from web.config import LOGS_DIR

logger = logging.getLogger(__name__)

STATS_DAYS = 7

# Log label -> stats key, per library
MARKERS = {
    "sonarr": {
        "Series checked": "seriesChecked",
        "Incomplete series seen": "incompleteSeriesSeen",
        "Promotions": "promotions",
        "Demotions": "demotions",
        "Specials monitored": "specialsMonitored",
        "Root corrections": "rootCorrections",
        "Errors": "errors",
        "Episode monitor changes": "episodeMonitorChanges",
    },
    "radarr": {
        "Movies checked": "moviesChecked",
        "Movies already correct": "moviesAlreadyCorrect",
        "Movies skipped": "moviesSkipped",
        "Root corrections": "rootCorrections",
        "Errors": "errors",
    },
}

# Record header: 2024-06-01 12:00:00,123 - LEVEL - message
_ENTRY_RE = re.compile(r'^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}(?:,\d+)?\s*-\s*([A-Z]+)\s*-')
_LIBRARY_RE = re.compile(r'^\s+(SONARR|RADARR):\s*$')
_COUNTER_RE = re.compile(r'^\s+(.+?):\s*(\d+)\s*$')


def parse_summaries(lines: Iterable[str]) -> Dict[str, Dict[str, int]]:
    """Pull the SUMMARY counters out of one log, keyed by library.

    If a log holds more than one summary for a library, the last one wins.
    """
    found: Dict[str, Dict[str, int]] = {}
    in_summary = False
    library = None

    for line in lines:
        line = line.rstrip('\r\n')
        entry = _ENTRY_RE.match(line)
        if entry:
            in_summary = entry.group(1) == "SUMMARY"
            library = None
            continue
        if not in_summary:
            continue

        section = _LIBRARY_RE.match(line)
        if section:
            library = section.group(1).lower()
            found[library] = {}
            continue

        counter = _COUNTER_RE.match(line)
        if library and counter:
            key = MARKERS[library].get(counter.group(1))
            if key:
                found[library][key] = int(counter.group(2))

    return {library: counters for library, counters in found.items() if counters}


def collect_weekly_stats(logs_dir: Path = LOGS_DIR, days: int = STATS_DAYS,
                         now: Optional[float] = None) -> Dict[str, List[dict]]:
    """
    Summaries from the run logs written in the last `days` days.

    Returns:
        {"sonarr": [...], "radarr": [...]}, each entry holding the log file
        name, its modification time and the parsed counters, newest first.
    """
    stats: Dict[str, List[dict]] = {"radarr": [], "sonarr": []}
    logs_dir = Path(logs_dir)
    if not logs_dir.exists():
        return stats

    cutoff = (now if now is not None else time.time()) - days * 86400

    for log_path in sorted(logs_dir.glob(f"{LOG_FILE_PREFIX}*.log")):
        if log_path.is_symlink():
            continue
        modified = log_path.stat().st_mtime
        if modified < cutoff:
            continue
        try:
            with open(log_path, 'r', encoding='utf-8', errors='replace') as f:
                summaries = parse_summaries(f)
        except OSError as e:
            logger.warning(f"Could not read {log_path.name} for stats: {e}")
            continue

        timestamp = format_api_datetime(datetime.fromtimestamp(modified, timezone.utc))
        for library, counters in summaries.items():
            stats[library].append({
                "file": log_path.name,
                "timestamp": timestamp,
                "summary": counters,
            })

    for entries in stats.values():
        entries.sort(key=lambda e: (e["timestamp"], e["file"]), reverse=True)
    return stats
