"""
Main CompleteARR application.
Orchestrates all components and provides the reconciliation pass.
"""

import os
import sys
import time
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from core import __version__
from core.arr_api import ArrClient
from core.completion import evaluate_completion, plan_monitoring, prospective_complete
from core.config import ConfigManager, ConnectionConfig
from core.coordinator import RunCoordinator
from core.errors import ConfigurationError, ExternalCallError, LockConflict
from core.logging_config import LoggingManager, SUMMARY
from core.models import (
    Episode, EpisodicItem, ItemKind, ItemResult, MoveTarget,
    PlacementSet, RunContext, SingularItem, utc_now,
)
from core.move_orchestrator import MoveOrchestrator
from core.placement import ResolutionKind, check_location, resolve_placement
from core.summary import RunSummary
from core.system_utils import item_folder_name, join_root

# Processing order: Sonarr then Radarr
LIBRARIES = (("sonarr", ItemKind.EPISODIC), ("radarr", ItemKind.SINGULAR))


class CompleteArrApp:
    """Main CompleteARR application class."""

    def __init__(self, config_file: str, dry_run: bool = False, verbose: bool = False,
                 client_factory: Optional[Callable[..., ArrClient]] = None,
                 clock: Callable[[], datetime] = utc_now,
                 sleeper: Callable[[float], None] = time.sleep):
        self.config_file = config_file
        self.dry_run = dry_run  # Log decisions, change nothing
        self.verbose = verbose  # Enable DEBUG level logging
        self.client_factory = client_factory or self._create_client
        self.clock = clock
        self.sleeper = sleeper

        self.config_manager = ConfigManager(config_file)
        self.logging_manager: Optional[LoggingManager] = None
        self.summaries: Dict[str, RunSummary] = {}

        # Stop request flag (for web UI to abort operations)
        self._stop_requested = False

    def request_stop(self) -> None:
        """Request the pass to stop gracefully after the current item."""
        self._stop_requested = True
        logging.info("Stop requested - pass will stop after the current item")

    @property
    def should_stop(self) -> bool:
        """Check if stop has been requested."""
        return self._stop_requested

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup_logging(self, console: bool = True) -> None:
        """Set up logging (level and notifications are applied after config load)."""
        self.logging_manager = LoggingManager(
            logs_folder=self.config_manager.paths.logs_folder,
            log_level="",  # Will be set from config
            max_log_files=24,
        )
        self.logging_manager.setup_logging(console=console)
        logging.info("")
        build_commit = os.environ.get('GIT_COMMIT', 'dev')
        logging.info(f"=== CompleteARR v{__version__} (build: {build_commit}) ===")

    def load(self) -> None:
        """Load configuration and apply logging settings from it.

        Raises:
            ConfigurationError: If the settings file is missing or invalid.
        """
        logging.debug("Loading configuration...")
        self.config_manager.load_config()
        self.config_manager.ensure_data_folder()

        if self.logging_manager:
            self.logging_manager.max_log_files = self.config_manager.logging.max_log_files
            if self.verbose or self.config_manager.debug:
                self.logging_manager.set_level("debug")
            else:
                self.logging_manager.set_level(self.config_manager.logging.log_level)
            self.logging_manager.setup_notification_handlers(self.config_manager.logging)

        if self.dry_run:
            logging.warning("DRY-RUN MODE - No changes will be made in Sonarr or Radarr")
        if self.verbose:
            logging.info("VERBOSE MODE - Showing DEBUG level logs")

    def create_coordinator(self) -> RunCoordinator:
        return RunCoordinator(
            self.config_manager.get_status_file(),
            self.config_manager.get_lock_file(),
            clock=self.clock,
        )

    def close(self) -> None:
        """Detach the log handlers this app added."""
        if self.logging_manager:
            self.logging_manager.shutdown()
            self.logging_manager = None

    def _create_client(self, kind: str, connection: ConnectionConfig) -> ArrClient:
        return ArrClient(
            connection.url,
            connection.api_key,
            kind=kind,
            timeout=self.config_manager.run.api_timeout_seconds,
            min_interval=self.config_manager.run.api_min_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, next_run=None) -> Dict[str, RunSummary]:
        """Run a complete pass under the run lock (command-line entry point).

        Raises:
            ConfigurationError: Invalid settings; nothing was processed.
            LockConflict: Another pass holds the run lock.
        """
        try:
            if self.logging_manager is None:
                self.setup_logging()
            self.load()
            coordinator = self.create_coordinator()
            return coordinator.run(self.reconcile, next_run)
        except LockConflict as e:
            logging.critical(f"{e}. Exiting.")
            raise
        except ConfigurationError:
            raise
        except Exception as e:
            logging.critical(f"Application error: {type(e).__name__}: {e}", exc_info=True)
            raise

    def reconcile(self) -> Dict[str, RunSummary]:
        """Reconcile every configured library once.

        Configuration must already be loaded. Per-item failures are counted
        and the pass moves on; only ConfigurationError aborts it.
        """
        self.summaries = {}
        pass_start = time.time()

        preflight = max(
            self.config_manager.sonarr.behavior.preflight_seconds if self.config_manager.sonarr.enabled else 0,
            self.config_manager.radarr.behavior.preflight_seconds if self.config_manager.radarr.enabled else 0,
        )
        if preflight > 0:
            logging.info(f"Waiting {preflight}s before starting...")
            self._interruptible_wait(preflight)

        # Connect and resolve every library's profiles before touching any item,
        # so an unknown profile name aborts the pass with nothing changed
        prepared = []
        for kind, item_kind in LIBRARIES:
            if not self._library_config(kind).enabled:
                logging.debug(f"[{kind.upper()}] Not configured, skipping")
                continue
            prepared.append((kind, item_kind) + self._prepare_library(kind, item_kind))

        for kind, item_kind, ctx, profile_ids in prepared:
            if self.should_stop:
                break
            self.summaries[kind] = self._run_library(kind, item_kind, ctx, profile_ids)

        if self.should_stop:
            logging.info("Pass stopped by user")

        duration = time.time() - pass_start
        logging.info(f"Pass finished in {duration:.1f}s")
        return self.summaries

    def _interruptible_wait(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0 and not self.should_stop:
            step = min(1.0, remaining)
            self.sleeper(step)
            remaining -= step

    # ------------------------------------------------------------------
    # Libraries
    # ------------------------------------------------------------------

    def _library_config(self, kind: str):
        return self.config_manager.sonarr if kind == "sonarr" else self.config_manager.radarr

    def _prepare_library(self, kind: str, item_kind: ItemKind) -> Tuple[RunContext, Optional[Dict[str, int]]]:
        """Build the library's context, check connectivity and resolve its profile names.

        Returns the context and the resolved profile ids, or None for the ids
        when the library could not be reached (counted as one error).

        Raises:
            ConfigurationError: A configured profile name does not exist.
        """
        library = self._library_config(kind)
        label = kind.upper()
        ctx = RunContext(
            client=self.client_factory(kind, library.connection),
            behavior=library.behavior,
            summary=RunSummary(),
            label=label,
            dry_run=self.dry_run or library.behavior.dry_run,
            clock=self.clock,
            sleeper=self.sleeper,
            should_stop=lambda: self.should_stop,
        )

        if item_kind == ItemKind.EPISODIC:
            names = []
            for placement_set in library.sets:
                names.extend([placement_set.incomplete_profile, placement_set.complete_profile])
        else:
            names = list(library.profile_root_mappings.keys())

        try:
            status = ctx.client.get_system_status()
            logging.info(f"[{label}] Connected to {library.connection.url} (version {status.get('version', 'unknown')})")
            return ctx, self._resolve_profiles(ctx, names)
        except ExternalCallError as e:
            logging.error(f"[{label}] Library unavailable: {e}")
            ctx.summary.errors += 1
            return ctx, None

    def _run_library(self, kind: str, item_kind: ItemKind, ctx: RunContext,
                     profile_ids: Optional[Dict[str, int]]) -> RunSummary:
        library = self._library_config(kind)
        logging.info(f"--- {ctx.label} ---")
        if ctx.dry_run and not self.dry_run:
            logging.warning(f"[{ctx.label}] [DRY RUN] Dry run enabled for this library")

        if profile_ids is not None:
            try:
                if item_kind == ItemKind.EPISODIC:
                    self._reconcile_series(ctx, library.sets, profile_ids)
                else:
                    self._reconcile_movies(ctx, library.profile_root_mappings, profile_ids)
            except ExternalCallError as e:
                logging.error(f"[{ctx.label}] Library pass aborted: {e}")
                ctx.summary.errors += 1

        self._log_summary(ctx.label, ctx.summary.format_lines(item_kind))
        return ctx.summary

    def _log_summary(self, label: str, lines: List[str]) -> None:
        lines = [f"{label}:"] + lines
        if self.logging_manager:
            self.logging_manager.log_summary(lines)
        else:
            logging.getLogger().log(SUMMARY, '\n  ' + '\n  '.join(lines))

    def _resolve_profiles(self, ctx: RunContext, names: List[str]) -> Dict[str, int]:
        """Resolve profile names to ids, failing the pass on any unknown name."""
        wanted = sorted(set(names))
        resolved = ctx.client.resolve_profile_ids(wanted)
        missing = [name for name in wanted if name not in resolved]
        if missing:
            raise ConfigurationError([
                f"{ctx.label} quality profile '{name}' not found" for name in missing
            ])
        logging.debug(f"[{ctx.label}] Resolved profiles: {resolved}")
        return resolved

    # ------------------------------------------------------------------
    # Sonarr (episodic)
    # ------------------------------------------------------------------

    def _reconcile_series(self, ctx: RunContext, sets: List[PlacementSet], profile_ids: Dict[str, int]) -> None:
        series_list = ctx.client.get_items()
        logging.info(f"[{ctx.label}] {len(series_list)} series in library")
        processed = set()

        for placement_set in sets:
            incomplete_id = profile_ids[placement_set.incomplete_profile]
            complete_id = profile_ids[placement_set.complete_profile]
            members = [
                s for s in series_list
                if s.get("qualityProfileId") in (incomplete_id, complete_id) and s.get("id") not in processed
            ]
            logging.info(f"[{ctx.label}] Set '{placement_set.name}': {len(members)} series")

            for data in members:
                if ctx.should_stop():
                    logging.info(f"[{ctx.label}] Stop requested, not starting further series")
                    return
                processed.add(data.get("id"))
                ctx.summary.items_checked += 1
                title = data.get("title", f"series {data.get('id')}")
                try:
                    result = self._process_series(ctx, placement_set, incomplete_id, complete_id, data)
                except ExternalCallError as e:
                    logging.error(f"[{ctx.label}] Error processing '{title}': {e}")
                    result = ItemResult.FAILED
                ctx.summary.record(result)

    def _process_series(self, ctx: RunContext, placement_set: PlacementSet,
                        incomplete_id: int, complete_id: int, data: dict) -> ItemResult:
        episodes = [Episode.from_api(e) for e in ctx.client.get_episodes(data["id"])]
        item = EpisodicItem.from_api(data, episodes)
        if not item.path:
            logging.warning(f"[{ctx.label}] '{item.title}' has no path, skipping")
            return ItemResult.SKIPPED

        completion = evaluate_completion(item, ctx.clock(), ctx.behavior)
        if not completion.is_complete:
            ctx.summary.incomplete_seen += 1
            logging.debug(f"[{ctx.label}] '{item.title}' missing {completion.missing} aired episode(s) "
                          f"({completion.missing_past_grace} past grace): {', '.join(completion.missing_episodes)}")

        currently_complete = item.quality_profile_id == complete_id
        complete_after = prospective_complete(completion.decision, currently_complete)
        if complete_after:
            target_profile_id, target_root = complete_id, placement_set.complete_root
        else:
            target_profile_id, target_root = incomplete_id, placement_set.incomplete_root

        if complete_after != currently_complete:
            result = ItemResult.PROMOTED if complete_after else ItemResult.DEMOTED
        elif not check_location(item.path, target_root).needs_move:
            logging.debug(f"[{ctx.label}] '{item.title}' already correct ({'complete' if complete_after else 'incomplete'})")
            self._apply_monitoring(ctx, item.title, item.episodes, complete_after)
            return ItemResult.ALREADY_CORRECT
        else:
            result = ItemResult.CORRECTED

        new_location = join_root(target_root, item_folder_name(item.path))
        if result == ItemResult.PROMOTED:
            logging.info(f"[{ctx.label}] Promote '{item.title}': all {completion.aired_count} aired episode(s) present; "
                         f"{item.path} -> {new_location}")
        elif result == ItemResult.DEMOTED:
            logging.info(f"[{ctx.label}] Demote '{item.title}': {completion.missing_past_grace} episode(s) missing past grace; "
                         f"{item.path} -> {new_location}")
        else:
            logging.info(f"[{ctx.label}] Root correction for '{item.title}': {item.path} -> {new_location}")

        target = MoveTarget(
            item_id=item.id,
            title=item.title,
            old_location=item.path,
            new_location=new_location,
            new_root=target_root,
            resource=item.raw,
            new_profile_id=target_profile_id,
        )
        attempt = MoveOrchestrator(ctx).request_move(target)
        if not attempt.succeeded:
            logging.warning(f"[{ctx.label}] '{item.title}' left unchanged ({attempt.outcome.value}): {attempt.error}")
            return ItemResult.FAILED

        episodes = item.episodes
        if not ctx.dry_run:
            if ctx.behavior.post_move_wait_seconds > 0:
                ctx.sleeper(ctx.behavior.post_move_wait_seconds)
            episodes = [Episode.from_api(e) for e in ctx.client.get_episodes(item.id)]
        self._apply_monitoring(ctx, item.title, episodes, complete_after)
        return result

    def _apply_monitoring(self, ctx: RunContext, title: str, episodes: List[Episode], complete: bool) -> None:
        changes = plan_monitoring(episodes, complete, ctx.behavior)
        if not changes:
            return

        for monitored in (True, False):
            batch = [c for c in changes if c.monitored == monitored]
            if not batch:
                continue
            labels = ', '.join(c.label for c in batch)
            action = "Monitor" if monitored else "Unmonitor"
            if ctx.dry_run:
                logging.info(f"[{ctx.label}] [DRY RUN] Would {action.lower()} {len(batch)} episode(s) of '{title}': {labels}")
                ctx.summary.record_monitoring(batch)
                continue
            try:
                ctx.client.set_episodes_monitored([c.episode_id for c in batch], monitored)
            except ExternalCallError as e:
                logging.error(f"[{ctx.label}] Could not {action.lower()} episodes of '{title}': {e}")
                ctx.summary.errors += 1
                continue
            logging.info(f"[{ctx.label}] {action}ed {len(batch)} episode(s) of '{title}': {labels}")
            ctx.summary.record_monitoring(batch)

    # ------------------------------------------------------------------
    # Radarr (singular)
    # ------------------------------------------------------------------

    def _reconcile_movies(self, ctx: RunContext, mappings: Dict[str, str], profile_ids: Dict[str, int]) -> None:
        placement_map = {profile_ids[name]: root for name, root in mappings.items()}

        movies = ctx.client.get_items()
        logging.info(f"[{ctx.label}] {len(movies)} movies in library")

        for data in movies:
            if ctx.should_stop():
                logging.info(f"[{ctx.label}] Stop requested, not starting further movies")
                return
            ctx.summary.items_checked += 1
            title = data.get("title", f"movie {data.get('id')}")
            try:
                result = self._process_movie(ctx, placement_map, data)
            except ExternalCallError as e:
                logging.error(f"[{ctx.label}] Error processing '{title}': {e}")
                result = ItemResult.FAILED
            ctx.summary.record(result)

    def _process_movie(self, ctx: RunContext, placement_map: Dict[int, str], data: dict) -> ItemResult:
        item = SingularItem.from_api(data)
        if not item.path:
            logging.warning(f"[{ctx.label}] '{item.title}' has no path, skipping")
            return ItemResult.SKIPPED

        resolution = resolve_placement(item, placement_map)
        if resolution.kind == ResolutionKind.UNMAPPED:
            logging.debug(f"[{ctx.label}] '{item.title}' has an unmapped profile ({item.quality_profile_id}), skipping")
            return ItemResult.SKIPPED
        if resolution.kind == ResolutionKind.NO_CHANGE:
            logging.debug(f"[{ctx.label}] '{item.title}' already under {resolution.expected_location}")
            return ItemResult.ALREADY_CORRECT

        new_location = join_root(resolution.expected_location, item_folder_name(item.path))
        logging.info(f"[{ctx.label}] Root correction for '{item.title}': {item.path} -> {new_location}")
        target = MoveTarget(
            item_id=item.id,
            title=item.title,
            old_location=item.path,
            new_location=new_location,
            new_root=resolution.expected_location,
            resource=item.raw,
        )
        attempt = MoveOrchestrator(ctx).request_move(target)
        if not attempt.succeeded:
            logging.warning(f"[{ctx.label}] '{item.title}' left unchanged ({attempt.outcome.value}): {attempt.error}")
            return ItemResult.FAILED

        if not ctx.dry_run and ctx.behavior.post_move_wait_seconds > 0:
            ctx.sleeper(ctx.behavior.post_move_wait_seconds)
        return ItemResult.CORRECTED


def default_config_file() -> str:
    """Settings file location: COMPLETARR_CONFIG_DIR if set, else the project root."""
    config_dir = os.environ.get("COMPLETARR_CONFIG_DIR")
    if config_dir:
        return str(Path(config_dir) / "completarr_settings.json")
    script_dir = Path(os.path.dirname(os.path.abspath(__file__)))
    project_root = script_dir.parent if script_dir.name == 'core' else script_dir
    return str(project_root / "completarr_settings.json")


def main() -> int:
    """Main entry point."""
    dry_run = "--dry-run" in sys.argv
    verbose = "--verbose" in sys.argv or "-v" in sys.argv
    loop = "--loop" in sys.argv

    config_file = default_config_file()

    while True:
        app = CompleteArrApp(config_file, dry_run=dry_run, verbose=verbose)
        next_run = None
        if loop:
            next_run = lambda: utc_now() + timedelta(seconds=app.config_manager.run.run_interval_seconds)
        try:
            app.run(next_run)
        except ConfigurationError as e:
            print(f"ERROR: {e}")
            return 2
        except LockConflict as e:
            print(f"ERROR: {e}")
            return 1
        finally:
            app.close()

        if not loop:
            return 0
        interval = app.config_manager.run.run_interval_seconds
        print(f"Next run in {interval}s")
        time.sleep(interval)


if __name__ == "__main__":
    sys.exit(main())
