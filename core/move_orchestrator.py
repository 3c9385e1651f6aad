"""
Move orchestration for CompleteARR.

Asks Sonarr/Radarr to move an item to a new root folder, then confirms the
move actually happened. The *arr apps accept the update long before the
files are moved (or sometimes never move them), so a move is checked
against the API, the filesystem, or both, re-issued with linear backoff,
and finally reverted when it never converges.

    Requested -> Issued -> Succeeded                      (verification off)
    Requested -> Issued -> Verifying -> Succeeded
                                     -> Exhausted -> Reverted | Failed
"""

import copy
import logging
import os
from typing import Any, Dict, Optional

from core.errors import ExternalCallError
from core.models import MoveAttempt, MoveOutcome, MoveTarget, RunContext, normalize_path
from core.system_utils import translate_remote_path


class MoveOrchestrator:
    """Issues and verifies placement changes for one library."""

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.label = ctx.label

    def build_resource(self, target: MoveTarget) -> Dict[str, Any]:
        """Copy of the item resource pointing at the new location."""
        resource = copy.deepcopy(target.resource)
        resource["path"] = target.new_location
        resource["rootFolderPath"] = target.new_root
        if target.new_profile_id is not None:
            resource["qualityProfileId"] = target.new_profile_id
        return resource

    def request_move(self, target: MoveTarget, verify=None) -> MoveAttempt:
        """Move an item and report how it ended.

        Args:
            target: What to move and where.
            verify: MoveVerificationConfig; defaults to the library's own.

        Returns:
            MoveAttempt whose outcome is SUCCEEDED, REVERTED or FAILED.
        """
        if verify is None:
            verify = self.ctx.behavior.move_verification

        attempt = MoveAttempt(
            item_id=target.item_id,
            title=target.title,
            old_location=target.old_location,
            new_location=target.new_location,
        )

        if self.ctx.dry_run:
            logging.info(f"[{self.label}] [DRY RUN] Would move '{target.title}': "
                         f"{target.old_location} -> {target.new_location}")
            attempt.outcome = MoveOutcome.SUCCEEDED
            return attempt

        try:
            self._issue(target, attempt)
        except ExternalCallError as e:
            logging.error(f"[{self.label}] Move request failed for '{target.title}': {e}")
            attempt.error = str(e)
            attempt.outcome = MoveOutcome.FAILED
            return attempt

        if not verify.enabled:
            attempt.outcome = MoveOutcome.SUCCEEDED
            return attempt

        self._verify(target, attempt, verify)
        if attempt.outcome == MoveOutcome.SUCCEEDED:
            return attempt

        return self._handle_exhausted(target, attempt, verify)

    def _issue(self, target: MoveTarget, attempt: MoveAttempt) -> None:
        attempt.attempts += 1
        logging.debug(f"[{self.label}] Issuing move #{attempt.attempts} for '{target.title}' "
                      f"-> {target.new_location}")
        self.ctx.client.update_item(self.build_resource(target), move_files=True)

    def _verify(self, target: MoveTarget, attempt: MoveAttempt, verify) -> None:
        total_checks = verify.retries + 1
        delay = verify.delay_seconds

        for check in range(1, total_checks + 1):
            attempt.next_delay = delay
            logging.debug(f"[{self.label}] [VERIFY] Waiting {delay}s before check {check}/{total_checks} "
                          f"for '{target.title}'")
            self.ctx.sleeper(delay)
            attempt.delays.append(delay)

            if self._converged(target, verify):
                logging.info(f"[{self.label}] [VERIFY] Move confirmed for '{target.title}' "
                             f"(check {check}/{total_checks})")
                attempt.outcome = MoveOutcome.SUCCEEDED
                return

            if check < total_checks:
                logging.warning(f"[{self.label}] [VERIFY] '{target.title}' not at {target.new_location} yet "
                                f"(check {check}/{total_checks})")
                if verify.reattempt_move:
                    try:
                        self._issue(target, attempt)
                    except ExternalCallError as e:
                        logging.warning(f"[{self.label}] [VERIFY] Re-issuing move for '{target.title}' failed: {e}")

            delay += verify.backoff_seconds

    def _handle_exhausted(self, target: MoveTarget, attempt: MoveAttempt, verify) -> MoveAttempt:
        logging.error(f"[{self.label}] [VERIFY] Move of '{target.title}' to {target.new_location} "
                      f"not confirmed after {verify.retries + 1} check(s)")

        if not (verify.revert_on_failure and target.old_location):
            attempt.outcome = MoveOutcome.FAILED
            attempt.error = attempt.error or "move not confirmed"
            return attempt

        try:
            # Point the record back at the files that never moved; do not move anything
            self.ctx.client.update_item(copy.deepcopy(target.resource), move_files=False)
        except ExternalCallError as e:
            logging.error(f"[{self.label}] Revert failed for '{target.title}': {e}")
            attempt.outcome = MoveOutcome.FAILED
            attempt.error = f"revert failed: {e}"
            return attempt

        logging.warning(f"[{self.label}] Reverted '{target.title}': {target.new_location} -> {target.old_location}")
        attempt.outcome = MoveOutcome.REVERTED
        attempt.error = "move not confirmed, reverted"
        return attempt

    def _converged(self, target: MoveTarget, verify) -> bool:
        mode = verify.mode
        if mode == "filesystem":
            return self._filesystem_converged(target, verify)
        if mode == "both":
            remote_ok = self._remote_converged(target)
            filesystem_ok = self._filesystem_converged(target, verify)
            if remote_ok != filesystem_ok:
                logging.debug(f"[{self.label}] [VERIFY] Sources disagree for '{target.title}': "
                              f"remote={remote_ok} filesystem={filesystem_ok}")
            return remote_ok and filesystem_ok
        return self._remote_converged(target)

    def _remote_converged(self, target: MoveTarget) -> bool:
        try:
            current = self.ctx.client.get_item(target.item_id)
        except ExternalCallError as e:
            logging.warning(f"[{self.label}] [VERIFY] Could not re-fetch '{target.title}': {e}")
            return False
        reported: Optional[str] = current.get("path") if current else None
        return normalize_path(reported or "") == normalize_path(target.new_location)

    def _filesystem_converged(self, target: MoveTarget, verify) -> bool:
        local_path = translate_remote_path(target.new_location, verify.path_mappings)
        return os.path.exists(local_path)
