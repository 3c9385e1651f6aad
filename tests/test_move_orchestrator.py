"""Tests for move issuing, verification, retry and revert."""

import os

import pytest

from conftest import FakeArrClient, RecordingSleeper
from core.config import BehaviorConfig, MoveVerificationConfig, PathMapping
from core.models import MoveOutcome, MoveTarget, RunContext
from core.move_orchestrator import MoveOrchestrator
from core.summary import RunSummary


ORIGINAL = {
    "id": 7,
    "title": "ItemA",
    "path": "/library/old/ItemA",
    "rootFolderPath": "/library/old",
    "qualityProfileId": 3,
}


def _target(**overrides):
    values = dict(
        item_id=7,
        title="ItemA",
        old_location="/library/old/ItemA",
        new_location="/library/4K/ItemA",
        new_root="/library/4K",
        resource=dict(ORIGINAL),
    )
    values.update(overrides)
    return MoveTarget(**values)


def _orchestrator(client, sleeper, dry_run=False):
    ctx = RunContext(
        client=client,
        behavior=BehaviorConfig(),
        summary=RunSummary(),
        label="RADARR",
        dry_run=dry_run,
        sleeper=sleeper,
    )
    return MoveOrchestrator(ctx)


@pytest.fixture
def sleeper():
    return RecordingSleeper()


# ============================================================================
# Without verification
# ============================================================================

class TestWithoutVerification:
    def test_single_issue_and_succeeds(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        verify = MoveVerificationConfig(enabled=False)

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.SUCCEEDED
        assert attempt.attempts == 1
        assert len(client.updates) == 1
        assert client.get_item_calls == 0
        assert sleeper.delays == []

    def test_issued_resource_points_at_new_location(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        target = _target(new_profile_id=4)

        _orchestrator(client, sleeper).request_move(target, MoveVerificationConfig(enabled=False))

        resource, move_files = client.updates[0]
        assert move_files is True
        assert resource["path"] == "/library/4K/ItemA"
        assert resource["rootFolderPath"] == "/library/4K"
        assert resource["qualityProfileId"] == 4
        # The caller's resource is left untouched
        assert target.resource["path"] == "/library/old/ItemA"

    def test_first_issue_failure_is_failed(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        client.failing_items.add(7)

        attempt = _orchestrator(client, sleeper).request_move(_target(), MoveVerificationConfig())

        assert attempt.outcome == MoveOutcome.FAILED
        assert "server error" in attempt.error
        assert sleeper.delays == []


# ============================================================================
# Remote verification
# ============================================================================

class TestRemoteVerification:
    def test_converges_on_first_check(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        verify = MoveVerificationConfig(retries=3, delay_seconds=5, backoff_seconds=2)

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.SUCCEEDED
        assert attempt.attempts == 1
        assert sleeper.delays == [5]

    def test_never_converges_reverts(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL], apply_moves=False)
        verify = MoveVerificationConfig(retries=3, delay_seconds=5, backoff_seconds=2)

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.REVERTED
        # retries + 1 issuances
        assert attempt.attempts == 4
        assert len(client.move_requests) == 4
        # linear backoff
        assert sleeper.delays == [5, 7, 9, 11]
        # exactly one non-moving corrective call restoring the original
        assert len(client.reverts) == 1
        assert client.reverts[0]["path"] == "/library/old/ItemA"
        assert client.reverts[0]["qualityProfileId"] == 3
        assert client.items[7]["path"] == "/library/old/ItemA"

    def test_never_converges_without_revert_fails(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL], apply_moves=False)
        verify = MoveVerificationConfig(retries=2, delay_seconds=1, backoff_seconds=1, revert_on_failure=False)

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.FAILED
        assert client.reverts == []
        assert len(client.move_requests) == 3

    def test_no_reattempt_issues_once(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL], apply_moves=False)
        verify = MoveVerificationConfig(retries=2, delay_seconds=1, backoff_seconds=1, reattempt_move=False)

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.REVERTED
        assert attempt.attempts == 1
        assert len(sleeper.delays) == 3

    def test_fetch_error_counts_as_not_converged(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        client.fail_get_item = True
        verify = MoveVerificationConfig(retries=1, delay_seconds=1, backoff_seconds=1, revert_on_failure=False)

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.FAILED
        assert client.get_item_calls == 2

    def test_revert_failure_is_failed(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL], apply_moves=False)
        verify = MoveVerificationConfig(retries=0, delay_seconds=1)

        orchestrator = _orchestrator(client, sleeper)
        original_update = client.update_item

        def update_then_break(resource, move_files):
            if not move_files:
                client.failing_items.add(7)
            return original_update(resource, move_files)

        client.update_item = update_then_break
        attempt = orchestrator.request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.FAILED
        assert attempt.error.startswith("revert failed")

    def test_trailing_slash_in_reported_path_still_converges(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        original_update = client.update_item

        def update_with_slash(resource, move_files):
            result = original_update(resource, move_files)
            client.items[7]["path"] = resource["path"] + "/"
            return result

        client.update_item = update_with_slash
        attempt = _orchestrator(client, sleeper).request_move(_target(), MoveVerificationConfig(retries=0))
        assert attempt.outcome == MoveOutcome.SUCCEEDED


# ============================================================================
# Filesystem and combined verification
# ============================================================================

class TestFilesystemVerification:
    def test_filesystem_mode_uses_path_mappings(self, sleeper, temp_dir):
        os.makedirs(os.path.join(temp_dir, "4K", "ItemA"))
        client = FakeArrClient("radarr", items=[ORIGINAL], apply_moves=False)
        verify = MoveVerificationConfig(
            mode="filesystem", retries=1, delay_seconds=1,
            path_mappings=[PathMapping(remote="/library", local=temp_dir)],
        )

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.SUCCEEDED
        assert client.get_item_calls == 0

    def test_filesystem_mode_missing_folder_reverts(self, sleeper, temp_dir):
        client = FakeArrClient("radarr", items=[ORIGINAL])
        verify = MoveVerificationConfig(
            mode="filesystem", retries=1, delay_seconds=1,
            path_mappings=[PathMapping(remote="/library", local=temp_dir)],
        )

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)

        assert attempt.outcome == MoveOutcome.REVERTED

    def test_both_mode_requires_both(self, sleeper, temp_dir):
        """Remote agrees but the folder never appears: not converged."""
        client = FakeArrClient("radarr", items=[ORIGINAL])
        verify = MoveVerificationConfig(
            mode="both", retries=1, delay_seconds=1, revert_on_failure=False,
            path_mappings=[PathMapping(remote="/library", local=temp_dir)],
        )

        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)
        assert attempt.outcome == MoveOutcome.FAILED

        os.makedirs(os.path.join(temp_dir, "4K", "ItemA"))
        attempt = _orchestrator(client, sleeper).request_move(_target(), verify)
        assert attempt.outcome == MoveOutcome.SUCCEEDED


# ============================================================================
# Dry run
# ============================================================================

class TestDryRun:
    def test_dry_run_makes_no_calls(self, sleeper):
        client = FakeArrClient("radarr", items=[ORIGINAL], apply_moves=False)

        attempt = _orchestrator(client, sleeper, dry_run=True).request_move(_target(), MoveVerificationConfig())

        assert attempt.outcome == MoveOutcome.SUCCEEDED
        assert attempt.attempts == 0
        assert client.updates == []
        assert client.get_item_calls == 0
        assert sleeper.delays == []
