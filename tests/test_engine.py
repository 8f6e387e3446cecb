"""
Unit tests for the sync engine.

Runs complete sync passes against an in-memory database with the Streak
API replaced by a mock serving fixed box lists.
"""

import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from streak_sync.api.geocoder import GeocodeError
from streak_sync.api.streak_api import StreakAPI, StreakAPIError
from streak_sync.config.sync_config import SyncConfig, SyncConfigError
from streak_sync.sync.box import RemoteBox
from streak_sync.sync.engine import (
    EntityCounts,
    RunOutcome,
    RunResult,
    RunState,
    SyncAlreadyRunningError,
    SyncEngine,
)
from streak_sync.sync.entities import EntityKind
from streak_sync.utils.lock import RunLock

ORG_PIPELINE = "org-pipeline"
MEMBER_PIPELINE = "member-pipeline"


def scenario_boxes(count=5):
    """Organizations o1..oN, each led by two members, linked both ways."""
    organizations = []
    members = []
    for i in range(1, count + 1):
        member_keys = [f"m{i}a", f"m{i}b"]
        organizations.append(
            RemoteBox(
                key=f"o{i}",
                name=f"Club {i}",
                fields={"1006": f"{i} Main St", "1012": f"https://club{i}.example"},
                linked_keys=member_keys,
            )
        )
        for member_key in member_keys:
            members.append(
                RemoteBox(
                    key=member_key,
                    name=f"Leader {member_key}",
                    fields={"1003": f"{member_key}@example.com", "1001": "9001"},
                    linked_keys=[f"o{i}"],
                )
            )
    return organizations, members


class FakePipelines:
    """Serves box lists by pipeline key; tests edit the lists between runs."""

    def __init__(self, organizations, members):
        self.boxes = {ORG_PIPELINE: organizations, MEMBER_PIPELINE: members}

    def fetch_pipeline(self, key):
        return {"key": key, "name": key}

    def fetch_boxes(self, key):
        return list(self.boxes[key])


@pytest.fixture
def pipelines():
    return FakePipelines(*scenario_boxes())


@pytest.fixture
def api(pipelines):
    mock_api = MagicMock(spec=StreakAPI)
    mock_api.fetch_pipeline.side_effect = pipelines.fetch_pipeline
    mock_api.fetch_boxes.side_effect = pipelines.fetch_boxes
    return mock_api


@pytest.fixture
def config():
    return SyncConfig(
        organization_pipeline_key=ORG_PIPELINE,
        member_pipeline_key=MEMBER_PIPELINE,
        concurrent_fetch=False,
    )


@pytest.fixture
def engine(api, database, config):
    return SyncEngine(api, database, config)


class TestRunScenarios:
    """End-to-end runs over the five organization scenario."""

    def test_initial_run_creates_everything(self, engine, database):
        """Test an empty store gets every organization, member and link."""
        result = engine.run_sync()

        assert result.outcome == RunOutcome.SUCCESS
        assert result.organizations.created == 5
        assert result.members.created == 10
        assert result.links_created == 10
        assert result.failures == []
        assert database.get_entity_count(EntityKind.ORGANIZATION) == 5
        assert database.get_entity_count(EntityKind.MEMBER) == 10
        assert database.get_link_count() == 10

    def test_links_match_cross_references(self, engine, database):
        engine.run_sync()

        organization = database.get_entity_by_key(EntityKind.ORGANIZATION, "o2")
        member_ids = database.get_member_ids_for_organization(organization.id)
        keys = sorted(
            m.external_key
            for m in database.list_entities(EntityKind.MEMBER)
            if m.id in member_ids
        )
        assert keys == ["m2a", "m2b"]

    def test_second_run_is_idempotent(self, engine):
        """Test an unchanged remote state produces no changes."""
        engine.run_sync()
        second = engine.run_sync()

        assert second.outcome == RunOutcome.SUCCESS
        for counts in (second.organizations, second.members):
            assert counts.created == 0
            assert counts.updated == 0
            assert counts.deleted == 0
        assert second.organizations.unchanged == 5
        assert second.members.unchanged == 10
        assert second.links_created == 0
        assert second.links_removed == 0

    def test_removed_organization_is_deleted(self, engine, database, pipelines):
        """Test a vanished box deletes its record and links only."""
        engine.run_sync()
        pipelines.boxes[ORG_PIPELINE] = [
            b for b in pipelines.boxes[ORG_PIPELINE] if b.key != "o3"
        ]

        result = engine.run_sync()

        assert result.organizations.deleted == 1
        assert result.organizations.unchanged == 4
        assert result.links_removed == 2
        assert database.get_entity_by_key(EntityKind.ORGANIZATION, "o3") is None
        assert database.get_entity_count(EntityKind.MEMBER) == 10
        assert database.get_link_count() == 8

    def test_gender_change(self, engine, database, pipelines):
        """Test a Male -> Female option change updates only that member."""
        engine.run_sync()
        member_box = next(
            b for b in pipelines.boxes[MEMBER_PIPELINE] if b.key == "m1a"
        )
        member_box.fields["1001"] = "9002"

        result = engine.run_sync()

        assert result.members.updated == 1
        member = database.get_entity_by_key(EntityKind.MEMBER, "m1a")
        assert member.gender == "Female"
        assert member.name == "Leader m1a"

    def test_one_sided_link_is_created(self, engine, database, pipelines):
        """Test union semantics across the two pipelines."""
        pipelines.boxes[ORG_PIPELINE][0].linked_keys.append("m2a")

        engine.run_sync()

        organization = database.get_entity_by_key(EntityKind.ORGANIZATION, "o1")
        member = database.get_entity_by_key(EntityKind.MEMBER, "m2a")
        assert (organization.id, member.id) in database.get_links()

    def test_link_dropped_by_both_sides_is_removed(self, engine, database, pipelines):
        engine.run_sync()
        pipelines.boxes[ORG_PIPELINE][0].linked_keys.remove("m1a")
        next(
            b for b in pipelines.boxes[MEMBER_PIPELINE] if b.key == "m1a"
        ).linked_keys.clear()

        result = engine.run_sync()

        assert result.links_removed == 1
        assert database.get_link_count() == 9

    def test_concurrent_fetch(self, api, database, config):
        """Test the parallel fetch path gives the same result."""
        config.concurrent_fetch = True
        result = SyncEngine(api, database, config).run_sync()

        assert result.outcome == RunOutcome.SUCCESS
        assert result.links_created == 10
        assert api.fetch_pipeline.call_count == 2
        assert api.fetch_boxes.call_count == 2


class TestRunStates:
    """Tests for the run state machine and outcomes."""

    def test_successful_state_sequence(self, engine):
        result = engine.run_sync()

        assert result.states == [
            RunState.FETCHING,
            RunState.SYNCING_ORGANIZATIONS,
            RunState.SYNCING_MEMBERS,
            RunState.SYNCING_RELATIONSHIPS,
            RunState.DONE,
        ]
        assert result.finished_at is not None

    def test_fetch_failure_writes_nothing(self, engine, api, database):
        """Test a failed read fails the run before any write."""
        api.fetch_boxes.side_effect = StreakAPIError("HTTP 500")

        result = engine.run_sync()

        assert result.outcome == RunOutcome.FAILED
        assert result.states == [RunState.FETCHING, RunState.FAILED]
        assert "fetch failed" in result.error
        assert database.get_entity_count(EntityKind.ORGANIZATION) == 0

    def test_storage_error_keeps_earlier_steps(self, engine, database):
        """Test a failure in a later step keeps what was already applied."""
        with patch(
            "streak_sync.sync.engine.RelationshipSynchronizer.synchronize",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            result = engine.run_sync()

        assert result.outcome == RunOutcome.FAILED
        assert result.states[-2] == RunState.SYNCING_RELATIONSHIPS
        assert "storage error" in result.error
        assert database.get_entity_count(EntityKind.ORGANIZATION) == 5
        assert database.get_entity_count(EntityKind.MEMBER) == 10

    def test_record_failure_is_partial(self, engine, pipelines):
        pipelines.boxes[MEMBER_PIPELINE][0].name = ""

        result = engine.run_sync()

        assert result.outcome == RunOutcome.PARTIAL
        assert result.members.skipped == 1
        assert result.failures[0].key == "m1a"

    def test_geocode_failure_is_warning(self, api, database, config):
        """Test geocoding failures do not affect the outcome."""
        geocode = MagicMock(side_effect=GeocodeError("no match"))
        result = SyncEngine(api, database, config, geocode=geocode).run_sync()

        assert result.outcome == RunOutcome.SUCCESS
        assert len(result.warnings) == 5

    def test_cancel_between_steps(self, engine, api, database, pipelines):
        """Test cancel() stops the run at the next step boundary."""

        def fetch_and_cancel(key):
            engine.cancel()
            return pipelines.fetch_boxes(key)

        api.fetch_boxes.side_effect = fetch_and_cancel

        result = engine.run_sync()

        assert result.outcome == RunOutcome.FAILED
        assert result.error == "cancelled"
        assert database.get_entity_count(EntityKind.ORGANIZATION) == 0

    def test_cancel_right_after_start_is_kept(self, engine, database):
        """Test a cancel landing before the first step still stops the run."""
        with patch.object(engine, "_acquire_run_lock", side_effect=engine.cancel):
            result = engine.run_sync()

        assert result.error == "cancelled"
        assert database.get_entity_count(EntityKind.ORGANIZATION) == 0

    def test_cancel_does_not_leak_into_next_run(self, engine, api, pipelines):
        def fetch_and_cancel(key):
            engine.cancel()
            return pipelines.fetch_boxes(key)

        api.fetch_boxes.side_effect = fetch_and_cancel
        assert engine.run_sync().error == "cancelled"

        api.fetch_boxes.side_effect = pipelines.fetch_boxes
        assert engine.run_sync().outcome == RunOutcome.SUCCESS

    def test_cancel_when_idle_is_ignored(self, engine):
        engine.cancel()
        assert engine.run_sync().outcome == RunOutcome.SUCCESS

    def test_run_is_recorded(self, engine, database):
        engine.run_sync()

        run = database.get_last_run()
        assert run["outcome"] == "success"
        assert run["counts"]["organizations"]["created"] == 5

    def test_missing_pipeline_key(self, api, database):
        engine = SyncEngine(api, database, SyncConfig(member_pipeline_key="x"))
        with pytest.raises(SyncConfigError, match="organization_pipeline_key"):
            engine.run_sync()
        api.fetch_boxes.assert_not_called()


class TestSingleFlight:
    """Tests for run serialization."""

    def test_engine_rejects_overlapping_run(self, engine, api):
        engine._run_guard.acquire()
        try:
            with pytest.raises(SyncAlreadyRunningError):
                engine.run_sync()
        finally:
            engine._run_guard.release()
        api.fetch_pipeline.assert_not_called()

    def test_run_lock_held_elsewhere(self, api, database, config, tmp_path):
        lock_file = tmp_path / "sync.lock"
        holder = RunLock(lock_file)
        holder.acquire()
        try:
            engine = SyncEngine(api, database, config, run_lock=RunLock(lock_file))
            with pytest.raises(SyncAlreadyRunningError):
                engine.run_sync()
        finally:
            holder.release()
        assert database.get_last_run() is None

    def test_run_lock_released(self, api, database, config, tmp_path):
        lock_file = tmp_path / "sync.lock"
        engine = SyncEngine(api, database, config, run_lock=RunLock(lock_file))

        engine.run_sync()

        assert not lock_file.exists()
        assert not engine.running


class TestRunResult:
    """Tests for RunResult."""

    def test_outcome_rules(self):
        assert RunResult().outcome == RunOutcome.FAILED
        assert RunResult(state=RunState.DONE).outcome == RunOutcome.SUCCESS

    def test_counts_as_dict(self):
        assert EntityCounts(created=1).as_dict() == {
            "created": 1,
            "updated": 0,
            "unchanged": 0,
            "deleted": 0,
            "skipped": 0,
        }

    def test_summary(self, engine):
        summary = engine.run_sync().summary()

        assert "Sync Summary:" in summary
        assert "Organizations: 5 created" in summary
        assert "Links: 10 created, 0 removed" in summary
        assert "Outcome: success" in summary
