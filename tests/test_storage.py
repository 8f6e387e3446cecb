"""
Unit tests for the storage module.

Tests the SyncDatabase class for entity, link and run history operations.
"""

import sqlite3
from datetime import datetime, timezone

import pytest

from streak_sync.storage.db import SyncDatabase
from streak_sync.sync.engine import EntityCounts, RunResult, RunState
from streak_sync.sync.entities import EntityKind, Member, Organization
from streak_sync.sync.entity_sync import RecordFailure


def add_organization(db, key, name="Club"):
    organization = Organization(external_key=key, name=name)
    db.insert_entity(organization)
    return organization


def add_member(db, key, name="Ada"):
    member = Member(external_key=key, name=name)
    db.insert_entity(member)
    return member


class TestSyncDatabaseInitialization:
    """Tests for database initialization."""

    def test_initialize_creates_tables(self, database):
        """Test that initialize creates the required tables."""
        with database.connection() as conn:
            names = {
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                )
            }
        assert {
            "organizations",
            "members",
            "organization_members",
            "sync_runs",
        } <= names

    def test_initialize_is_idempotent(self, database):
        """Test that initialize can be called multiple times."""
        database.initialize()
        database.initialize()
        assert database.get_entity_count(EntityKind.MEMBER) == 0

    def test_file_database_persists(self, tmp_path):
        """Test data survives reopening a file database."""
        db_path = str(tmp_path / "test.db")
        db = SyncDatabase(db_path)
        db.initialize()
        add_member(db, "m1")

        reopened = SyncDatabase(db_path)
        reopened.initialize()
        assert reopened.get_entity_by_key(EntityKind.MEMBER, "m1").name == "Ada"


class TestEntityOperations:
    """Tests for entity CRUD."""

    def test_insert_assigns_id(self, database):
        member = add_member(database, "m1")
        assert member.id is not None

    def test_get_entity_by_key(self, database):
        """Test all attributes are read back."""
        organization = Organization(
            external_key="o1",
            name="Club",
            address="1 Main St",
            latitude=1.5,
            longitude=2.5,
            website="https://club.example",
        )
        database.insert_entity(organization)

        loaded = database.get_entity_by_key(EntityKind.ORGANIZATION, "o1")
        assert loaded == organization

    def test_get_missing_key(self, database):
        assert database.get_entity_by_key(EntityKind.MEMBER, "nope") is None

    def test_duplicate_key_rejected(self, database):
        """Test the external key is unique per variant."""
        add_member(database, "m1")
        with pytest.raises(sqlite3.IntegrityError):
            add_member(database, "m1")

    def test_same_key_in_both_tables(self, database):
        """Test keys are only unique within a variant."""
        add_member(database, "k")
        add_organization(database, "k")
        assert database.get_entity_count(EntityKind.MEMBER) == 1
        assert database.get_entity_count(EntityKind.ORGANIZATION) == 1

    def test_null_keys_allowed(self, database):
        """Test several records may lack an external key."""
        database.insert_entity(Member(name="A"))
        database.insert_entity(Member(name="B"))
        assert database.get_entity_count(EntityKind.MEMBER) == 2

    def test_list_entities_ordered_by_id(self, database):
        add_member(database, "m2", "Second")
        add_member(database, "m1", "First")

        members = database.list_entities(EntityKind.MEMBER)
        assert [m.external_key for m in members] == ["m2", "m1"]
        assert all(isinstance(m, Member) for m in members)

    def test_update_entity(self, database):
        member = add_member(database, "m1")
        member.gender = "Female"

        assert database.update_entity(member) is True
        loaded = database.get_entity_by_key(EntityKind.MEMBER, "m1")
        assert loaded.gender == "Female"

    def test_update_stamps_utc_iso_timestamp(self, database):
        member = add_member(database, "m1")
        database.update_entity(member)

        with database.connection() as conn:
            stamp = conn.execute(
                "SELECT updated_at FROM members WHERE id = ?", (member.id,)
            ).fetchone()[0]
        assert datetime.fromisoformat(stamp).tzinfo == timezone.utc

    def test_update_without_id_raises(self, database):
        with pytest.raises(ValueError):
            database.update_entity(Member(name="Ada"))

    def test_delete_cascades_links(self, database):
        """Test deleting an entity removes its links and reports them."""
        organization = add_organization(database, "o1")
        first = add_member(database, "m1")
        second = add_member(database, "m2")
        database.add_links([(organization.id, first.id), (organization.id, second.id)])

        removed = database.delete_entities(EntityKind.ORGANIZATION, [organization.id])

        assert removed == 2
        assert database.get_link_count() == 0
        assert database.get_entity_count(EntityKind.MEMBER) == 2

    def test_delete_nothing(self, database):
        assert database.delete_entities(EntityKind.MEMBER, []) == 0


class TestLinkOperations:
    """Tests for the organization <-> member link table."""

    def test_add_links_ignores_existing(self, database):
        organization = add_organization(database, "o1")
        member = add_member(database, "m1")

        assert database.add_links([(organization.id, member.id)]) == 1
        assert database.add_links([(organization.id, member.id)]) == 0
        assert database.get_links() == {(organization.id, member.id)}

    def test_remove_links(self, database):
        organization = add_organization(database, "o1")
        member = add_member(database, "m1")
        database.add_links([(organization.id, member.id)])

        assert database.remove_links([(organization.id, member.id)]) == 1
        assert database.remove_links([(organization.id, member.id)]) == 0

    def test_link_requires_existing_entities(self, database):
        """Test foreign keys are enforced."""
        with pytest.raises(sqlite3.IntegrityError):
            database.add_links([(999, 998)])

    def test_members_for_organization(self, database):
        organization = add_organization(database, "o1")
        first = add_member(database, "m1")
        second = add_member(database, "m2")
        database.add_links([(organization.id, second.id), (organization.id, first.id)])

        assert database.get_member_ids_for_organization(organization.id) == [
            first.id,
            second.id,
        ]


class TestRunHistory:
    """Tests for sync run history."""

    def test_no_runs(self, database):
        assert database.get_last_run() is None

    def test_record_and_read_run(self, database):
        result = RunResult(
            organizations=EntityCounts(created=2),
            members=EntityCounts(updated=1, skipped=1),
            links_created=3,
            failures=[RecordFailure(EntityKind.MEMBER, "m9", "bad")],
            state=RunState.DONE,
            finished_at=datetime.now(timezone.utc),
        )
        database.record_run(result)

        run = database.get_last_run()
        assert run["outcome"] == "partial"
        assert run["state"] == "done"
        assert run["failure_count"] == 1
        assert run["counts"]["organizations"]["created"] == 2
        assert run["counts"]["members"]["skipped"] == 1
        assert run["counts"]["links_created"] == 3
        assert run["started_at"] == result.started_at
        assert run["finished_at"] == result.finished_at
        assert run["started_at"].tzinfo is not None

    def test_unfinished_run(self, database):
        database.record_run(RunResult(state=RunState.FAILED))
        assert database.get_last_run()["finished_at"] is None


class TestUtilityOperations:
    """Tests for reset and maintenance."""

    def test_clear_all_state(self, database):
        organization = add_organization(database, "o1")
        member = add_member(database, "m1")
        database.add_links([(organization.id, member.id)])
        database.record_run(RunResult(state=RunState.DONE))

        database.clear_all_state()

        assert database.get_entity_count(EntityKind.ORGANIZATION) == 0
        assert database.get_entity_count(EntityKind.MEMBER) == 0
        assert database.get_link_count() == 0
        assert database.get_last_run() is None

    def test_vacuum(self, tmp_path):
        db = SyncDatabase(str(tmp_path / "test.db"))
        db.initialize()
        db.vacuum()
