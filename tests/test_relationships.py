"""
Unit tests for relationship reconstruction.

The link set is the union of what either side's fresh boxes assert; links
are removed only when fresh data for one of their endpoints stops
asserting them.
"""

from streak_sync.sync.box import RemoteBox
from streak_sync.sync.entities import EntityKind, Member, Organization
from streak_sync.sync.entity_sync import EntitySyncResult
from streak_sync.sync.relationships import (
    RelationshipSynchronizer,
    asserted_links,
    reconcile_links,
)

ORG_IDS = {"o1": 1, "o2": 2}
MEMBER_IDS = {"m1": 10, "m2": 20}


def box(key, linked=()):
    return RemoteBox(key=key, name=key, linked_keys=list(linked))


class TestAssertedLinks:
    """Tests for asserted_links."""

    def test_organization_side_only(self):
        """Test an organization listing a member is enough."""
        links = asserted_links([box("o1", ["m1"])], [box("m1")], ORG_IDS, MEMBER_IDS)
        assert links == {(1, 10)}

    def test_member_side_only(self):
        """Test a member listing an organization is enough."""
        links = asserted_links([box("o1")], [box("m1", ["o1"])], ORG_IDS, MEMBER_IDS)
        assert links == {(1, 10)}

    def test_both_sides_counted_once(self):
        links = asserted_links(
            [box("o1", ["m1"])], [box("m1", ["o1"])], ORG_IDS, MEMBER_IDS
        )
        assert links == {(1, 10)}

    def test_unknown_keys_ignored(self):
        """Test keys of missing records or the same pipeline are ignored."""
        links = asserted_links(
            [box("o1", ["m9", "o2"]), box("o9", ["m1"])],
            [box("m2", ["o8", "m1"])],
            ORG_IDS,
            MEMBER_IDS,
        )
        assert links == set()


class TestReconcileLinks:
    """Tests for reconcile_links."""

    def test_adds_asserted(self):
        to_add, to_remove = reconcile_links(set(), {(1, 10)}, {1}, {10})
        assert to_add == {(1, 10)}
        assert to_remove == set()

    def test_removes_unasserted_with_fresh_endpoint(self):
        to_add, to_remove = reconcile_links({(1, 10)}, set(), {1}, set())
        assert to_add == set()
        assert to_remove == {(1, 10)}

    def test_keeps_link_without_fresh_endpoints(self):
        """Test a link is kept when nothing fresh contradicts it."""
        to_add, to_remove = reconcile_links({(1, 10)}, set(), {2}, {20})
        assert to_remove == set()

    def test_keeps_asserted_existing(self):
        to_add, to_remove = reconcile_links({(1, 10)}, {(1, 10)}, {1}, {10})
        assert to_add == set()
        assert to_remove == set()


class TestRelationshipSynchronizer:
    """Tests for RelationshipSynchronizer against a database."""

    def setup_entities(self, database):
        ids = {}
        for entity in (
            Organization(external_key="o1", name="One"),
            Organization(external_key="o2", name="Two"),
            Member(external_key="m1", name="Ada"),
            Member(external_key="m2", name="Grace"),
        ):
            database.insert_entity(entity)
            ids[entity.external_key] = entity.id
        return ids

    def results(self, organization_keys, member_keys):
        organization_result = EntitySyncResult(EntityKind.ORGANIZATION)
        organization_result.unchanged.extend(organization_keys)
        member_result = EntitySyncResult(EntityKind.MEMBER)
        member_result.unchanged.extend(member_keys)
        return organization_result, member_result

    def test_union_creates_links(self, database):
        ids = self.setup_entities(database)
        organization_result, member_result = self.results(["o1", "o2"], ["m1", "m2"])

        result = RelationshipSynchronizer(database).synchronize(
            [box("o1", ["m1"]), box("o2")],
            [box("m1"), box("m2", ["o2"])],
            organization_result,
            member_result,
        )

        assert result.created == 2
        assert result.removed == 0
        assert database.get_links() == {
            (ids["o1"], ids["m1"]),
            (ids["o2"], ids["m2"]),
        }

    def test_unasserted_link_removed(self, database):
        """Test a link neither fresh box asserts any more is removed."""
        ids = self.setup_entities(database)
        database.add_links([(ids["o1"], ids["m1"])])
        organization_result, member_result = self.results(["o1", "o2"], ["m1", "m2"])

        result = RelationshipSynchronizer(database).synchronize(
            [box("o1"), box("o2")],
            [box("m1"), box("m2")],
            organization_result,
            member_result,
        )

        assert result.removed == 1
        assert database.get_link_count() == 0

    def test_link_of_skipped_records_kept(self, database):
        """Test links between records without fresh data survive."""
        ids = self.setup_entities(database)
        database.add_links([(ids["o2"], ids["m2"])])
        organization_result, member_result = self.results(["o1"], ["m1"])

        result = RelationshipSynchronizer(database).synchronize(
            [box("o1"), box("o2")],
            [box("m1"), box("m2")],
            organization_result,
            member_result,
        )

        assert result.removed == 0
        assert database.get_links() == {(ids["o2"], ids["m2"])}

    def test_stale_box_does_not_assert(self, database):
        """Test boxes of records that failed to sync assert nothing."""
        self.setup_entities(database)
        organization_result, member_result = self.results(["o1"], ["m1"])

        result = RelationshipSynchronizer(database).synchronize(
            [box("o1"), box("o2", ["m1"])],
            [box("m1")],
            organization_result,
            member_result,
        )

        assert result.created == 0
