"""
Relationship synchronizer: rebuild organization <-> member links.

Both pipelines carry linked-key lists and either side may be fetched a
little staler than the other, so a link exists when EITHER side's fresh
box asserts it (union, not intersection). Links are derived state: the
set is recomputed from the fresh boxes on every run, not patched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from streak_sync.storage.db import SyncDatabase
from streak_sync.sync.box import RemoteBox
from streak_sync.sync.entities import EntityKind
from streak_sync.sync.entity_sync import EntitySyncResult

logger = logging.getLogger(__name__)

# (organization_id, member_id)
Link = tuple[int, int]


@dataclass
class LinkSyncResult:
    """Links added and removed by one relationship pass."""

    created: int = 0
    removed: int = 0


def asserted_links(
    organization_boxes: Iterable[RemoteBox],
    member_boxes: Iterable[RemoteBox],
    organization_ids: dict[str, int],
    member_ids: dict[str, int],
) -> set[Link]:
    """
    Collect the links asserted by either side's boxes.

    An organization box listing a member's key, or a member box listing an
    organization's key, is each sufficient on its own.

    Args:
        organization_boxes: Organization boxes whose data is fresh
        member_boxes: Member boxes whose data is fresh
        organization_ids: External key -> local id of stored organizations
        member_ids: External key -> local id of stored members

    Returns:
        Set of (organization_id, member_id) pairs
    """
    links: set[Link] = set()

    for box in organization_boxes:
        organization_id = organization_ids.get(box.key)
        if organization_id is None:
            continue
        for linked_key in box.linked_keys:
            member_id = member_ids.get(linked_key)
            if member_id is None:
                logger.debug(
                    f"Organization {box.key} links unknown member key {linked_key}"
                )
                continue
            links.add((organization_id, member_id))

    for box in member_boxes:
        member_id = member_ids.get(box.key)
        if member_id is None:
            continue
        for linked_key in box.linked_keys:
            organization_id = organization_ids.get(linked_key)
            if organization_id is None:
                logger.debug(
                    f"Member {box.key} links unknown organization key {linked_key}"
                )
                continue
            links.add((organization_id, member_id))

    return links


def reconcile_links(
    existing: set[Link],
    asserted: set[Link],
    fresh_organization_ids: set[int],
    fresh_member_ids: set[int],
) -> tuple[set[Link], set[Link]]:
    """
    Work out which links to add and which to remove.

    An existing link survives if it is asserted, or if neither endpoint had
    fresh box data this run (nothing contradicts it).

    Returns:
        (links to add, links to remove)
    """
    to_add = asserted - existing
    to_remove = {
        (organization_id, member_id)
        for organization_id, member_id in existing - asserted
        if organization_id in fresh_organization_ids
        or member_id in fresh_member_ids
    }
    return to_add, to_remove


class RelationshipSynchronizer:
    """
    Recomputes links between already-synchronized organizations and members.

    Usage:
        result = RelationshipSynchronizer(database).synchronize(
            organization_boxes, member_boxes, organization_result, member_result
        )
    """

    def __init__(self, database: SyncDatabase):
        self.database = database

    def synchronize(
        self,
        organization_boxes: list[RemoteBox],
        member_boxes: list[RemoteBox],
        organization_result: EntitySyncResult,
        member_result: EntitySyncResult,
    ) -> LinkSyncResult:
        """
        Bring the stored link set in line with the fresh boxes.

        Args:
            organization_boxes: Fetched organization boxes
            member_boxes: Fetched member boxes
            organization_result: Result of synchronizing organizations
            member_result: Result of synchronizing members

        Returns:
            LinkSyncResult with the number of links created and removed
        """
        organization_ids = self._ids_by_key(EntityKind.ORGANIZATION)
        member_ids = self._ids_by_key(EntityKind.MEMBER)

        fresh_organization_keys = organization_result.fresh_keys
        fresh_member_keys = member_result.fresh_keys

        asserted = asserted_links(
            [box for box in organization_boxes if box.key in fresh_organization_keys],
            [box for box in member_boxes if box.key in fresh_member_keys],
            organization_ids,
            member_ids,
        )

        fresh_organization_ids = {
            organization_ids[key]
            for key in fresh_organization_keys
            if key in organization_ids
        }
        fresh_member_ids = {
            member_ids[key] for key in fresh_member_keys if key in member_ids
        }

        to_add, to_remove = reconcile_links(
            self.database.get_links(),
            asserted,
            fresh_organization_ids,
            fresh_member_ids,
        )

        result = LinkSyncResult()
        result.removed = self.database.remove_links(sorted(to_remove))
        result.created = self.database.add_links(sorted(to_add))

        logger.info(
            f"Links: asserted={len(asserted)}, created={result.created}, "
            f"removed={result.removed}"
        )
        return result

    def _ids_by_key(self, kind: EntityKind) -> dict[str, int]:
        return {
            entity.external_key: entity.id
            for entity in self.database.list_entities(kind)
            if entity.external_key and entity.id is not None
        }
