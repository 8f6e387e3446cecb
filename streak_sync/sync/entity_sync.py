"""
Entity synchronizer: reconcile one local collection with one box list.

For every box in the freshly fetched list the matching local record (by
external key) is created, updated in place, or left untouched. Local
records whose key no longer appears in the list are deleted along with
their links. Nothing here writes to the remote service.
"""

from __future__ import annotations

import dataclasses
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from streak_sync.api.geocoder import GeocodeError, GeocodeFunc
from streak_sync.storage.db import SyncDatabase
from streak_sync.sync.box import RemoteBox
from streak_sync.sync.entities import Entity, EntityKind, RecordValidationError

logger = logging.getLogger(__name__)


@dataclass
class RecordFailure:
    """A problem with a single record that did not stop the run."""

    kind: EntityKind
    key: Optional[str]
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value} {self.key or '(no key)'}: {self.message}"


@dataclass
class EntitySyncResult:
    """
    Outcome of synchronizing one entity variant.

    Key lists hold external keys. ``fresh_keys`` (created, updated or
    unchanged) are the records whose box data was applied this run.
    """

    kind: EntityKind
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    links_removed: int = 0
    failures: list[RecordFailure] = field(default_factory=list)
    geocode_failures: list[RecordFailure] = field(default_factory=list)

    @property
    def fresh_keys(self) -> set[str]:
        return set(self.created) | set(self.updated) | set(self.unchanged)


def apply_address_change(
    entity: Entity, new_address: Optional[str], geocode: Optional[GeocodeFunc]
) -> bool:
    """
    Set an entity's address and recompute its coordinates if it changed.

    This is the only place coordinates are written. They are recomputed
    from the address alone, never copied from remote latitude/longitude
    fields, and left untouched when the address is unchanged. An address
    that never got coordinates (an earlier lookup failed, or geocoding was
    disabled) is looked up again. A cleared address clears the coordinates.
    When geocoding is disabled the previous coordinates are kept.

    Args:
        entity: Entity to modify in place
        new_address: Address decoded from the remote box
        geocode: Geocoding callable, or None when geocoding is disabled

    Returns:
        True if the address or the coordinates changed

    Raises:
        GeocodeError: If geocoding fails. The address has been updated but
            the coordinates keep their previous values.
    """
    address_changed = new_address != entity.address
    needs_coordinates = (
        bool(new_address)
        and geocode is not None
        and entity.coordinates == (None, None)
    )
    if not address_changed and not needs_coordinates:
        return False

    entity.address = new_address  # type: ignore[attr-defined]

    if not new_address:
        entity.latitude = None  # type: ignore[attr-defined]
        entity.longitude = None  # type: ignore[attr-defined]
        return True

    if geocode is None:
        return True

    latitude, longitude = geocode(new_address)
    entity.latitude = latitude  # type: ignore[attr-defined]
    entity.longitude = longitude  # type: ignore[attr-defined]
    return True


class EntitySynchronizer:
    """
    Reconciles all local entities of one variant against a full box list.

    Usage:
        synchronizer = EntitySynchronizer(database, EntityKind.MEMBER, geocode)
        result = synchronizer.synchronize(boxes)
    """

    def __init__(
        self,
        database: SyncDatabase,
        kind: EntityKind,
        geocode: Optional[GeocodeFunc] = None,
    ):
        """
        Args:
            database: Local entity store
            kind: Entity variant to synchronize
            geocode: Geocoding callable; None disables geocoding
        """
        self.database = database
        self.kind = kind
        self.codec = kind.codec
        self.geocode = geocode

    def synchronize(self, boxes: list[RemoteBox]) -> EntitySyncResult:
        """
        Apply a freshly fetched box list to the local collection.

        Args:
            boxes: The complete current box list of the variant's pipeline

        Returns:
            EntitySyncResult with the keys touched and per-record failures

        Raises:
            sqlite3.Error: If deleting missing records fails
        """
        result = EntitySyncResult(kind=self.kind)

        local_by_key = {
            entity.external_key: entity
            for entity in self.database.list_entities(self.kind)
            if entity.external_key
        }
        logger.info(
            f"Synchronizing {len(boxes)} {self.kind.plural} boxes against "
            f"{len(local_by_key)} local records"
        )

        seen_keys: set[str] = set()
        for box in boxes:
            if box.key in seen_keys:
                self._record_failure(result, box.key, "duplicate box key in pipeline")
                continue
            seen_keys.add(box.key)

            try:
                existing = local_by_key.get(box.key)
                if existing is None:
                    self._create(box, result)
                else:
                    self._update(existing, box, result)
            except RecordValidationError as e:
                self._record_failure(result, box.key, f"validation failed: {e}")
            except sqlite3.Error as e:
                self._record_failure(result, box.key, f"storage error: {e}")

        self._delete_missing(local_by_key, seen_keys, result)

        logger.info(
            f"{self.kind.plural.capitalize()}: created={len(result.created)}, "
            f"updated={len(result.updated)}, unchanged={len(result.unchanged)}, "
            f"deleted={len(result.deleted)}, skipped={len(result.skipped)}"
        )
        return result

    def _create(self, box: RemoteBox, result: EntitySyncResult) -> None:
        attributes = self.codec.decode_box(box)
        address = attributes.pop("address", None)

        entity = self.kind.entity_class(external_key=box.key)
        entity.apply(attributes)
        entity.validate()

        self._apply_address(entity, address, result)
        self.database.insert_entity(entity)

        logger.debug(f"Created {self.kind.value} {box.key} ({entity.name})")
        result.created.append(box.key)

    def _update(
        self, existing: Entity, box: RemoteBox, result: EntitySyncResult
    ) -> None:
        attributes = self.codec.decode_box(box)
        address = attributes.pop("address", None)

        # Copy, so a rejected update leaves the loaded record intact
        candidate = dataclasses.replace(existing)
        changed = candidate.apply(attributes)
        if changed:
            candidate.validate()

        if self._apply_address(candidate, address, result):
            changed.append("address")

        if not changed:
            result.unchanged.append(box.key)
            return

        self.database.update_entity(candidate)

        logger.debug(
            f"Updated {self.kind.value} {box.key}: {', '.join(sorted(changed))}"
        )
        result.updated.append(box.key)

    def _apply_address(
        self, entity: Entity, address: Optional[str], result: EntitySyncResult
    ) -> bool:
        address_changed = address != entity.address
        try:
            return apply_address_change(entity, address, self.geocode)
        except GeocodeError as e:
            logger.warning(
                f"Could not geocode {self.kind.value} {entity.external_key}: {e}; "
                "keeping previous coordinates"
            )
            result.geocode_failures.append(
                RecordFailure(self.kind, entity.external_key, f"geocoding failed: {e}")
            )
            return address_changed

    def _delete_missing(
        self,
        local_by_key: dict[str, Entity],
        seen_keys: set[str],
        result: EntitySyncResult,
    ) -> None:
        missing = [
            entity for key, entity in local_by_key.items() if key not in seen_keys
        ]
        if not missing:
            return

        logger.info(
            f"Deleting {len(missing)} {self.kind.plural} no longer in the pipeline"
        )
        result.links_removed += self.database.delete_entities(
            self.kind, [entity.id for entity in missing if entity.id is not None]
        )
        result.deleted.extend(key for key in local_by_key if key not in seen_keys)

    def _record_failure(
        self, result: EntitySyncResult, key: str, message: str
    ) -> None:
        logger.warning(f"Skipping {self.kind.value} box {key}: {message}")
        result.skipped.append(key)
        result.failures.append(RecordFailure(self.kind, key, message))
