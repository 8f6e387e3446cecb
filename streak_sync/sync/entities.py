"""
Local entity models: organizations and their members.

Both variants share the sync bookkeeping fields (local id, external key,
name) and expose their mapped attributes through the codec of their
EntityKind.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Optional

from streak_sync.sync.fields import MEMBER_CODEC, ORGANIZATION_CODEC, EntityCodec


class RecordValidationError(Exception):
    """Raised when an entity's attributes fail local validation."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


class EntityKind(str, Enum):
    """The two local entity variants kept in sync."""

    ORGANIZATION = "organization"
    MEMBER = "member"

    @property
    def codec(self) -> EntityCodec:
        """Field codec for this variant."""
        return ORGANIZATION_CODEC if self is EntityKind.ORGANIZATION else MEMBER_CODEC

    @property
    def table(self) -> str:
        """Storage table holding this variant."""
        return "organizations" if self is EntityKind.ORGANIZATION else "members"

    @property
    def entity_class(self) -> type[Entity]:
        """Dataclass implementing this variant."""
        return Organization if self is EntityKind.ORGANIZATION else Member

    @property
    def plural(self) -> str:
        return self.table


@dataclass
class Entity:
    """
    Fields shared by every local entity.

    Attributes:
        id: Local identifier (None until first persisted)
        external_key: Key of the matching remote box (None before first sync)
        name: Display name, required
    """

    KIND: ClassVar[EntityKind]

    id: Optional[int] = None
    external_key: Optional[str] = None
    name: str = ""

    @property
    def kind(self) -> EntityKind:
        return self.KIND

    @property
    def codec(self) -> EntityCodec:
        return self.KIND.codec

    @property
    def coordinates(self) -> tuple[Optional[float], Optional[float]]:
        """(latitude, longitude) as stored locally."""
        return getattr(self, "latitude", None), getattr(self, "longitude", None)

    def attributes(self) -> dict[str, Any]:
        """Mapped attributes (including derived ones) keyed by attribute name."""
        return {a: getattr(self, a) for a in self.codec.attributes}

    def apply(self, attributes: dict[str, Any]) -> list[str]:
        """
        Overwrite attributes in place.

        Args:
            attributes: Attribute name -> new value. Unknown names are ignored.

        Returns:
            Names of attributes whose value changed
        """
        known = {f.name for f in fields(self)}
        changed = []
        for attribute, value in attributes.items():
            if attribute not in known:
                continue
            if getattr(self, attribute) != value:
                setattr(self, attribute, value)
                changed.append(attribute)
        return changed

    def validate(self) -> None:
        """
        Check the entity can be stored.

        Raises:
            RecordValidationError: Listing every problem found
        """
        problems = []
        if not self.name or not self.name.strip():
            problems.append("name can't be blank")
        if self.external_key is not None and not self.external_key.strip():
            problems.append("external key can't be blank")
        if problems:
            raise RecordValidationError(problems)

    def to_row(self) -> dict[str, Any]:
        """Column name -> value for storage (excluding id)."""
        row = {"external_key": self.external_key, "name": self.name}
        row.update(self.attributes())
        return row

    @classmethod
    def from_row(cls, row: Any) -> Entity:
        """Build an entity from a storage row (mapping or sqlite3.Row)."""
        data = {f.name: row[f.name] for f in fields(cls)}
        return cls(**data)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id!r}, "
            f"external_key={self.external_key!r}, name={self.name!r})"
        )


@dataclass(repr=False)
class Organization(Entity):
    """A club or school organization."""

    KIND: ClassVar[EntityKind] = EntityKind.ORGANIZATION

    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    website: Optional[str] = None
    high_school_name: Optional[str] = None
    high_school_type: Optional[str] = None
    high_school_start_month: Optional[str] = None
    high_school_end_month: Optional[str] = None


@dataclass(repr=False)
class Member(Entity):
    """A person who leads one or more organizations."""

    KIND: ClassVar[EntityKind] = EntityKind.MEMBER

    email: Optional[str] = None
    gender: Optional[str] = None
    year: Optional[str] = None
    phone_number: Optional[str] = None
    slack_username: Optional[str] = None
    github_username: Optional[str] = None
    twitter_username: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
