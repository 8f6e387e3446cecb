"""
Field mapping between local entity attributes and remote box fields.

The remote service identifies box fields by opaque codes ("1003") and
encodes dropdown values as option codes ("9001"). Each entity variant has
one EntityCodec describing its attributes:

- FieldMapping: plain value, passed through unchanged
- EnumFieldMapping: domain value <-> option code through a two-way table

Latitude and longitude are decoded like any other field but are derived
locally from the address, so the synchronizer drops them with
strip_derived_attributes() before applying anything to an entity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from streak_sync.sync.box import RemoteBox

logger = logging.getLogger(__name__)

# Attributes computed locally by geocoding the address
DERIVED_ATTRIBUTES = frozenset({"latitude", "longitude"})


@dataclass(frozen=True)
class FieldMapping:
    """
    Maps one entity attribute to one remote field code.

    Attributes:
        attribute: Attribute name on the local entity
        code: Remote field code
    """

    attribute: str
    code: str

    def encode(self, value: Any) -> Any:
        """Convert a local attribute value to its remote representation."""
        return value

    def decode(self, value: Any) -> Any:
        """Convert a remote field value to a local attribute value."""
        if isinstance(value, str):
            value = value.strip()
            return value or None
        # Stored as TEXT; numbers would come back as strings
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


@dataclass(frozen=True)
class EnumFieldMapping(FieldMapping):
    """
    Maps an enumerated attribute through an option-code dictionary.

    Lookups are exact in both directions. A value with no entry maps to
    None (unset) and is logged, it never raises.
    """

    options: Mapping[str, str] = field(default_factory=dict)

    @property
    def reverse_options(self) -> dict[str, str]:
        """Option code -> domain value."""
        return {code: value for value, code in self.options.items()}

    def encode(self, value: Any) -> Any:
        if value is None:
            return None
        code = self.options.get(value)
        if code is None:
            logger.warning(
                f"No option code for {self.attribute}={value!r} (field {self.code}); "
                "treating as unset"
            )
        return code

    def decode(self, value: Any) -> Any:
        if value is None or value == "":
            return None
        domain_value = None
        if isinstance(value, str):
            domain_value = self.reverse_options.get(value)
        if domain_value is None:
            logger.warning(
                f"Unknown option code {value!r} for {self.attribute} "
                f"(field {self.code}); treating as unset"
            )
        return domain_value


@dataclass(frozen=True)
class CoordinateFieldMapping(FieldMapping):
    """Latitude/longitude field; decodes numeric strings to float."""

    def decode(self, value: Any) -> Any:
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-numeric {self.attribute} value {value!r}")
            return None


class EntityCodec:
    """
    Bidirectional codec between an entity variant's attributes and box fields.

    Usage:
        attributes = MEMBER_CODEC.decode_box(box)
        fields = MEMBER_CODEC.to_fields(member.attributes())
    """

    def __init__(self, name: str, mappings: list[FieldMapping]):
        self.name = name
        self.mappings = tuple(mappings)
        self._by_attribute = {m.attribute: m for m in self.mappings}
        self._by_code = {m.code: m for m in self.mappings}
        if len(self._by_attribute) != len(self.mappings):
            raise ValueError(f"Duplicate attribute in {name} codec")
        if len(self._by_code) != len(self.mappings):
            raise ValueError(f"Duplicate field code in {name} codec")

    @property
    def attributes(self) -> tuple[str, ...]:
        """All mapped attribute names, in declaration order."""
        return tuple(m.attribute for m in self.mappings)

    def to_fields(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        """
        Encode entity attributes as a field code -> value mapping.

        Attributes missing from the input are encoded as None.
        """
        return {m.code: m.encode(attributes.get(m.attribute)) for m in self.mappings}

    def from_fields(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """
        Decode a field code -> value mapping into entity attributes.

        Every mapped attribute is present in the result; absent codes decode
        to None. Codes this codec does not know are ignored.
        """
        return {m.attribute: m.decode(fields.get(m.code)) for m in self.mappings}

    def decode_box(self, box: RemoteBox) -> dict[str, Any]:
        """
        Decode a box into the attributes a sync may apply: the box name plus
        every non-derived mapped attribute.
        """
        attributes = strip_derived_attributes(self.from_fields(box.fields))
        attributes["name"] = box.name.strip() if box.name else ""
        return attributes

    def __repr__(self) -> str:
        return f"EntityCodec(name={self.name!r}, fields={len(self.mappings)})"


def strip_derived_attributes(attributes: dict[str, Any]) -> dict[str, Any]:
    """
    Remove latitude/longitude from decoded attributes.

    Remote coordinate fields are never applied to a local entity, even when
    present and different; coordinates come only from local geocoding.
    """
    for attribute in DERIVED_ATTRIBUTES:
        attributes.pop(attribute, None)
    return attributes


# =============================================================================
# Option tables
# =============================================================================

GENDER_OPTIONS = {
    "Male": "9001",
    "Female": "9002",
    "Other": "9003",
}

YEAR_OPTIONS = {
    "2016": "9010",
    "2017": "9004",
    "2018": "9003",
    "2019": "9002",
    "2020": "9001",
    "2021": "9006",
    "2022": "9009",
    "Graduated": "9005",
    "Teacher": "9008",
    "Unknown": "9007",
}

# =============================================================================
# Codecs
# =============================================================================

ORGANIZATION_CODEC = EntityCodec(
    "organization",
    [
        FieldMapping("address", "1006"),
        CoordinateFieldMapping("latitude", "1007"),
        CoordinateFieldMapping("longitude", "1008"),
        FieldMapping("website", "1012"),
        FieldMapping("high_school_name", "1013"),
        FieldMapping("high_school_type", "1014"),
        FieldMapping("high_school_start_month", "1015"),
        FieldMapping("high_school_end_month", "1016"),
    ],
)

MEMBER_CODEC = EntityCodec(
    "member",
    [
        FieldMapping("email", "1003"),
        EnumFieldMapping("gender", "1001", options=GENDER_OPTIONS),
        EnumFieldMapping("year", "1002", options=YEAR_OPTIONS),
        FieldMapping("phone_number", "1010"),
        FieldMapping("slack_username", "1006"),
        FieldMapping("github_username", "1009"),
        FieldMapping("twitter_username", "1008"),
        FieldMapping("address", "1011"),
        CoordinateFieldMapping("latitude", "1018"),
        CoordinateFieldMapping("longitude", "1019"),
    ],
)
