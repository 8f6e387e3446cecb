"""
RemoteBox data model for pipeline synchronization.

A box is the remote service's generic record: a unique key, a display
name, a mapping of opaque field codes to values, and the keys of the
boxes it is linked to. Boxes are fetched fresh on every run and never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class BoxFormatError(Exception):
    """Raised when a box payload does not have the expected shape."""

    pass


@dataclass
class RemoteBox:
    """
    A record fetched from a remote pipeline.

    Attributes:
        key: Unique key of the box within its pipeline
        name: Display name of the box
        fields: Field code -> value mapping (insertion order preserved)
        linked_keys: Keys of boxes this box is linked to, in remote order
    """

    key: str
    name: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    linked_keys: list[str] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, box_data: Any) -> RemoteBox:
        """
        Create a RemoteBox from an API payload entry.

        Args:
            box_data: One element of the pipeline's box list

        Returns:
            RemoteBox instance

        Raises:
            BoxFormatError: If the entry is not a box

        Example payload::

            {
                'key': 'agxzfm1haWxmb29nYWVyLAsSDE9yZ2FuaXphdGlvbiIO',
                'name': 'Lincoln High Hack Club',
                'fields': {'1006': '123 Main St', '1012': 'https://...'},
                'linkedBoxKeys': ['agxzfm1haWxmb29nYWVyMAsS...']
            }
        """
        if not isinstance(box_data, dict):
            raise BoxFormatError(
                f"Box entry must be an object, got {type(box_data).__name__}"
            )

        key = box_data.get("key") or box_data.get("boxKey")
        if not isinstance(key, str) or not key:
            raise BoxFormatError("Box entry has no key")

        name = box_data.get("name") or ""
        if not isinstance(name, str):
            raise BoxFormatError(f"Box {key} has a non-string name")

        fields = box_data.get("fields") or {}
        if not isinstance(fields, dict):
            raise BoxFormatError(f"Box {key} fields must be an object")

        # Both spellings appear depending on the client that produced the payload
        linked = box_data.get("linkedBoxKeys")
        if linked is None:
            linked = box_data.get("linked_box_keys")
        if linked is None:
            linked = []
        if not isinstance(linked, list) or not all(isinstance(k, str) for k in linked):
            raise BoxFormatError(f"Box {key} linked keys must be a list of strings")

        return cls(
            key=key,
            name=name,
            fields={str(code): value for code, value in fields.items()},
            linked_keys=list(linked),
        )

    def __repr__(self) -> str:
        return (
            f"RemoteBox(key={self.key!r}, name={self.name!r}, "
            f"fields={len(self.fields)}, linked_keys={len(self.linked_keys)})"
        )
