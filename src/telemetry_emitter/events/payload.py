"""Payload record for one event and its canonical wire encoding."""

import json
from collections.abc import Mapping
from typing import Any

from telemetry_emitter.events.metadata import MetadataStore
from telemetry_emitter.events.naming import (
    base64_encode,
    sanitize_property_names,
    to_snake_case,
)


class PayloadEncoder:
    """
    One event's fields plus a private metadata overlay.

    Field and metadata names are kept exactly as given while the record is
    being assembled; snake_case conversion happens only in build().
    """

    def __init__(self, binary_encode: bool = True) -> None:
        """
        Initialize an empty record.

        Args:
            binary_encode: Whether encode() returns base64 instead of JSON text
        """
        self.binary_encode = binary_encode
        self._fields: dict[str, Any] = {}
        self._metadata = MetadataStore()

    # ------------------------------------------------------------------
    # Event fields
    # ------------------------------------------------------------------

    def add(self, key: str, value: Any) -> None:
        """Set a field. None and empty strings are ignored."""
        if value is None or (isinstance(value, str) and value == ""):
            return
        self._fields[key] = value

    def remove(self, key: str) -> None:
        """Delete a field if present."""
        self._fields.pop(key, None)

    def copy_dict(self, data: Mapping[str, Any]) -> None:
        """Add every key of data."""
        for key, value in data.items():
            self.add(key, value)

    @property
    def fields(self) -> dict[str, Any]:
        """Copy of the raw event fields."""
        return dict(self._fields)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def merge_metadata(self, tree: Any) -> None:
        self._metadata.merge(tree)

    def merge_metadata_collection(self, store: MetadataStore) -> None:
        self._metadata.merge(store.collect())

    def reset_metadata(self, tree: Any = None) -> None:
        self._metadata.reset(tree if isinstance(tree, Mapping) else None)

    @property
    def metadata(self) -> dict[str, Any]:
        return self._metadata.collect()

    # ------------------------------------------------------------------
    # Wire form
    # ------------------------------------------------------------------

    def build(self) -> dict[str, Any]:
        """
        Build the canonical wire object.

        Returns:
            {**metadata_groups, "events": [event_fields]} with snake_case keys
        """
        event = sanitize_property_names(self._fields)
        if isinstance(event.get("type"), str):
            event["type"] = to_snake_case(event["type"])

        built = sanitize_property_names(self._metadata.collect())
        built["events"] = [event]
        return built

    def encode(self) -> str:
        """Serialize build() to compact JSON, base64 encoded when enabled."""
        encoded = json.dumps(self.build(), separators=(",", ":"), ensure_ascii=False)
        if self.binary_encode:
            encoded = base64_encode(encoded)
        return encoded

    # ------------------------------------------------------------------
    # Queue persistence
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, object]:
        """Serialize the pre-encoding state for durable storage."""
        return {
            "binary_encode": self.binary_encode,
            "fields": dict(self._fields),
            "metadata": self._metadata.collect(),
        }

    @classmethod
    def from_record(cls, data: Mapping[str, object]) -> "PayloadEncoder":
        """
        Rebuild a record from its stored snapshot.

        Raises:
            ValueError: If the snapshot is malformed
        """
        fields = data.get("fields")
        metadata = data.get("metadata", {})
        binary_encode = data.get("binary_encode", True)

        if not isinstance(fields, Mapping) or not fields:
            raise ValueError("Queue record has no event fields")
        if not isinstance(metadata, Mapping):
            raise ValueError("Queue record metadata must be an object")
        if not isinstance(binary_encode, bool):
            raise ValueError("Queue record binary_encode must be a boolean")

        record = cls(binary_encode)
        record.copy_dict(fields)
        record.merge_metadata(metadata)
        return record

    def __repr__(self) -> str:
        return f"PayloadEncoder(fields={self._fields!r}, metadata={self.metadata!r})"
