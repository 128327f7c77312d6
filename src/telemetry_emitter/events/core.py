"""Tracker core: static metadata and payload record construction."""

import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from telemetry_emitter.events.metadata import MetadataStore, place_in_path
from telemetry_emitter.events.payload import PayloadEncoder


def remove_empty_properties(ctx: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop keys whose value is None."""
    if not ctx:
        return {}
    return {key: value for key, value in ctx.items() if value is not None}


def current_time_millis() -> int:
    """Epoch time in milliseconds."""
    return int(time.time() * 1000)


class TrackerCore:
    """
    Builds payload records for one tracker instance.

    Holds the static metadata merged into every event. Records returned by
    track() are owned by the caller until handed to a delivery queue.
    """

    def __init__(
        self,
        base64_encode: bool = True,
        callback: Callable[[PayloadEncoder], None] | None = None,
    ) -> None:
        self.base64_encode = base64_encode
        self.callback = callback
        self.static_metadata = MetadataStore()

    # ========================================================================
    # Static metadata
    # ========================================================================

    def add_static_metadata_object(self, obj: Mapping[str, Any], path: Any = None) -> None:
        """
        Merge a whole metadata object, optionally nested under path.

        Args:
            obj: Metadata mapping
            path: Group key or list of keys to nest obj under
        """
        self.static_metadata.merge(place_in_path(obj, path))

    def add_static_metadata(self, key: str, value: Any, path: Any = None) -> None:
        """
        Set a single static metadata value.

        Args:
            key: Leaf key
            value: Leaf value (None is ignored by the merge)
            path: Group key or list of keys leading to the leaf
        """
        if path is None:
            segments = []
        elif isinstance(path, (list, tuple)):
            segments = list(path)
        else:
            segments = [path]
        segments.append(key)
        self.static_metadata.merge(place_in_path(value, segments))

    def reset_static_metadata(self, tree: Mapping[str, Any] | None = None) -> None:
        self.static_metadata.reset(tree)

    def set_base64_encoding(self, enabled: bool) -> None:
        self.base64_encode = enabled

    def set_tracker_version(self, version: str) -> None:
        self.add_static_metadata("apiVersion", version, ["header", "versions"])

    def set_tracker_namespace(self, namespace: str) -> None:
        self.add_static_metadata("trackerNamespace", namespace, "deviceInfo")

    def set_source(self, source: str) -> None:
        self.add_static_metadata("source", source, "header")

    def set_environment(self, environment: str) -> None:
        self.add_static_metadata("env", environment, "header")

    def set_app_id(self, app_id: str) -> None:
        self.add_static_metadata("appId", app_id, "header")

    def set_ip_address(self, ip: str) -> None:
        self.add_static_metadata("ip", ip, "header")

    def set_platform(self, platform: str) -> None:
        self.add_static_metadata("platform", platform, "deviceInfo")

    def set_user_id(self, user_id: str) -> None:
        self.add_static_metadata("guid", user_id, "userInfo")

    def set_screen_resolution(self, width: int, height: int) -> None:
        self.add_static_metadata("screenResolution", f"{width}x{height}", "deviceInfo")

    def set_viewport(self, width: int, height: int) -> None:
        self.add_static_metadata("viewportDimensions", f"{width}x{height}", "deviceInfo")

    def set_color_depth(self, depth: int) -> None:
        self.add_static_metadata("colorDepth", depth, "deviceInfo")

    def set_timezone(self, timezone: str) -> None:
        self.add_static_metadata("timezone", timezone, "deviceInfo")

    def set_lang(self, lang: str) -> None:
        self.add_static_metadata("locale", lang, "userInfo")

    # ========================================================================
    # Event construction
    # ========================================================================

    def track(
        self,
        event_type: str,
        ctx: Mapping[str, Any] | None = None,
        metadata: Iterable[Mapping[str, Any]] | None = None,
        tstamp: int | None = None,
    ) -> PayloadEncoder:
        """
        Build the payload record for one event.

        Args:
            event_type: camelCase event type (e.g. "pageView")
            ctx: Event context; None-valued keys are dropped
            metadata: Per-call metadata trees, merged after the static metadata
            tstamp: Client timestamp in epoch ms (defaults to now)

        Returns:
            PayloadEncoder ready to be enqueued
        """
        record = PayloadEncoder(self.base64_encode)

        record.add("type", event_type)
        record.add("ctx", remove_empty_properties(ctx))
        record.add("eventId", str(uuid.uuid4()))
        record.add("clientTstamp", tstamp or current_time_millis())

        record.merge_metadata_collection(self.static_metadata)
        for tree in metadata or []:
            record.merge_metadata(tree)

        if self.callback is not None:
            self.callback(record)

        return record
