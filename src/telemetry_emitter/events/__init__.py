"""
Event construction.

This package builds payload records: hierarchical metadata merging, the
canonical snake_case wire object and its JSON/base64 encoding.
"""

from .metadata import Leaf, MetadataStore, Node, place_in_path, to_tree
from .naming import base64_encode, sanitize_property_names, to_snake_case
from .payload import PayloadEncoder
from .core import TrackerCore, current_time_millis, remove_empty_properties

__all__ = [
    "Leaf",
    "Node",
    "MetadataStore",
    "PayloadEncoder",
    "TrackerCore",
    "base64_encode",
    "current_time_millis",
    "place_in_path",
    "remove_empty_properties",
    "sanitize_property_names",
    "to_snake_case",
    "to_tree",
]
