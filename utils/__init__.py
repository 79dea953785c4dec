"""Shared utilities package for the Logware session client"""

from .kv_store import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    origin_slug,
)
from .logging_utils import configure_logging, redact, redact_payload

__all__ = [
    "KeyValueStore",
    "FileKeyValueStore",
    "MemoryKeyValueStore",
    "origin_slug",
    "configure_logging",
    "redact",
    "redact_payload",
]
