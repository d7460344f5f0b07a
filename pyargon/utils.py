"""Utility functions and constants for pyargon."""

import json
from typing import Any

# =============================================================================
# Constants for bulk transfers
# =============================================================================

# Upper bound for the serialized size of one port chunk (bytes)
CHUNK_BUDGET: int = 1_020_000

# Name of the dependency folder mounted with its own naming convention
PACKAGES_DIR: str = "Packages"
PACKAGES_INDEX_DIR: str = "_Index"
PACKAGES_SOURCE_NAME: str = "init"
PACKAGE_MANIFEST: str = "rotriever.toml"


# =============================================================================
# Serialization utilities
# =============================================================================


def compact_json(value: Any) -> str:
    """Serialize the way the transport does: no whitespace, raw UTF-8."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def serialized_size(value: Any) -> int:
    """Size in bytes of the compact UTF-8 JSON form of a value."""
    return len(compact_json(value).encode("utf-8"))


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format a size in human-readable form.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def format_duration(millis: int) -> str:
    """Format a duration in milliseconds as ``HH:MM:SS``."""
    seconds = max(0, millis) // 1000
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
