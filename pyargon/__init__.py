"""pyargon - two-way sync between a local file tree and a Roblox Studio place."""

from .client import ArgonClient
from .config import Settings, load_settings
from .exceptions import (
    ArgonError,
    ConfigError,
    ManifestError,
    PathResolutionError,
    StaleTargetError,
    TransportError,
)
from .sync import SyncSession

__version__ = "0.1.0"

__all__ = [
    "ArgonClient",
    "Settings",
    "SyncSession",
    "load_settings",
    "ArgonError",
    "ConfigError",
    "ManifestError",
    "PathResolutionError",
    "StaleTargetError",
    "TransportError",
]
