"""Sync engine for pyargon - file tree to object tree synchronization."""

from .address import Address, Classified, NodeClass, classify, normalize_name
from .applier import SyncAction, TwoWaySyncApplier
from .engine import SessionStats, SyncSession
from .events import (
    ChangeEvent,
    ChangeParent,
    ChangeType,
    CloseFile,
    Convert,
    Create,
    Delete,
    EventFactory,
    EventQueue,
    ExecuteSnippet,
    Rename,
    SetProperties,
    SetTitle,
    Update,
    event_from_dict,
)
from .manifest import CustomPathMapping, ProjectManifest
from .materializer import TreeMaterializer
from .paths import PathCodec
from .porter import FullTreePorter, PortResult, chunk_events
from .suppression import SuppressionSet
from .watcher import LocalWatcherAdapter, PollingWatcher

__all__ = [
    "SyncSession",
    "SessionStats",
    "Address",
    "NodeClass",
    "Classified",
    "classify",
    "normalize_name",
    "PathCodec",
    "ProjectManifest",
    "CustomPathMapping",
    "ChangeEvent",
    "Create",
    "Update",
    "Delete",
    "Rename",
    "ChangeType",
    "ChangeParent",
    "SetProperties",
    "Convert",
    "CloseFile",
    "ExecuteSnippet",
    "SetTitle",
    "event_from_dict",
    "EventQueue",
    "EventFactory",
    "SuppressionSet",
    "LocalWatcherAdapter",
    "PollingWatcher",
    "TreeMaterializer",
    "FullTreePorter",
    "PortResult",
    "chunk_events",
    "TwoWaySyncApplier",
    "SyncAction",
]
