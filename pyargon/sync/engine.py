"""Sync session: owns the shared state and wires the sync components."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from ..config import Settings
from ..exceptions import ArgonError
from ..utils import format_duration
from .applier import TwoWaySyncApplier
from .events import ChangeEvent, EventFactory, EventQueue
from .manifest import ProjectManifest, write_default_manifest
from .materializer import TreeMaterializer
from .paths import PathCodec
from .porter import FullTreePorter
from .suppression import SuppressionSet
from .watcher import LocalWatcherAdapter, PollingWatcher

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    """Counters shown on the status page."""

    lines_synced: int = 0
    files_synced: int = 0
    projects_ported: int = 0
    sessions_started: int = 0


class SyncSession:
    """One synchronization session for a workspace.

    All state (queue, suppression set, pending port chunks, manifest
    overrides) lives on the instance, so several sessions can coexist in
    one process. Callers are expected to serialize access; the server
    does so with a lock.

    Example:
        >>> session = SyncSession(Settings(), Path("/game"))
        >>> session.start()
        >>> first = session.port_project()
        >>> while session.chunks_remaining:
        ...     session.next_chunk()
    """

    def __init__(self, settings: Settings, workspace: Union[str, Path]):
        self.settings = settings
        self.codec = PathCodec(Path(workspace), settings)
        self.workspace = self.codec.workspace
        self.queue = EventQueue(settings.queue_limit)
        self.suppression = SuppressionSet()
        self.factory = EventFactory(self.codec, self.queue)
        self.adapter = LocalWatcherAdapter(self.codec, self.factory, self.suppression)
        self.materializer = TreeMaterializer(self.codec, self.suppression)
        self.porter = FullTreePorter(self.codec, self.factory, self.queue)
        self.applier = TwoWaySyncApplier(self.codec, self.suppression)
        self.watcher: Optional[PollingWatcher] = None
        self.manifest: Optional[ProjectManifest] = None
        self.stats = SessionStats()
        self.connected = False
        self.remote_title = ""
        self.started_at: Optional[float] = None
        self._chunks: list[list[ChangeEvent]] = []

    @property
    def running(self) -> bool:
        return self.started_at is not None

    @property
    def manifest_path(self) -> Path:
        return self.workspace / self.settings.manifest_name

    @property
    def chunks_remaining(self) -> int:
        return len(self._chunks)

    def start(self, watch: bool = False) -> None:
        """Prepare the workspace and load the project manifest.

        Args:
            watch: Also create a polling watcher over the workspace
        """
        if self.settings.auto_setup:
            self._auto_setup()

        self.reload_manifest()
        self.started_at = time.time()

        if watch:
            self.watcher = PollingWatcher(self.adapter, self._watch_roots())

        logger.info(f"Session started for {self.workspace}")

    def _auto_setup(self) -> None:
        root = self.codec.root_dir
        if not root.is_dir():
            root.mkdir(parents=True)
            logger.info(f"Created root folder: {root}")
        if not self.manifest_path.exists():
            write_default_manifest(self.manifest_path, self.settings.root_folder)

    def _watch_roots(self) -> list[Path]:
        roots = [self.codec.root_dir, self.manifest_path]
        for mapping in self.codec.mappings:
            top = self.workspace / mapping.fs_prefix[0]
            if top not in roots:
                roots.append(top)
        return roots

    def reload_manifest(self) -> None:
        """Load the manifest, applying its root folder and extension overrides."""
        if not self.manifest_path.is_file():
            self.manifest = None
            self.codec.clear_mappings()
            return

        try:
            manifest = ProjectManifest.load(self.manifest_path)
        except ArgonError as e:
            logger.warning(f"Keeping previous path mappings: {e}")
            return

        overrides: dict[str, Any] = {}
        if manifest.root_folder:
            overrides["root_folder"] = manifest.root_folder
        if manifest.extension:
            overrides["extension"] = manifest.extension
        if overrides:
            settings = self.settings.with_overrides(**overrides)
            try:
                settings.validate()
            except ArgonError as e:
                logger.warning(f"Ignoring manifest settings: {e}")
            else:
                self.settings = settings
                self.codec.settings = settings

        self.manifest = manifest
        self.codec.load_manifest(manifest)

    def stop(self) -> None:
        """Detach watchers and drop pending events and port chunks."""
        self.adapter.dispose()
        self.watcher = None
        self.queue.clear()
        self.suppression.clear()
        self._chunks = []
        self.connected = False
        self.started_at = None
        logger.info("Session stopped")

    def uptime(self) -> str:
        if self.started_at is None:
            return format_duration(0)
        return format_duration(int((time.time() - self.started_at) * 1000))

    def title(self) -> str:
        """Display name of the project."""
        if self.manifest is not None and self.manifest.title:
            return self.manifest.title
        return self.workspace.name

    def connect(self) -> bool:
        """Mark the host as connected, returning the previous state."""
        was_connected = self.connected
        if not was_connected:
            self.connected = True
            self.stats.sessions_started += 1
        return was_connected

    def disconnect(self) -> None:
        self.connected = False
        self.remote_title = ""

    def poll(self) -> None:
        if self.watcher is not None:
            self.watcher.poll()

    def drain(self) -> list[dict[str, Any]]:
        """Wire records of every pending event, emptying the queue."""
        self.poll()
        events = [event.to_dict() for event in self.queue.drain()]
        self.connected = True
        if events:
            self.stats.files_synced += 1
            self.stats.lines_synced += sum(
                event.get("Source", "").count("\n") + 1
                for event in events
                if "Source" in event
            )
        return events

    def port_project(self) -> dict[str, Any]:
        """Start a full port, abandoning any transfer in progress.

        Returns:
            ``{"Project": [...], "Length": <number of chunks>}``
        """
        try:
            result = self.porter.port_project()
        except (ArgonError, OSError) as e:
            logger.error(f"Port failed: {e}")
            self._chunks = []
            return {"Project": [], "Length": 0}

        self._chunks = result.chunks
        self.stats.projects_ported += 1
        return {
            "Project": [event.to_dict() for event in result.project],
            "Length": len(self._chunks),
        }

    def next_chunk(self) -> dict[str, Any]:
        """Hand out the next pending chunk.

        Returns:
            ``{"Chunk": [...], "Length": <chunks still pending>}``; an
            exhausted transfer yields an empty chunk
        """
        if not self._chunks:
            return {"Chunk": [], "Length": 0}

        chunk = self._chunks.pop(0)
        return {
            "Chunk": [event.to_dict() for event in chunk],
            "Length": len(self._chunks),
        }

    def apply_remote(self, operations: Union[str, list]) -> int:
        return self.applier.apply(operations)

    def port_instances(self, payload: Union[str, dict]) -> dict:
        try:
            stats = self.materializer.port_instances(payload)
        except (ArgonError, AttributeError, OSError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed instance payload: {e}")
            return {"files": 0, "folders": 0, "skipped": 0}
        self.stats.projects_ported += 1
        return stats

    def port_scripts(self, scripts: Union[str, list]) -> int:
        try:
            return self.materializer.port_scripts(scripts)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring malformed script payload: {e}")
            return 0

    def port_properties(self, properties: Union[str, dict]) -> int:
        try:
            return self.materializer.port_properties(properties)
        except (ArgonError, AttributeError, OSError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed properties payload: {e}")
            return 0

    def clear_folders(self) -> int:
        try:
            return self.materializer.clear_folders()
        except OSError as e:
            logger.warning(f"Failed to clear folders: {e}")
            return 0

    def millis_since_materialized(self) -> int:
        return self.materializer.millis_since_materialized()
