"""Full-tree port: synthesize the events for a whole project and chunk them."""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..exceptions import ArgonError
from ..utils import (
    CHUNK_BUDGET,
    PACKAGE_MANIFEST,
    PACKAGES_DIR,
    PACKAGES_INDEX_DIR,
    PACKAGES_SOURCE_NAME,
    serialized_size,
)
from .address import Address, classify, split_extension
from .events import ChangeEvent, Create, EventFactory, EventQueue, Update
from .paths import PathCodec

logger = logging.getLogger(__name__)


@dataclass
class PortResult:
    """Outcome of a full port."""

    project: list[ChangeEvent] = field(default_factory=list)
    """Structural events (creates and property writes), sent first"""

    chunks: list[list[ChangeEvent]] = field(default_factory=list)
    """Source updates sliced into size-bounded chunks"""

    @property
    def update_count(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


def chunk_events(
    events: list[ChangeEvent], budget: int = CHUNK_BUDGET
) -> list[list[ChangeEvent]]:
    """Slice events into chunks whose serialized JSON array stays under budget.

    Events are never split. An event that alone exceeds the budget becomes
    its own chunk. Concatenating the chunks yields the input.

    Examples:
        >>> chunk_events([])
        []
    """
    chunks: list[list[ChangeEvent]] = []
    current: list[ChangeEvent] = []
    size = 2  # enclosing brackets

    for event in events:
        event_size = serialized_size(event.to_dict())
        added = event_size + (1 if current else 0)

        if current and size + added >= budget:
            chunks.append(current)
            current = []
            size = 2
            added = event_size

        if not current and size + added >= budget:
            logger.warning(
                f"Event for {event.target!r} exceeds the chunk budget "
                f"({event_size} bytes), sending it alone"
            )

        current.append(event)
        size += added

    if current:
        chunks.append(current)

    return chunks


def reorder_sentinels(events: list[ChangeEvent]) -> list[ChangeEvent]:
    """Move each container-replacing Create after its container's descendants.

    The host must see the children before it collapses the container into
    the script, so every Create with ``delete_self`` is moved to directly
    after the last event targeting a node below that container. Other
    events keep their relative order.
    """
    result = list(events)
    sentinels = [e for e in result if isinstance(e, Create) and e.delete_self]

    for sentinel in sentinels:
        index = next(i for i, e in enumerate(result) if e is sentinel)
        container = sentinel.address
        last = None

        for i, event in enumerate(result):
            if event is sentinel:
                continue
            target = event.target
            if (
                target is not None
                and len(target) > len(container)
                and target.startswith(container)
            ):
                last = i

        if last is not None and last > index:
            result.insert(last, result.pop(index))

    return result


class FullTreePorter:
    """Walks the local tree and produces the events a live watcher would.

    The session queue is cleared before and after the walk, so synthetic
    and live events never mix.
    """

    def __init__(
        self,
        codec: PathCodec,
        factory: EventFactory,
        queue: EventQueue,
        budget: int = CHUNK_BUDGET,
    ):
        self.codec = codec
        self.factory = factory
        self.queue = queue
        self.budget = budget
        self._updates: list[ChangeEvent] = []

    def port_project(self) -> PortResult:
        """Synthesize the full event sequence for the project.

        Returns:
            PortResult with structural events and chunked source updates
        """
        self.queue.clear()
        self._updates = []

        try:
            for entry in self._top_level_dirs():
                self._port_top_level(entry)

            project = reorder_sentinels(self.queue.drain())
            chunks = chunk_events(self._updates, self.budget)
        finally:
            self.queue.clear()
            self._updates = []

        result = PortResult(project=project, chunks=chunks)
        logger.info(
            f"Ported {len(project)} structural event(s) and "
            f"{result.update_count} source(s) in {len(chunks)} chunk(s)"
        )
        return result

    def _top_level_dirs(self) -> list[Path]:
        workspace = self.codec.workspace
        if not workspace.is_dir():
            return []

        custom_roots = {
            m.fs_prefix[0] for m in self.codec.mappings if len(m.fs_prefix) == 1
        }
        return [
            entry
            for entry in sorted(workspace.iterdir())
            if entry.is_dir()
            and (
                entry.name == self.codec.settings.root_folder
                or entry.name in custom_roots
            )
        ]

    def _port_top_level(self, directory: Path) -> None:
        if directory.name != self.codec.settings.root_folder:
            self._port_create(directory)

        if directory.name == PACKAGES_DIR:
            self._port_packages(directory)
        else:
            self._walk(directory)

    def _walk(self, directory: Path, content_root: tuple[str, ...] = ()) -> None:
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.warning(f"Cannot read {directory}: {e}")
            return

        properties_name = f"{self.codec.settings.properties}.json"

        for entry in entries:
            if entry.name == properties_name:
                self._port_properties(entry)
                continue

            self._port_create(entry, content_root)

            if entry.is_dir():
                self._walk(entry, content_root)
            else:
                self._port_save(entry, content_root)

    def _locate(
        self, path: Path, content_root: tuple[str, ...] = ()
    ) -> Optional[tuple[Address, str]]:
        located = self.codec.split_path(path)
        if located is None:
            return None

        parent, name = located
        base, extension = split_extension(name)
        if extension == ".json" or self.codec.verify(parent, base):
            return None

        if content_root:
            parent = _strip_content_root(parent, content_root)
        return parent, name

    def _port_create(self, path: Path, content_root: tuple[str, ...] = ()) -> None:
        try:
            located = self._locate(path, content_root)
            if located is not None:
                self.factory.create(*located)
        except ArgonError as e:
            logger.warning(f"Skipping {path}: {e}")

    def _port_save(self, path: Path, content_root: tuple[str, ...] = ()) -> None:
        try:
            located = self._locate(path, content_root)
            if located is None:
                return
            parent, name = located
            text = path.read_text(encoding="utf-8", errors="replace")
        except (ArgonError, OSError) as e:
            logger.warning(f"Skipping source of {path}: {e}")
            return

        base, _ = split_extension(name)
        update: Optional[Update]
        if self.codec.is_source_file(base):
            if len(parent) < 2:
                return
            update = self.factory.port_source(parent, text)
        else:
            update = self.factory.port_source(parent.child(classify(name).base), text)

        if update is not None:
            self._updates.append(update)

    def _port_properties(self, path: Path) -> None:
        parent = self.codec.parent_address_of(path.parent)
        if parent is None or parent.is_root:
            return
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot read {path}: {e}")
            return
        self.factory.set_properties(parent, text)

    def _port_packages(self, directory: Path) -> None:
        """Port a dependency folder.

        Loose files at the top are package links; each entry of the index
        holds one dependency whose content root is mounted in place of the
        package folder.
        """
        with self.codec.variant_naming(PACKAGES_SOURCE_NAME):
            for entry in sorted(directory.iterdir()):
                self._port_create(entry)
                if entry.is_file():
                    self._port_save(entry)

            index = directory / PACKAGES_INDEX_DIR
            if not index.is_dir():
                return

            for entry in sorted(index.iterdir()):
                if entry.is_dir():
                    self._port_dependency(entry)

    def _port_dependency(self, entry: Path) -> None:
        name = entry.name
        start = name.find("_") + 1
        end = name.rfind("@")
        if end <= start:
            logger.warning(f"Unexpected dependency folder name: {name}")
            return

        package_dir = entry / name[start:end]
        self._port_create(entry)
        if not package_dir.is_dir():
            return
        self._port_create(package_dir)

        content_root = _read_content_root(package_dir)
        if content_root is None:
            logger.warning(f"No content root for dependency {name}")
            return

        self._walk(package_dir.joinpath(*content_root), content_root)


def _strip_content_root(parent: Address, content_root: tuple[str, ...]) -> Address:
    """Remove the last occurrence of the content root segments from an address."""
    width = len(content_root)
    for i in range(len(parent) - width, -1, -1):
        if tuple(parent[i : i + width]) == content_root:
            return Address(parent[:i] + parent[i + width :])
    return parent


def _read_content_root(package_dir: Path) -> Optional[tuple[str, ...]]:
    if (package_dir / "src").is_dir():
        return ("src",)

    manifest = package_dir / PACKAGE_MANIFEST
    try:
        with open(manifest, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.debug(f"Cannot read {manifest}: {e}")
        return None

    value = data.get("content_root") or data.get("package", {}).get("content_root")
    if not isinstance(value, str):
        return None

    segments = tuple(p for p in value.replace("\\", "/").split("/") if p and p != ".")
    if not segments or not package_dir.joinpath(*segments).is_dir():
        return None
    return segments
