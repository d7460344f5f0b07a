"""Translation of raw filesystem notifications into change events."""

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from watchdog.utils.dirsnapshot import (
    DirectorySnapshot,
    DirectorySnapshotDiff,
    EmptyDirectorySnapshot,
)

from ..exceptions import ArgonError
from .address import Address, classify, split_extension
from .events import EventFactory
from .manifest import ProjectManifest
from .paths import PathCodec
from .suppression import SuppressionSet

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Snapshot = Union[DirectorySnapshot, EmptyDirectorySnapshot]


class LocalWatcherAdapter:
    """Receives create/save/delete/rename notifications and queues events.

    Notifications for paths the engine itself just touched are swallowed
    through the suppression set. No callback ever raises: a notification
    that cannot be mapped is dropped and logged.
    """

    def __init__(
        self,
        codec: PathCodec,
        factory: EventFactory,
        suppression: SuppressionSet,
        title_fallback: Optional[str] = None,
    ):
        self.codec = codec
        self.factory = factory
        self.suppression = suppression
        self.title_fallback = title_fallback or codec.workspace.name
        self._subscriptions: list[Callable[[], None]] = []

    def subscribe(self, dispose: Callable[[], None]) -> None:
        """Register a callback that detaches a notification source."""
        self._subscriptions.append(dispose)

    def dispose(self) -> None:
        """Detach every notification source."""
        for dispose in self._subscriptions:
            try:
                dispose()
            except Exception as e:
                logger.warning(f"Failed to dispose watcher subscription: {e}")
        self._subscriptions.clear()

    def _locate(self, path: PathLike) -> Optional[tuple[Address, str, str, str]]:
        """Resolve a path to (parent, file name, base name, extension)."""
        located = self.codec.split_path(path)
        if located is None:
            return None

        parent, name = located
        base, extension = split_extension(name)
        if self.codec.verify(parent, base) or extension == ".json":
            return None
        return parent, name, base, extension

    def _is_manifest(self, path: PathLike) -> bool:
        return Path(path) == self.codec.workspace / self.codec.settings.manifest_name

    def on_create(self, paths: Iterable[PathLike]) -> set[Path]:
        """Queue creates for new paths.

        Returns:
            Paths whose creation was the engine's own write
        """
        echoes: set[Path] = set()
        for path in paths:
            if self.suppression.consume(path):
                echoes.add(Path(path))
                continue
            try:
                located = self._locate(path)
                if located is None:
                    continue
                parent, name, _, _ = located
                self.factory.create(parent, name)
            except (ArgonError, OSError) as e:
                logger.warning(f"Ignoring create of {path}: {e}")
        return echoes

    def on_save(self, path: PathLike, text: str) -> None:
        if self.suppression.consume(path):
            return
        try:
            self._handle_save(Path(path), text)
        except (ArgonError, OSError) as e:
            logger.warning(f"Ignoring save of {path}: {e}")

    def _handle_save(self, path: Path, text: str) -> None:
        if self._is_manifest(path):
            manifest = ProjectManifest.from_text(text, path)
            self.codec.load_manifest(manifest)
            self.factory.set_title(manifest.title or self.title_fallback)
            return

        located = self.codec.split_path(path)
        if located is None:
            return
        parent, name = located
        base, extension = split_extension(name)

        if extension == ".json":
            if base == self.codec.settings.properties and not parent.is_root:
                # the sidecar describes the directory that contains it
                self.factory.set_properties(parent, text)
            return

        if self.codec.verify(parent, base):
            return

        if self.codec.is_source_file(base):
            if len(parent) > 1:
                self.factory.update(parent, text)
        else:
            self.factory.update(parent.child(classify(name).base), text)

    def on_delete(self, paths: Iterable[PathLike]) -> None:
        for path in paths:
            if self.suppression.consume(path):
                continue
            try:
                located = self._locate(path)
                if located is None:
                    continue
                parent, name, base, _ = located

                if self.codec.is_source_file(base):
                    if len(parent) > 1:
                        # removing the sentinel removes the whole container
                        self.factory.remove(parent)
                        container = Path(path).parent
                        if container.is_dir():
                            self.suppression.expect(container)
                            shutil.rmtree(container)
                else:
                    self.factory.remove(parent.child(classify(name).base))
            except (ArgonError, OSError) as e:
                logger.warning(f"Ignoring delete of {path}: {e}")

    def on_rename(self, pairs: Iterable[tuple[PathLike, PathLike]]) -> None:
        for old_path, new_path in pairs:
            # the engine registers both ends of its own moves
            echoes = [
                self.suppression.consume(old_path),
                self.suppression.consume(new_path),
            ]
            if any(echoes):
                continue
            try:
                self._handle_rename(Path(old_path), Path(new_path))
            except (ArgonError, OSError) as e:
                logger.warning(f"Ignoring rename {old_path} -> {new_path}: {e}")

    def _handle_rename(self, old_path: Path, new_path: Path) -> None:
        is_dir = new_path.is_dir()
        old = self._locate(old_path)
        new = self._locate(new_path)
        if old is None or new is None:
            return

        old_parent, old_name, old_base, old_ext = old
        new_parent, new_name, new_base, new_ext = new

        if self.codec.is_source_file(old_base) or self.codec.is_source_file(new_base):
            if len(old_parent) < 2 or len(new_parent) < 2:
                return

        old_classified = classify(old_name)
        new_classified = classify(new_name)
        old_address = old_parent.child(old_classified.base)

        if old_base != new_base:
            if new_classified.node_class.is_script:
                if old_classified.node_class == new_classified.node_class:
                    self.factory.rename(old_address, new_classified.base)
                else:
                    self.factory.change_type(
                        old_address, new_classified.node_class, new_classified.base
                    )
            else:
                self.factory.rename(old_address, new_classified.base)
        elif old_ext != new_ext:
            if is_dir:
                self.factory.rename(old_address, new_classified.base)
        elif self.codec.is_source_file(new_base):
            if not is_dir:
                # a sentinel cannot leave its container; move it back
                self.suppression.expect(new_path, old_path)
                os.replace(new_path, old_path)
        else:
            self.factory.change_parent(old_address, new_parent)


class PollingWatcher:
    """Notification source that diffs directory snapshots on demand.

    Each :meth:`poll` compares the roots with the previous snapshot using
    watchdog's snapshot diff, the machinery behind its polling observer,
    and reports the changes as one round. Renames are matched by inode.
    Only the top-most path of a moved or deleted subtree is reported.
    """

    def __init__(self, adapter: LocalWatcherAdapter, roots: Iterable[Path]):
        self.adapter = adapter
        self.roots = list(roots)
        self._closed = False
        self._snapshots = self._take_snapshots()
        adapter.subscribe(self.close)

    def close(self) -> None:
        self._closed = True

    def _take_snapshots(self) -> dict[Path, Snapshot]:
        snapshots: dict[Path, Snapshot] = {}
        for root in self.roots:
            try:
                snapshots[root] = DirectorySnapshot(str(root), recursive=True)
            except OSError:
                snapshots[root] = EmptyDirectorySnapshot()
        return snapshots

    def poll(self) -> None:
        """Compare the roots against the previous snapshot and notify."""
        if self._closed:
            return

        previous = self._snapshots
        current = self._take_snapshots()
        self._snapshots = current

        moved: list[tuple[Path, Path]] = []
        deleted: set[Path] = set()
        created: list[Path] = []
        filled: set[Path] = set()
        modified: list[Path] = []

        for root in self.roots:
            snapshot = current[root]
            diff = DirectorySnapshotDiff(previous[root], snapshot)
            present = snapshot.paths
            changed = set(diff.files_modified)

            for old, new in [*diff.files_moved, *diff.dirs_moved]:
                moved.append((Path(old), Path(new)))
                if old in changed:
                    modified.append(Path(new))
            deleted.update(Path(p) for p in [*diff.files_deleted, *diff.dirs_deleted])
            created += [Path(p) for p in [*diff.dirs_created, *diff.files_created]]
            filled.update(Path(p) for p in diff.files_created if snapshot.size(p))
            modified += [Path(p) for p in changed if p in present]

        top_moved: list[tuple[Path, Path]] = []
        for old, new in sorted(moved, key=lambda pair: len(pair[0].parts)):
            if not any(
                old.is_relative_to(o) and new.is_relative_to(n) for o, n in top_moved
            ):
                top_moved.append((old, new))

        top_deleted = [
            p
            for p in sorted(deleted)
            if not any(p != d and p.is_relative_to(d) for d in deleted)
        ]
        created.sort(key=lambda p: (len(p.parts), p))

        with self.adapter.suppression.batch():
            if top_moved:
                self.adapter.on_rename(top_moved)
            if top_deleted:
                self.adapter.on_delete(top_deleted)
            echoes = self.adapter.on_create(created) if created else set()

            # an engine-written file arrives with its content
            for path in created:
                if path in filled and path not in echoes:
                    self._notify_save(path)
            for path in sorted(modified):
                self._notify_save(path)

    def _notify_save(self, path: Path) -> None:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"Could not read {path}: {e}")
            return
        self.adapter.on_save(path, text)
