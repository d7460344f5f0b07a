"""Expansion of serialized object-tree snapshots into a directory layout."""

import json
import logging
import time
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from ..exceptions import ArgonError
from .address import NodeClass
from .paths import PathCodec, split_remote_path
from .suppression import SuppressionSet

logger = logging.getLogger(__name__)

SKIPPED_KEYS = frozenset({"forceSubScript"})
"""Keys the host includes in snapshots that are not objects"""


def parse_key(key: str) -> tuple[str, Optional[NodeClass]]:
    """Split a snapshot key like ``Foo.Script`` into name and script class.

    Keys without a script class suffix name plain containers.
    """
    name, _, class_name = key.rpartition(".")
    if name:
        for node_class in (
            NodeClass.SCRIPT,
            NodeClass.LOCAL_SCRIPT,
            NodeClass.MODULE_SCRIPT,
        ):
            if class_name == node_class.value:
                return name, node_class
    return key, None


def format_properties(properties: Any) -> str:
    """Pretty-print a property bag: one top-level key per line.

    Nested values stay on the key's line.
    """
    if not isinstance(properties, dict) or not properties:
        return json.dumps(properties)

    lines = [
        f"{json.dumps(key)}: {json.dumps(value, separators=(', ', ': '))}"
        for key, value in properties.items()
    ]
    return "{\n\t" + ",\n\t".join(lines) + "\n}"


class TreeMaterializer:
    """Writes host snapshots to disk.

    Every path is registered in the suppression set before it is created,
    so the watcher does not report the engine's own writes back to the
    host.
    """

    def __init__(self, codec: PathCodec, suppression: SuppressionSet):
        self.codec = codec
        self.suppression = suppression
        self.last_materialized = time.time()

    def _touch(self) -> None:
        self.last_materialized = time.time()

    def millis_since_materialized(self) -> int:
        return int((time.time() - self.last_materialized) * 1000)

    def _make_dir(self, path: Path, stats: dict) -> None:
        if path.is_dir():
            logger.debug(f"Folder already exists: {path}")
            return
        self.suppression.expect(path)
        try:
            path.mkdir(parents=True)
        except OSError:
            self.suppression.consume(path)
            raise
        stats["folders"] += 1

    def _write_new(self, path: Path, stats: dict) -> None:
        if path.exists():
            return
        self._write(path, "")
        stats["files"] += 1

    def _write(self, path: Path, text: str) -> None:
        self.suppression.expect(path)
        try:
            path.write_text(text, encoding="utf-8")
        except OSError:
            self.suppression.consume(path)
            raise

    def materialize(
        self,
        base_dir: Path,
        tree: Mapping[str, Any],
        stats: Optional[dict] = None,
    ) -> dict:
        """Create files and directories for a snapshot below ``base_dir``.

        Args:
            base_dir: Default-layout directory of the snapshot's top-level keys
            tree: Mapping of ``Name`` or ``Name.<ScriptClass>`` to subtrees
            stats: Counters to accumulate into (used when recursing)

        Returns:
            Dictionary with ``files``, ``folders`` and ``skipped`` counts
        """
        if stats is None:
            stats = {"files": 0, "folders": 0, "skipped": 0}

        for key, subtree in tree.items():
            children = subtree if isinstance(subtree, Mapping) else {}
            name, node_class = parse_key(key)
            default = base_dir / name
            folder = self.codec.resolve_native(default)

            if key in SKIPPED_KEYS or self.codec.is_ignored(default):
                logger.debug(f"Skipping snapshot entry: {folder}")
                stats["skipped"] += 1
                continue

            try:
                if node_class is not None and not children:
                    self._write_new(
                        folder.with_name(
                            self.codec.script_file_name(folder.name, node_class)
                        ),
                        stats,
                    )
                    continue

                self._make_dir(folder, stats)
                if node_class is not None:
                    sentinel = folder / self.codec.sentinel_name(node_class)
                    self._write_new(sentinel, stats)
            except OSError as e:
                logger.warning(f"Failed to materialize {folder}: {e}")
                stats["skipped"] += 1
                continue

            if children:
                self.materialize(default, children, stats)

        self._touch()
        return stats

    def port_instances(self, payload: Union[str, Mapping[str, Any]]) -> dict:
        """Materialize a bulk request from the host.

        The payload is ``{"instances": tree, "mode": false}`` or, with mode
        set, ``{"instances": {slot: [tree, ...]}, "mode": true}`` where each
        slot becomes a directory under the root.
        """
        data = json.loads(payload) if isinstance(payload, str) else payload
        instances = data.get("instances") or {}
        root = self.codec.root_dir
        stats = {"files": 0, "folders": 0, "skipped": 0}

        if data.get("mode"):
            for slot, trees in instances.items():
                if not isinstance(trees, list):
                    logger.warning(f"Skipping slot {slot!r}: expected a list")
                    stats["skipped"] += 1
                    continue
                folder = root / slot
                try:
                    self._make_dir(self.codec.resolve_native(folder), stats)
                except OSError as e:
                    logger.warning(f"Failed to materialize {folder}: {e}")
                    stats["skipped"] += 1
                    continue
                for tree in trees:
                    if isinstance(tree, Mapping):
                        self.materialize(folder, tree, stats)
        else:
            self.materialize(root, instances, stats)

        logger.info(
            f"Materialized {stats['folders']} folder(s) and {stats['files']} file(s)"
        )
        return stats

    def port_scripts(self, scripts: Union[str, list]) -> int:
        """Write script sources sent by the host.

        Each item is ``{"Instance": path, "Type": class, "Source": text}``.
        Missing targets are skipped.

        Returns:
            Number of files written
        """
        items = json.loads(scripts) if isinstance(scripts, str) else scripts
        written = 0

        for item in items:
            try:
                target = self._script_target(item)
            except (ArgonError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed script entry: {e}")
                continue
            if target is None:
                logger.debug(f"No file for script {item.get('Instance')}")
                continue
            try:
                self._write(target, item.get("Source") or "")
            except OSError as e:
                logger.warning(f"Failed to write {target}: {e}")
                continue
            written += 1

        self._touch()
        return written

    def _script_target(self, item: Mapping[str, Any]) -> Optional[Path]:
        segments = split_remote_path(item["Instance"])
        if not segments:
            return None

        extension = self.codec.settings.extension
        plain = self.codec.resolve(segments, extension)
        if plain.is_file():
            return plain

        node_class = NodeClass(item["Type"])
        suffixed = self.codec.resolve(segments, node_class.suffix + extension)
        if suffixed.is_file():
            return suffixed

        sentinel = self.codec.resolve(segments) / self.codec.sentinel_name(node_class)
        if sentinel.is_file():
            return sentinel
        return None

    def port_properties(self, properties: Union[str, Mapping[str, Any]]) -> int:
        """Write property sidecars into existing container directories.

        Returns:
            Number of sidecar files written
        """
        data = json.loads(properties) if isinstance(properties, str) else properties
        written = 0

        for key, bag in data.items():
            segments = split_remote_path(key)
            if not segments:
                logger.debug("Skipping properties of the root folder")
                continue
            folder = self.codec.resolve(segments)
            if not folder.is_dir():
                logger.debug(f"No folder for properties of {key}")
                continue
            sidecar = folder / f"{self.codec.settings.properties}.json"
            try:
                self._write(sidecar, format_properties(bag))
            except OSError as e:
                logger.warning(f"Failed to write {sidecar}: {e}")
                continue
            written += 1

        return written

    def clear_folders(self) -> int:
        """Remove empty directories directly under the root folder."""
        removed = 0
        root = self.codec.root_dir
        if not root.is_dir():
            return 0

        for entry in root.iterdir():
            if entry.is_dir() and next(entry.iterdir(), None) is None:
                self.suppression.expect(entry)
                entry.rmdir()
                removed += 1

        return removed
