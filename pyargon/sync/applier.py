"""Application of host-originated structural changes onto the local tree."""

import json
import logging
import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from ..exceptions import ArgonError, StaleTargetError
from .address import NodeClass
from .paths import PathCodec, split_remote_path
from .suppression import SuppressionSet

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    """Operations the host can request on the local tree."""

    SYNC = "sync"
    """Overwrite the content of an existing script file"""

    CHANGE_PATH = "changePath"
    """Move a file or directory to a new location"""

    REMOVE = "remove"
    """Delete a file or directory, collapsing an emptied container"""

    CONVERT = "convert"
    """Turn a single script file into a container, or back"""


class TwoWaySyncApplier:
    """Applies two-way sync operations in arrival order.

    Targets that no longer exist are treated as already converged: the
    two views are allowed to be briefly out of date between polls. Every
    path the applier touches is registered in the suppression set so the
    watcher does not send the change straight back.
    """

    def __init__(self, codec: PathCodec, suppression: SuppressionSet):
        self.codec = codec
        self.suppression = suppression

    @property
    def extension(self) -> str:
        return self.codec.settings.extension

    def apply(self, operations: Union[str, list]) -> int:
        """Apply a batch of operations.

        Args:
            operations: List of operation records, or its JSON text

        Returns:
            Number of operations applied (skipped ones are not counted)
        """
        if isinstance(operations, str):
            try:
                operations = json.loads(operations)
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring malformed two-way sync payload: {e}")
                return 0

        if not isinstance(operations, list):
            logger.warning("Two-way sync payload must be a list")
            return 0

        applied = 0
        for operation in operations:
            try:
                if self.apply_one(operation):
                    applied += 1
            except StaleTargetError as e:
                logger.debug(f"Already converged: {e}")
            except (ArgonError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed two-way sync operation: {e}")
            except OSError as e:
                logger.warning(f"Two-way sync operation failed: {e}")

        return applied

    def apply_one(self, operation: Mapping[str, Any]) -> bool:
        """Apply a single operation.

        Returns:
            True if the filesystem was changed

        Raises:
            ValueError: If the action is unknown
            KeyError: If a required field is missing
        """
        action = SyncAction(operation["Action"])

        if action == SyncAction.SYNC:
            return self._sync(operation)
        if action == SyncAction.CHANGE_PATH:
            return self._change_path(operation)
        if action == SyncAction.REMOVE:
            return self._remove(operation)
        return self._convert(operation)

    def _path(self, value: str, suffix: str = "") -> Path:
        return self.codec.resolve(split_remote_path(value), suffix)

    def _move(self, source: Path, destination: Path) -> None:
        self.suppression.expect(source, destination)
        os.replace(source, destination)

    def _make_parents(self, path: Path) -> None:
        missing = []
        parent = path.parent
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent
        self.suppression.expect_all(missing)
        path.parent.mkdir(parents=True, exist_ok=True)

    def _sync(self, operation: Mapping[str, Any]) -> bool:
        node_type = operation.get("Type")
        if node_type:
            path = self._path(operation["Path"]) / self.codec.sentinel_name(
                NodeClass(node_type)
            )
        else:
            path = self._path(operation["Path"], self.extension)

        if not path.is_file():
            raise StaleTargetError("No file to sync", str(path))

        self.suppression.expect(path)
        path.write_text(operation.get("Source") or "", encoding="utf-8")
        return True

    def _change_path(self, operation: Mapping[str, Any]) -> bool:
        if operation.get("Children"):
            old = self._path(operation["OldPath"])
            new = self._path(operation["NewPath"])
            if not old.exists():
                raise StaleTargetError("No directory to move", str(old))
            self._make_parents(new)
            self._move(old, new)
            return True

        old = self._path(operation["OldPath"], self.extension)
        new = self._path(operation["NewPath"], self.extension)
        self._make_parents(new)

        if old.exists():
            self._move(old, new)
            return True

        source = operation.get("Source")
        if source:
            # created on the host side, nothing to move
            self.suppression.expect(new)
            new.write_text(source, encoding="utf-8")
            return True

        raise StaleTargetError("No file to move", str(old))

    def _remove(self, operation: Mapping[str, Any]) -> bool:
        if not operation.get("Type"):
            path = self._path(operation["Path"])
            if path.is_dir():
                self.suppression.expect(path)
                shutil.rmtree(path)
                return True
            if path.exists():
                self.suppression.expect(path)
                path.unlink()
                return True
            raise StaleTargetError("Nothing to remove", str(path))

        path = self._path(operation["Path"], self.extension)
        changed = False
        if path.is_file():
            self.suppression.expect(path)
            path.unlink()
            changed = True

        if operation.get("Children"):
            logger.debug(
                f"Keeping {path.parent}: the host reports "
                f"{operation['Children']} remaining child(ren)"
            )
            return changed
        return self._collapse(path.parent) or changed

    def _collapse(self, container: Path) -> bool:
        """Fold a container holding only its sentinel back into a single file."""
        if container == self.codec.root_dir or not container.is_dir():
            return False

        entries = list(container.iterdir())
        if len(entries) != 1 or not entries[0].is_file():
            return False

        sentinel = entries[0]
        node_class = self._sentinel_class(sentinel.name)
        if node_class is None:
            return False

        target = container.with_name(
            self.codec.script_file_name(container.name, node_class)
        )
        if target.exists():
            logger.warning(f"Cannot collapse {container}: {target} already exists")
            return False

        self._move(sentinel, target)
        self.suppression.expect(container)
        container.rmdir()
        logger.debug(f"Collapsed {container} into {target.name}")
        return True

    def _sentinel_class(self, filename: str) -> Optional[NodeClass]:
        for node_class in (
            NodeClass.SCRIPT,
            NodeClass.LOCAL_SCRIPT,
            NodeClass.MODULE_SCRIPT,
        ):
            if filename == self.codec.sentinel_name(node_class):
                return node_class
        return None

    def _convert(self, operation: Mapping[str, Any]) -> bool:
        node_class = NodeClass(operation["Type"])
        sentinel_name = self.codec.sentinel_name(node_class)

        if not operation.get("Undo"):
            container = self._path(operation["NewPath"])
            old = self._path(operation["OldPath"], self.extension)
            if not container.is_dir():
                self._make_parents(container)
                self.suppression.expect(container)
                container.mkdir()
            if not old.is_file():
                raise StaleTargetError("No file to convert", str(old))
            self._move(old, container / sentinel_name)
            return True

        container = self._path(operation["OldPath"])
        if not container.is_dir():
            raise StaleTargetError("No container to convert back", str(container))

        sentinel = container / sentinel_name
        if sentinel.is_file():
            self._move(sentinel, self._path(operation["NewPath"], self.extension))

        try:
            self.suppression.expect(container)
            container.rmdir()
        except OSError as e:
            self.suppression.consume(container)
            logger.warning(f"Container not removed after convert: {e}")
        return True
