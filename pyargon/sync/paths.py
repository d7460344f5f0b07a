"""Conversion between native filesystem paths and object-tree addresses."""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..config import Settings
from ..exceptions import PathResolutionError
from .address import Address, NodeClass
from .manifest import CustomPathMapping, ProjectManifest

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def split_remote_path(value: str) -> tuple[str, ...]:
    """Split a root-relative path sent by the host into segments.

    The host joins segments with whichever separator it was told at
    handshake time, so both slash styles are accepted.
    """
    parts = value.replace("\\", "/").split("/")
    return tuple(p for p in parts if p and p != ".")


class PathCodec:
    """Maps native paths inside a workspace to addresses and back.

    The synchronized root is ``<workspace>/<root_folder>``; its direct
    children are the top-level services. Custom ``$path`` overrides from
    the project manifest relocate subtrees and are applied longest prefix
    first in both directions.

    Examples:
        >>> codec = PathCodec(Path("/game"), Settings())
        >>> codec.parent_address_of("/game/src/ReplicatedStorage/Util")
        Address('ReplicatedStorage|Util')
        >>> codec.parent_address_of("/elsewhere") is None
        True
    """

    def __init__(self, workspace: Path, settings: Settings):
        self.workspace = Path(os.path.abspath(workspace))
        self.settings = settings
        self.mappings: list[CustomPathMapping] = []
        self.ignored_prefix: Optional[tuple[str, ...]] = None
        self._source_override: Optional[str] = None

    @property
    def root_dir(self) -> Path:
        return self.workspace / self.settings.root_folder

    @property
    def use_custom_paths(self) -> bool:
        return bool(self.mappings)

    def load_manifest(self, manifest: ProjectManifest) -> None:
        """Replace the override table with the manifest's ``$path`` entries."""
        self.mappings = manifest.mappings(self.settings.root_folder)
        self.ignored_prefix = None

        for mapping in self.mappings:
            if mapping.is_root_remap:
                self.ignored_prefix = mapping.address_prefix[:-1]

        logger.debug(f"Loaded {len(self.mappings)} custom path mapping(s)")

    def clear_mappings(self) -> None:
        self.mappings = []
        self.ignored_prefix = None

    def _relative_segments(self, native_path: PathLike) -> Optional[tuple[str, ...]]:
        path = Path(os.path.abspath(native_path))
        try:
            return path.relative_to(self.workspace).parts
        except ValueError:
            return None

    def _to_object_space(self, segments: tuple[str, ...]) -> tuple[str, ...]:
        best: Optional[CustomPathMapping] = None
        for mapping in self.mappings:
            prefix = mapping.fs_prefix
            if segments[: len(prefix)] == prefix:
                if best is None or len(prefix) > len(best.fs_prefix):
                    best = mapping
        if best is None:
            return segments
        return best.address_prefix + segments[len(best.fs_prefix) :]

    def _to_fs_space(self, segments: tuple[str, ...]) -> tuple[str, ...]:
        best: Optional[CustomPathMapping] = None
        for mapping in self.mappings:
            prefix = mapping.address_prefix
            if segments[: len(prefix)] == prefix:
                if best is None or len(prefix) > len(best.address_prefix):
                    best = mapping
        if best is None:
            return segments
        return best.fs_prefix + segments[len(best.address_prefix) :]

    def _strip_root(self, segments: tuple[str, ...]) -> Optional[Address]:
        if not segments or segments[0] != self.settings.root_folder:
            return None
        try:
            return Address(segments[1:])
        except PathResolutionError as e:
            logger.debug(f"Path has no address: {e}")
            return None

    def parent_address_of(self, native_dir: PathLike) -> Optional[Address]:
        """Address of the node a native directory represents.

        This is the parent address for every entry inside that directory.

        Returns:
            The address (empty for the root folder itself), or None when
            the directory lies outside the synchronized root or one of its
            names cannot be an address segment
        """
        segments = self._relative_segments(native_dir)
        if segments is None:
            return None
        return self._strip_root(self._to_object_space(segments))

    def split_path(self, native_path: PathLike) -> Optional[tuple[Address, str]]:
        """Split a native path into its parent address and entry name.

        When the path itself is the target of an override, the name is the
        declared object name rather than the folder name on disk.
        """
        segments = self._relative_segments(native_path)
        if not segments:
            return None

        mapped = self._to_object_space(segments)
        address = self._strip_root(mapped[:-1])
        if address is None:
            return None

        return address, mapped[-1]

    def resolve(self, segments: tuple[str, ...], suffix: str = "") -> Path:
        """Native path for root-relative segments, overrides applied.

        Args:
            segments: Segments below the root folder
            suffix: Text appended to the last segment (e.g. ``.server.lua``)
        """
        full = self._to_fs_space((self.settings.root_folder,) + tuple(segments))
        path = self.workspace.joinpath(*full)
        if suffix:
            path = path.with_name(path.name + suffix)
        return path

    def resolve_native(self, native_path: PathLike) -> Path:
        """Apply overrides to a path built from the default layout."""
        segments = self._relative_segments(native_path)
        if segments is None:
            return Path(native_path)
        return self.workspace.joinpath(*self._to_fs_space(segments))

    def is_ignored(self, native_path: PathLike) -> bool:
        """Whether a default-layout path is shadowed by a root remap.

        When the root folder holds a single service, every other default
        location below it would land inside that service, so those paths
        are skipped. Paths an override relocates are never ignored.
        """
        if self.ignored_prefix is None:
            return False
        segments = self._relative_segments(native_path)
        if segments is None:
            return False
        if segments[: len(self.ignored_prefix)] != self.ignored_prefix:
            return False
        return not any(
            segments[: len(m.address_prefix)] == m.address_prefix
            for m in self.mappings
        )

    @property
    def source_name(self) -> str:
        """Current sentinel base name."""
        return self._source_override or self.settings.source

    @contextmanager
    def variant_naming(self, source_name: str) -> Iterator[None]:
        """Temporarily use another sentinel base name (e.g. ``init``)."""
        previous = self._source_override
        self._source_override = source_name
        try:
            yield
        finally:
            self._source_override = previous

    def is_source_file(self, name: str) -> bool:
        """Whether a base name (extension removed) is a sentinel file."""
        source = self.source_name
        return name in (source, source + ".server", source + ".client")

    def sentinel_name(self, node_class: NodeClass) -> str:
        """File name of the sentinel holding a container's own code."""
        return self.source_name + node_class.suffix + self.settings.extension

    def script_file_name(self, name: str, node_class: NodeClass) -> str:
        return name + node_class.suffix + self.settings.extension

    def verify(self, parent: Optional[Address], name: str) -> bool:
        """Return True when an entry must be dropped.

        Entries outside the root, entries directly in the root folder and
        the reserved fixed children of services are never synchronized.
        """
        if parent is None or parent.is_root:
            return True

        reserved = self.settings.reserved_children.get(parent.encode(), [])
        if name in reserved:
            return True
        if reserved and self.is_source_file(name):
            return True
        return False
