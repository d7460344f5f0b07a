"""Project manifest loading and custom path mappings.

The manifest (``<project>.project.json``) describes the object tree and
may relocate parts of it on disk through ``$path`` entries::

    {
        "name": "MyGame",
        "tree": {
            "$className": "DataModel",
            "ReplicatedStorage": {
                "Shared": {"$path": "shared"}
            }
        }
    }

Here the ``shared`` folder at the workspace top holds the contents of
``ReplicatedStorage.Shared`` instead of ``src/ReplicatedStorage/Shared``.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..exceptions import ManifestError

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Argon"
"""Project name written by auto setup; never used as a title"""

SERVICES = (
    "Workspace",
    "Lighting",
    "ReplicatedFirst",
    "ReplicatedStorage",
    "ServerScriptService",
    "ServerStorage",
    "StarterGui",
    "StarterPack",
    "StarterPlayer",
    "SoundService",
)


@dataclass(frozen=True)
class CustomPathMapping:
    """One ``$path`` override.

    Both prefixes are segment tuples relative to the workspace. The
    address prefix starts with the root folder name, so its default
    location on disk is the same tuple.
    """

    fs_prefix: tuple[str, ...]
    """Where the subtree actually lives on disk"""

    address_prefix: tuple[str, ...]
    """Where the subtree sits in the object tree"""

    @property
    def is_root_remap(self) -> bool:
        """Whether this override relocates the whole root folder."""
        return len(self.fs_prefix) == 1 and self.fs_prefix == self.address_prefix[:1]


@dataclass
class ProjectManifest:
    """Parsed project manifest."""

    name: Optional[str] = None
    tree: dict[str, Any] = field(default_factory=dict)
    root_folder: Optional[str] = None
    """Optional root folder override declared by the manifest"""

    extension: Optional[str] = None
    """Optional script extension override declared by the manifest"""

    path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Any, path: Optional[Path] = None) -> "ProjectManifest":
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a JSON object", str(path))

        tree = data.get("tree") or {}
        if not isinstance(tree, dict):
            raise ManifestError("Manifest tree must be an object", str(path))

        return cls(
            name=data.get("name"),
            tree=tree,
            root_folder=data.get("rootFolder"),
            extension=data.get("extension"),
            path=path,
        )

    @classmethod
    def from_text(cls, text: str, path: Optional[Path] = None) -> "ProjectManifest":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid manifest JSON: {e}", str(path)) from e
        return cls.from_dict(data, path)

    @classmethod
    def load(cls, path: Path) -> "ProjectManifest":
        """Load a manifest file.

        Raises:
            ManifestError: If the file cannot be read or parsed
        """
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestError(f"Failed to read manifest: {e}", str(path)) from e
        return cls.from_text(text, path)

    @property
    def title(self) -> Optional[str]:
        """Project name suitable for display, if one was declared."""
        if self.name and self.name != PLACEHOLDER_NAME:
            return self.name
        return None

    def mappings(self, root_folder: str) -> list[CustomPathMapping]:
        """Collect ``$path`` overrides that differ from the default layout.

        At most one override may relocate the root folder itself; later
        ones are ignored with a warning.
        """
        result: list[CustomPathMapping] = []
        root_remapped = False

        def walk(node: dict[str, Any], address: tuple[str, ...]) -> None:
            nonlocal root_remapped

            for key, value in node.items():
                if key == "$path":
                    fs_prefix = _split_declared_path(value)
                    if not fs_prefix or fs_prefix == address:
                        continue

                    mapping = CustomPathMapping(fs_prefix, address)
                    if mapping.is_root_remap:
                        if root_remapped:
                            logger.warning(
                                f"Ignoring second root remap to {'/'.join(address)}"
                            )
                            continue
                        root_remapped = True

                    result.append(mapping)
                elif isinstance(value, dict) and not key.startswith("$"):
                    walk(value, address + (key,))

        walk(self.tree, (root_folder,))
        return result


def _split_declared_path(value: Any) -> tuple[str, ...]:
    if not isinstance(value, str):
        return ()
    parts = value.replace("\\", "/").split("/")
    return tuple(p for p in parts if p and p != ".")


def default_manifest(root_folder: str) -> dict[str, Any]:
    """Manifest written by auto setup: every service at its default path."""
    tree: dict[str, Any] = {"$className": "DataModel"}
    for service in SERVICES:
        tree[service] = {"$path": f"{root_folder}/{service}"}
    return {"name": PLACEHOLDER_NAME, "tree": tree}


def write_default_manifest(path: Path, root_folder: str) -> None:
    """Write the default manifest with tab indentation."""
    path.write_text(
        json.dumps(default_manifest(root_folder), indent="\t"), encoding="utf-8"
    )
    logger.info(f"Created project manifest: {path}")
