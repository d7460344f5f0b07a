"""Object-tree addresses and file name classification."""

from enum import Enum
from typing import Iterable, NamedTuple

from ..config import CODE_EXTENSIONS, SEPARATOR
from ..exceptions import PathResolutionError

VARIANT_MARKERS = (".server", ".client")


class NodeClass(str, Enum):
    """Object classes the file tree can represent."""

    SCRIPT = "Script"
    """Server script (``Name.server.lua``)"""

    LOCAL_SCRIPT = "LocalScript"
    """Client script (``Name.client.lua``)"""

    MODULE_SCRIPT = "ModuleScript"
    """Module script (``Name.lua``)"""

    FOLDER = "Folder"
    STRING_VALUE = "StringValue"
    LOCALIZATION_TABLE = "LocalizationTable"

    @property
    def is_script(self) -> bool:
        return self in _SCRIPT_SUFFIXES

    @property
    def suffix(self) -> str:
        """File name marker for script variants (empty for modules)."""
        return _SCRIPT_SUFFIXES.get(self, "")

    @classmethod
    def from_marker(cls, marker: str) -> "NodeClass":
        """Map a variant marker (``server``, ``.client``, ...) to a script class."""
        marker = marker if marker.startswith(".") else "." + marker
        for node_class, suffix in _SCRIPT_SUFFIXES.items():
            if suffix and suffix == marker:
                return node_class
        return cls.MODULE_SCRIPT


_SCRIPT_SUFFIXES = {
    NodeClass.SCRIPT: ".server",
    NodeClass.LOCAL_SCRIPT: ".client",
    NodeClass.MODULE_SCRIPT: "",
}

NON_CODE_EXTENSIONS = {
    ".txt": NodeClass.STRING_VALUE,
    ".csv": NodeClass.LOCALIZATION_TABLE,
}


class Classified(NamedTuple):
    """Result of classifying a file or directory name."""

    base: str
    """Object name with extension and variant marker removed"""

    node_class: NodeClass
    extension: str


def split_extension(filename: str) -> tuple[str, str]:
    """Split ``Foo.server.lua`` into ``("Foo.server", ".lua")``.

    A leading dot does not start an extension, so ``.source`` has none.
    """
    index = filename.rfind(".")
    if index <= 0:
        return filename, ""
    return filename[:index], filename[index:]


def classify(filename: str) -> Classified:
    """Infer the object name and class represented by a file name.

    Examples:
        >>> classify("Foo.server.lua")
        Classified(base='Foo', node_class=<NodeClass.SCRIPT: 'Script'>, extension='.lua')
        >>> classify("Data.bin").base
        'Data.bin'
    """
    stem, extension = split_extension(filename)

    if extension in CODE_EXTENSIONS:
        for node_class in (NodeClass.SCRIPT, NodeClass.LOCAL_SCRIPT):
            if stem.endswith(node_class.suffix):
                return Classified(
                    stem[: -len(node_class.suffix)], node_class, extension
                )
        return Classified(stem, NodeClass.MODULE_SCRIPT, extension)

    if extension in NON_CODE_EXTENSIONS:
        return Classified(stem, NON_CODE_EXTENSIONS[extension], extension)

    if not extension:
        return Classified(stem, NodeClass.FOLDER, extension)

    return Classified(filename, NodeClass.FOLDER, extension)


def normalize_name(name: str) -> str:
    """Strip trailing ``.server``/``.client`` markers. Idempotent."""
    stripped = True
    while stripped:
        stripped = False
        for marker in VARIANT_MARKERS:
            if name.endswith(marker) and len(name) > len(marker):
                name = name[: -len(marker)]
                stripped = True
    return name


class Address(tuple):
    """Ordered segment names identifying a node in the object tree.

    The empty address is the root. Addresses are only turned into
    separator-joined strings at the transport boundary.
    """

    def __new__(cls, segments: Iterable[str] = ()):
        segments = tuple(segments)
        for segment in segments:
            if not isinstance(segment, str) or not segment:
                raise PathResolutionError(f"Invalid address segment: {segment!r}")
            if SEPARATOR in segment:
                raise PathResolutionError(
                    f"Address segment contains separator: {segment!r}"
                )
        return super().__new__(cls, segments)

    def __repr__(self) -> str:
        return f"Address({self.encode()!r})"

    @classmethod
    def decode(cls, value: str) -> "Address":
        """Parse a separator-joined address string.

        Raises:
            PathResolutionError: If a segment is empty
        """
        if not value:
            return cls()
        return cls(value.split(SEPARATOR))

    def encode(self) -> str:
        return SEPARATOR.join(self)

    @property
    def is_root(self) -> bool:
        return len(self) == 0

    @property
    def name(self) -> str:
        if self.is_root:
            raise PathResolutionError("The root address has no name")
        return self[-1]

    @property
    def parent(self) -> "Address":
        if self.is_root:
            raise PathResolutionError("The root address has no parent")
        return Address(self[:-1])

    def child(self, name: str) -> "Address":
        return Address(self + (name,))

    def startswith(self, prefix: "Address") -> bool:
        return self[: len(prefix)] == tuple(prefix)

    def replace_prefix(self, old: "Address", new: "Address") -> "Address":
        if not self.startswith(old):
            return self
        return Address(tuple(new) + self[len(old) :])

    def normalized(self) -> "Address":
        """Address with variant markers stripped from every segment."""
        return Address(normalize_name(segment) for segment in self)
