"""Change events and the queue that exposes local edits to the host."""

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Iterator, Optional, Union

from ..exceptions import PathResolutionError
from .address import Address, NodeClass, classify, normalize_name
from .paths import PathCodec

logger = logging.getLogger(__name__)

AddressLike = Union[Address, str]


@dataclass(frozen=True)
class ChangeEvent:
    """Base class for immutable change records."""

    action: ClassVar[str] = ""

    @property
    def target(self) -> Optional[Address]:
        """Address this event acts on, if any."""
        return None

    def to_dict(self) -> dict[str, Any]:
        """Wire record sent to the host."""
        return {"Action": self.action}


@dataclass(frozen=True)
class Create(ChangeEvent):
    address: Address
    node_class: NodeClass
    delete_self: bool = False
    """The node replaces an existing container of the same name"""

    action: ClassVar[str] = "create"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        data = {
            "Action": self.action,
            "Type": self.node_class.value,
            "Name": self.address.name,
            "Parent": self.address.parent.encode(),
        }
        if self.delete_self:
            data["Delete"] = True
        return data


@dataclass(frozen=True)
class Update(ChangeEvent):
    address: Address
    text: str

    action: ClassVar[str] = "update"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        return {
            "Action": self.action,
            "Object": self.address.encode(),
            "Source": self.text,
        }


@dataclass(frozen=True)
class Delete(ChangeEvent):
    address: Address

    action: ClassVar[str] = "delete"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        return {"Action": self.action, "Object": self.address.encode()}


@dataclass(frozen=True)
class Rename(ChangeEvent):
    address: Address
    new_name: str

    action: ClassVar[str] = "rename"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        return {
            "Action": self.action,
            "Object": self.address.encode(),
            "Name": self.new_name,
        }


@dataclass(frozen=True)
class ChangeType(ChangeEvent):
    address: Address
    new_class: NodeClass
    new_name: Optional[str] = None

    action: ClassVar[str] = "changeType"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        data = {
            "Action": self.action,
            "Object": self.address.encode(),
            "Type": self.new_class.value,
        }
        if self.new_name:
            data["Name"] = self.new_name
        return data


@dataclass(frozen=True)
class ChangeParent(ChangeEvent):
    address: Address
    new_parent: Address

    action: ClassVar[str] = "changeParent"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        return {
            "Action": self.action,
            "Object": self.address.encode(),
            "Parent": self.new_parent.encode(),
        }


@dataclass(frozen=True)
class SetProperties(ChangeEvent):
    address: Address
    properties: str
    """Raw JSON text of the property bag"""

    action: ClassVar[str] = "setProperties"

    @property
    def target(self) -> Optional[Address]:
        return self.address

    def to_dict(self) -> dict[str, Any]:
        return {
            "Action": self.action,
            "Object": self.address.encode(),
            "Properties": self.properties,
        }


@dataclass(frozen=True)
class Convert(ChangeEvent):
    old_address: Address
    new_address: Address
    node_class: NodeClass
    undo: bool = False

    action: ClassVar[str] = "convert"

    @property
    def target(self) -> Optional[Address]:
        return self.old_address

    def to_dict(self) -> dict[str, Any]:
        return {
            "Action": self.action,
            "OldPath": self.old_address.encode(),
            "NewPath": self.new_address.encode(),
            "Type": self.node_class.value,
            "Undo": self.undo,
        }


@dataclass(frozen=True)
class CloseFile(ChangeEvent):
    action: ClassVar[str] = "closeFile"


@dataclass(frozen=True)
class ExecuteSnippet(ChangeEvent):
    text: str

    action: ClassVar[str] = "executeSnippet"

    def to_dict(self) -> dict[str, Any]:
        return {"Action": self.action, "Snippet": self.text}


@dataclass(frozen=True)
class SetTitle(ChangeEvent):
    text: str

    action: ClassVar[str] = "setTitle"

    def to_dict(self) -> dict[str, Any]:
        return {"Action": self.action, "Title": self.text}


def event_from_dict(data: dict[str, Any]) -> ChangeEvent:
    """Rebuild an event from its wire record.

    Raises:
        PathResolutionError: If an address field is malformed
        ValueError: If the action or a class name is unknown
    """
    action = data.get("Action")

    if action == "create":
        parent = Address.decode(data.get("Parent", ""))
        return Create(
            parent.child(data["Name"]),
            NodeClass(data["Type"]),
            bool(data.get("Delete", False)),
        )
    if action == "update":
        return Update(Address.decode(data["Object"]), data.get("Source", ""))
    if action == "delete":
        return Delete(Address.decode(data["Object"]))
    if action == "rename":
        return Rename(Address.decode(data["Object"]), data["Name"])
    if action == "changeType":
        return ChangeType(
            Address.decode(data["Object"]), NodeClass(data["Type"]), data.get("Name")
        )
    if action == "changeParent":
        return ChangeParent(
            Address.decode(data["Object"]), Address.decode(data["Parent"])
        )
    if action == "setProperties":
        return SetProperties(Address.decode(data["Object"]), data["Properties"])
    if action == "convert":
        return Convert(
            Address.decode(data["OldPath"]),
            Address.decode(data["NewPath"]),
            NodeClass(data["Type"]),
            bool(data.get("Undo", False)),
        )
    if action == "closeFile":
        return CloseFile()
    if action == "executeSnippet":
        return ExecuteSnippet(data["Snippet"])
    if action == "setTitle":
        return SetTitle(data["Title"])

    raise ValueError(f"Unknown event action: {action!r}")


class EventQueue:
    """Ordered, bounded, single-consumer channel of pending change events.

    Producers append; the transport drains. There is no suspension point
    between reading and truncating in ``drain``.
    """

    def __init__(self, limit: int = 100_000):
        self.limit = limit
        self._events: list[ChangeEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ChangeEvent]:
        return iter(list(self._events))

    def append(self, event: ChangeEvent) -> bool:
        """Append an event, returning False when the queue is full."""
        if len(self._events) >= self.limit:
            logger.warning(
                f"Event queue full ({self.limit}), dropping {event.action} event"
            )
            return False
        self._events.append(event)
        return True

    def drain(self) -> list[ChangeEvent]:
        """Return every pending event in order and empty the queue."""
        events = self._events
        self._events = []
        return events

    def clear(self) -> None:
        self._events = []


class EventFactory:
    """Builds change events from watcher-level inputs and enqueues them.

    Invalid input never raises: an item whose address cannot be resolved,
    or that targets the root, is dropped and logged at debug level.
    """

    def __init__(self, codec: PathCodec, queue: EventQueue):
        self.codec = codec
        self.queue = queue

    def _address(self, value: AddressLike) -> Optional[Address]:
        try:
            if isinstance(value, str):
                address = Address.decode(value)
            else:
                address = Address(value)
        except PathResolutionError as e:
            logger.debug(f"Dropping event for malformed address: {e}")
            return None

        if address.is_root:
            logger.debug("Dropping event targeting the root")
            return None

        return address.normalized()

    def _emit(self, event: ChangeEvent) -> Optional[ChangeEvent]:
        if not self.queue.append(event):
            return None
        logger.debug(f"Queued {event.action}: {event.target!r}")
        return event

    def create(self, parent: AddressLike, filename: str) -> Optional[ChangeEvent]:
        """Queue the creation of the node a new file or directory represents.

        A sentinel file targets its container instead and sets the
        ``delete_self`` flag.
        """
        try:
            parent_address = (
                Address.decode(parent) if isinstance(parent, str) else Address(parent)
            )
        except PathResolutionError as e:
            logger.debug(f"Dropping create for malformed parent: {e}")
            return None

        classified = classify(filename)

        if classified.node_class.is_script and self.codec.is_source_file(
            classified.base
        ):
            if len(parent_address) < 2:
                logger.debug(f"Ignoring sentinel directly under a service: {filename}")
                return None
            return self._emit(
                Create(parent_address.normalized(), classified.node_class, True)
            )

        try:
            address = parent_address.normalized().child(classified.base)
        except PathResolutionError as e:
            logger.debug(f"Dropping create for invalid name: {e}")
            return None

        if parent_address.is_root:
            logger.debug(f"Ignoring create directly under the root: {filename}")
            return None

        return self._emit(Create(address, classified.node_class))

    def update(self, address: AddressLike, text: str) -> Optional[ChangeEvent]:
        target = self._address(address)
        if target is None:
            return None
        return self._emit(Update(target, text))

    def remove(self, address: AddressLike) -> Optional[ChangeEvent]:
        target = self._address(address)
        if target is None:
            return None
        return self._emit(Delete(target))

    def rename(self, address: AddressLike, new_name: str) -> Optional[ChangeEvent]:
        target = self._address(address)
        if target is None or not new_name:
            return None
        return self._emit(Rename(target, normalize_name(new_name)))

    def change_type(
        self,
        address: AddressLike,
        variant: Union[NodeClass, str],
        new_name: Optional[str] = None,
    ) -> Optional[ChangeEvent]:
        """Queue a script variant change, optionally with a new name.

        A sentinel target is rewritten to its container. Without a new
        name only the server and client variants are emitted.
        """
        target = self._address(address)
        if target is None:
            return None

        if isinstance(variant, NodeClass):
            node_class = variant
        else:
            node_class = NodeClass.from_marker(variant)

        if self.codec.is_source_file(target.name):
            if len(target) < 2:
                return None
            target = target.parent
            new_name = target.name

        if new_name:
            return self._emit(ChangeType(target, node_class, normalize_name(new_name)))
        if node_class is NodeClass.MODULE_SCRIPT:
            return None
        return self._emit(ChangeType(target, node_class))

    def change_parent(
        self, address: AddressLike, new_parent: AddressLike
    ) -> Optional[ChangeEvent]:
        target = self._address(address)
        if target is None:
            return None
        try:
            parent = (
                Address.decode(new_parent)
                if isinstance(new_parent, str)
                else Address(new_parent)
            )
        except PathResolutionError as e:
            logger.debug(f"Dropping changeParent for malformed parent: {e}")
            return None
        return self._emit(ChangeParent(target, parent.normalized()))

    def set_properties(
        self, address: AddressLike, properties: str
    ) -> Optional[ChangeEvent]:
        target = self._address(address)
        if target is None:
            return None
        return self._emit(SetProperties(target, properties))

    def convert(
        self,
        old_address: AddressLike,
        new_address: AddressLike,
        node_class: NodeClass,
        undo: bool = False,
    ) -> Optional[ChangeEvent]:
        old = self._address(old_address)
        new = self._address(new_address)
        if old is None or new is None:
            return None
        return self._emit(Convert(old, new, node_class, undo))

    def port_source(self, address: AddressLike, text: str) -> Optional[Update]:
        """Build, without queueing, the source update used by a full port."""
        target = self._address(address)
        if target is None:
            return None
        return Update(target, text)

    def close_file(self) -> Optional[ChangeEvent]:
        return self._emit(CloseFile())

    def execute_snippet(self, text: str) -> Optional[ChangeEvent]:
        return self._emit(ExecuteSnippet(text))

    def set_title(self, text: str) -> Optional[ChangeEvent]:
        return self._emit(SetTitle(text))
