"""Client for a running pyargon server.

Speaks the same protocol as the Studio plugin, which makes it useful for
checking a server from the command line and for scripted ports.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator

import httpx

from .exceptions import TransportError
from .sync.events import ChangeEvent, event_from_dict

logger = logging.getLogger(__name__)


class ArgonClient:
    """Client for the pyargon HTTP endpoint."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8000,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            host: Server host name
            port: Server port
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = f"http://{host}:{port}/"
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> ArgonClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, action: str, body: Any = None) -> Any:
        """Send one action and return the decoded JSON reply.

        Args:
            action: Value of the ``action`` header
            body: Text sent as is, or a value serialized as JSON

        Returns:
            Parsed JSON, or None for an empty reply

        Raises:
            TransportError: If the server is unreachable or answers badly
        """
        if body is None:
            content = b""
        elif isinstance(body, str):
            content = body.encode("utf-8")
        else:
            content = json.dumps(body).encode("utf-8")

        try:
            response = self._get_client().post(
                self.base_url, headers={"action": action}, content=content
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Server answered {e.response.status_code} to {action}",
                self.base_url,
                e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"Cannot reach server: {e}", self.base_url) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"Invalid JSON in reply to {action}", self.base_url
            ) from e

    def init(self) -> dict[str, Any]:
        """Perform the handshake.

        Returns:
            Dictionary with ``State``, ``Title``, ``Version`` and ``Separator``
        """
        data = self._request("init")
        if not isinstance(data, dict):
            raise TransportError("Unexpected handshake reply", self.base_url)
        return data

    def get_sync(self) -> list[ChangeEvent]:
        """Drain pending change events from the server."""
        records = self._request("getSync") or []
        events = []
        for record in records:
            try:
                events.append(event_from_dict(record))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unknown event record: {e}")
        return events

    def set_sync(self, operations: list[dict[str, Any]]) -> None:
        self._request("setSync", operations)

    def sync_title(self, title: str) -> None:
        self._request("syncTitle", title)

    def disconnect(self) -> None:
        self._request("disconnect")

    def get_state(self) -> int:
        """Milliseconds since the server last wrote a snapshot to disk."""
        return int(self._request("getState") or 0)

    def port_instances(self, instances: dict[str, Any], mode: bool = False) -> None:
        self._request("portInstances", {"instances": instances, "mode": mode})

    def port_scripts(self, scripts: list[dict[str, Any]]) -> None:
        self._request("portScripts", scripts)

    def port_properties(self, properties: dict[str, Any]) -> None:
        self._request("portProperties", properties)

    def clear_folders(self) -> None:
        self._request("clearFolders")

    def port_project(
        self,
    ) -> tuple[list[dict[str, Any]], Iterator[list[dict[str, Any]]]]:
        """Start a full port.

        Returns:
            Tuple of (structural event records, iterator over source chunks)
        """
        data = self._request("portProject") or {}
        project = data.get("Project") or []
        return project, self._iter_chunks(int(data.get("Length") or 0))

    def _iter_chunks(self, length: int) -> Iterator[list[dict[str, Any]]]:
        remaining = length
        while remaining > 0:
            data = self._request("portProjectSource") or {}
            yield data.get("Chunk") or []
            remaining = int(data.get("Length") or 0)
