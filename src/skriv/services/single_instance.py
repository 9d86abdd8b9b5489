"""Single-instance coordination over a Qt local socket.

The first process listens on a named :class:`QLocalServer`. Later launches
connect to it, send their :class:`OpenRequest` and exit, so every file ends
up in the window of the primary instance.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .open_requests import OpenRequest, decode_open_request, encode_open_request

__all__ = ["SingleInstanceServer", "forward_to_primary"]

LOGGER = logging.getLogger(__name__)

RequestHandler = Callable[[OpenRequest], None]


def _qt_network() -> Any:
    try:  # Local import to avoid mandatory PySide6 dependency at import time.
        from PySide6 import QtNetwork
    except ImportError as exc:  # pragma: no cover - depends on desktop stack
        raise RuntimeError("PySide6 must be installed for single-instance support.") from exc
    return QtNetwork


def forward_to_primary(server_name: str, request: OpenRequest, *, timeout_ms: int = 500) -> bool:
    """Send ``request`` to a running primary instance.

    Returns ``True`` when a primary accepted the request, ``False`` when none
    is listening and the caller should become the primary itself.
    """

    QtNetwork = _qt_network()
    socket = QtNetwork.QLocalSocket()
    socket.connectToServer(server_name)
    if not socket.waitForConnected(timeout_ms):
        LOGGER.debug("No primary instance listening on %s", server_name)
        return False
    socket.write(encode_open_request(request))
    socket.flush()
    delivered = socket.waitForBytesWritten(timeout_ms)
    socket.disconnectFromServer()
    if socket.state() != QtNetwork.QLocalSocket.LocalSocketState.UnconnectedState:
        socket.waitForDisconnected(timeout_ms)
    if not delivered:
        LOGGER.warning("Primary instance on %s did not accept the open request", server_name)
        return False
    LOGGER.info("Forwarded %d argument(s) to the primary instance", max(0, len(request.args) - 1))
    return True


class SingleInstanceServer:
    """Listens for open requests from secondary launches.

    Each connection carries one JSON-encoded request and is read until the
    client disconnects; the decoded request is passed to ``on_request``.
    """

    def __init__(self, server_name: str, on_request: RequestHandler) -> None:
        self._name = server_name
        self._on_request = on_request
        self._server: Any | None = None
        self._buffers: dict[int, bytearray] = {}

    @property
    def server_name(self) -> str:
        return self._name

    @property
    def listening(self) -> bool:
        return self._server is not None and bool(self._server.isListening())

    def listen(self) -> bool:
        """Start listening, clearing a stale socket left by a crashed primary."""

        QtNetwork = _qt_network()
        server = QtNetwork.QLocalServer()
        if not server.listen(self._name):
            LOGGER.debug("Removing stale local server %s: %s", self._name, server.errorString())
            QtNetwork.QLocalServer.removeServer(self._name)
            if not server.listen(self._name):
                LOGGER.warning("Unable to listen on %s: %s", self._name, server.errorString())
                return False
        server.newConnection.connect(self._on_new_connection)
        self._server = server
        LOGGER.debug("Single-instance server listening on %s", self._name)
        return True

    def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        self._server = None
        self._buffers.clear()

    # ------------------------------------------------------------------
    # Qt callbacks
    # ------------------------------------------------------------------
    def _on_new_connection(self) -> None:
        server = self._server
        if server is None:
            return
        while server.hasPendingConnections():
            socket = server.nextPendingConnection()
            if socket is None:
                break
            key = id(socket)
            self._buffers[key] = bytearray()
            socket.readyRead.connect(lambda s=socket: self._on_ready_read(s))
            socket.disconnected.connect(lambda s=socket: self._on_disconnected(s))

    def _on_ready_read(self, socket: Any) -> None:
        buffer = self._buffers.setdefault(id(socket), bytearray())
        buffer.extend(bytes(socket.readAll().data()))

    def _on_disconnected(self, socket: Any) -> None:
        self._on_ready_read(socket)
        payload = bytes(self._buffers.pop(id(socket), b""))
        socket.deleteLater()
        if not payload:
            return
        self.dispatch(payload)

    def dispatch(self, payload: bytes) -> None:
        """Decode ``payload`` and hand it to the request handler."""

        request = decode_open_request(payload)
        if request is None:
            return
        try:
            self._on_request(request)
        except Exception:  # pragma: no cover - keep the server alive
            LOGGER.exception("Open request handler failed")
