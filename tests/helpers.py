"""
Shared test helpers for presse.

FakeConnection stands in for a websockets sync ClientConnection. It answers
each command from a per-method script and can push events after the
response, the way Chrome sends Page.navigate's result before
Page.domContentEventFired.
"""

from __future__ import annotations

import base64
import json
import queue
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from adapters.cdp import CdpSession

MINIMAL_PDF = b"%PDF-1.4\n1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n" \
              b"2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj\n" \
              b"3 0 obj << /Type /Page /Parent 2 0 R >> endobj\n%%EOF\n"

LOADED = ("Page.domContentEventFired", {"timestamp": 1.0})


@dataclass
class Reply:
    """Scripted answer to one command."""
    result: dict[str, Any] | None = field(default_factory=dict)
    error: dict[str, Any] | None = None
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    silent: bool = False  # Never answer (simulates a hung command)


Script = dict[str, Reply | dict[str, Any] | Callable[[dict[str, Any]], Reply]]

_CLOSED = object()
_DROPPED = object()


class FakeConnection:
    """In-memory WebSocket connection driven by a command script."""

    def __init__(self, script: Script | None = None):
        self.script: Script = dict(script or {})
        self.sent: list[dict[str, Any]] = []
        self.connect_kwargs: dict[str, Any] = {}
        self.closed = False
        self._inbox: queue.Queue[Any] = queue.Queue()

    # --- websockets ClientConnection surface ---

    def send(self, raw: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        message = json.loads(raw)
        self.sent.append(message)

        entry = self.script.get(message["method"], Reply())
        if callable(entry):
            entry = entry(message.get("params", {}))
        reply = entry if isinstance(entry, Reply) else Reply(result=entry)
        if reply.silent:
            return

        response: dict[str, Any] = {"id": message["id"]}
        if reply.error is not None:
            response["error"] = reply.error
        elif reply.result is not None:
            response["result"] = reply.result
        self._inbox.put(json.dumps(response))
        for method, params in reply.events:
            self.emit(method, params)

    def recv(self) -> str:
        item = self._inbox.get()
        if item is _CLOSED:
            raise ConnectionClosedOK(None, None)
        if item is _DROPPED:
            raise ConnectionClosedError(None, None)
        return item

    def close(self) -> None:
        self.closed = True
        self._inbox.put(_CLOSED)

    # --- test controls ---

    def emit(self, method: str, params: dict[str, Any] | None = None) -> None:
        self._inbox.put(json.dumps({"method": method, "params": params or {}}))

    def push_raw(self, raw: str) -> None:
        self._inbox.put(raw)

    def drop(self) -> None:
        """Simulate Chrome going away mid-session."""
        self.closed = True
        self._inbox.put(_DROPPED)

    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]

    def params_for(self, method: str) -> dict[str, Any]:
        """Params of the last command sent with this method."""
        for message in reversed(self.sent):
            if message["method"] == method:
                return message.get("params", {})
        raise AssertionError(f"{method} was never sent. Sent: {self.methods()}")


def connected_session(connection: FakeConnection, **kwargs: Any) -> CdpSession:
    """A CdpSession connected to the given fake."""

    def connector(url: str, **connect_kwargs: Any) -> FakeConnection:
        connection.connect_kwargs = connect_kwargs
        return connection

    session = CdpSession("ws://127.0.0.1:9222/devtools/page/TEST", connector=connector, **kwargs)
    session.connect()
    return session


def chrome_script(pdf: bytes = MINIMAL_PDF, overrides: Script | None = None) -> Script:
    """
    Script for a well-behaved Chrome: every load fires DOMContentLoaded
    and printToPDF returns the given bytes.
    """
    script: Script = {
        "Page.enable": {},
        "Page.navigate": Reply(result={"frameId": "F1", "loaderId": "L1"}, events=[LOADED]),
        "Page.getFrameTree": {"frameTree": {"frame": {"id": "F1"}}},
        "Page.setDocumentContent": Reply(result={}, events=[LOADED]),
        "Page.printToPDF": {"data": base64.b64encode(pdf).decode("ascii")},
        "Runtime.evaluate": {"result": {"type": "undefined"}},
    }
    script.update(overrides or {})
    return script
