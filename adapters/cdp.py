"""
CDP adapter: Chrome DevTools Protocol session.

Owns one WebSocket connection to a page target. Commands are synchronous
round trips for the caller; a background reader thread receives every frame,
resolves the matching pending command and dispatches events to listeners.

Also provides target discovery over Chrome's HTTP endpoint (/json/*), which
is how callers find a ws:// URL in the first place.

Chrome must already be running, e.g.:
    chrome --headless=new --remote-debugging-port=9222
"""

import itertools
import json
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future, TimeoutError as FuturesTimeout
from contextlib import contextmanager
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

import config
from logging_config import logger, log_cdp_command, log_cdp_event, shorten
from models import ErrorKind, PresseError
from retry import with_retry
from validation import parse_websocket_url

__all__ = [
    "CdpCommandError",
    "CdpSession",
    "EventWaiter",
    "SessionState",
    "close_target",
    "get_browser_version",
    "is_cdp_available",
    "list_targets",
    "new_target",
    "open_page_session",
]

EventCallback = Callable[[dict[str, Any]], None]

# Reader thread gets this long to notice the close frame
_READER_JOIN_TIMEOUT = 5.0


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class CdpCommandError(RuntimeError):
    """Chrome answered a command with a protocol-level error."""

    def __init__(self, method: str, code: int | None, message: str):
        super().__init__(f"{method} failed: {message} (code {code})")
        self.method = method
        self.code = code
        self.message = message


class EventWaiter:
    """
    One-shot subscription to a single CDP event.

    Created armed by CdpSession.expect_event(). The first matching event
    resolves it and retires the subscription; later events are ignored.
    Use as a context manager so the subscription is retired on every exit path:

        with session.expect_event("Page.domContentEventFired") as loaded:
            session.navigate(url)
            loaded.wait(30000)
    """

    def __init__(self, session: "CdpSession", method: str):
        self.method = method
        self._session = session
        self._future: Future[dict[str, Any]] = Future()
        self._lock = threading.Lock()

    @property
    def fired(self) -> bool:
        """True once the event has been delivered."""
        with self._lock:
            return (
                self._future.done()
                and not self._future.cancelled()
                and self._future.exception() is None
            )

    def wait(self, timeout_ms: int | None) -> dict[str, Any]:
        """
        Block until the event arrives.

        Returns:
            The event's params

        Raises:
            concurrent.futures.TimeoutError: If timeout_ms elapses first
            PresseError: If the connection is lost while waiting
        """
        timeout = None if timeout_ms is None else timeout_ms / 1000
        return self._future.result(timeout=timeout)

    def cancel(self) -> None:
        """Retire the subscription without waiting."""
        self._session._retire(self)
        with self._lock:
            self._future.cancel()

    def _deliver(self, params: dict[str, Any]) -> None:
        self._session._retire(self)
        with self._lock:
            if not self._future.done():
                self._future.set_result(params)

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            if not self._future.done():
                self._future.set_exception(error)

    def __enter__(self) -> "EventWaiter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


class CdpSession:
    """
    A Chrome DevTools Protocol session over one WebSocket connection.

    Lifecycle: DISCONNECTED → CONNECTING → CONNECTED → CLOSED. A closed
    session can't be reconnected; open a new one instead.

    Not designed for overlapping operations: run one navigation/print
    sequence at a time per session, and give each concurrent conversion
    its own session.
    """

    def __init__(
        self,
        ws_url: str,
        connect_timeout_ms: int = config.CONNECT_TIMEOUT_MS,
        *,
        connector: Callable[..., Any] | None = None,
    ):
        if ws_url is None or not ws_url.strip():
            raise ValueError("WebSocket URL cannot be None or empty")
        if connect_timeout_ms <= 0:
            raise ValueError(f"Connection timeout must be positive, got {connect_timeout_ms}")

        self.ws_url = ws_url.strip()
        self.connect_timeout_ms = connect_timeout_ms
        self._connector = connector or ws_connect

        # Guards state, pending commands, listeners and waiters
        self._lock = threading.RLock()
        self._state = SessionState.DISCONNECTED
        self._closing = False
        self._lost_reason: BaseException | None = None
        self._ws: Any = None
        self._reader: threading.Thread | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[str, Future[dict[str, Any] | None]]] = {}
        self._listeners: dict[str, list[EventCallback]] = {}
        self._waiters: set[EventWaiter] = set()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    def connect(self) -> None:
        """
        Establish the WebSocket connection and start the reader thread.

        Raises:
            RuntimeError: If already connected or closed
            PresseError: CONNECTION_FAILED if the endpoint is invalid,
                unreachable, or the handshake fails
        """
        with self._lock:
            if self._state is SessionState.CLOSED:
                raise RuntimeError("Cannot connect: CdpSession has been closed")
            if self._state is not SessionState.DISCONNECTED:
                raise RuntimeError("Already connected to Chrome DevTools")
            self._state = SessionState.CONNECTING

        logger.info(f"Connecting to Chrome DevTools at: {self.ws_url}")

        try:
            parse_websocket_url(self.ws_url)
            # PDFs come back base64-encoded in a single frame: no size cap
            ws = self._connector(
                self.ws_url,
                open_timeout=self.connect_timeout_ms / 1000,
                max_size=None,
            )
        except Exception as e:
            with self._lock:
                self._state = SessionState.DISCONNECTED
            raise PresseError(
                ErrorKind.CONNECTION_FAILED,
                f"Failed to establish WebSocket connection to Chrome at {self.ws_url}: {e}",
                cause=e,
            ) from e

        with self._lock:
            self._ws = ws
            self._state = SessionState.CONNECTED
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(ws,),
                name=f"cdp-reader-{id(self):x}",
                daemon=True,
            )
            self._reader.start()

        logger.info("Successfully connected to Chrome DevTools")

    def close(self) -> None:
        """
        Close the connection and release resources.

        Idempotent. Pending commands and armed waiters fail with
        CONNECTION_FAILED.
        """
        with self._lock:
            if self._closing:
                return
            self._closing = True
            self._state = SessionState.CLOSED
            ws, reader = self._ws, self._reader

        if ws is not None:
            logger.info("Closing Chrome DevTools session")
            try:
                ws.close()
            except Exception as e:
                logger.warning(f"Error while closing Chrome DevTools connection: {e}")

        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=_READER_JOIN_TIMEOUT)

        self._fail_outstanding(
            PresseError(ErrorKind.CONNECTION_FAILED, "Chrome DevTools session closed")
        )

    def __enter__(self) -> "CdpSession":
        if self.state is SessionState.DISCONNECTED:
            self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any] | None:
        """
        Send a command and block until Chrome answers it.

        Args:
            method: CDP method, e.g. "Page.navigate"
            params: Command parameters
            timeout_ms: Optional bound; None waits until the response arrives
                or the transport fails

        Returns:
            The response's "result" object (None if Chrome sent none)

        Raises:
            CdpCommandError: Chrome returned a protocol error
            PresseError: CONNECTION_FAILED if the transport fails,
                TIMEOUT if timeout_ms elapses
            RuntimeError: If the session was never connected or was closed
        """
        future: Future[dict[str, Any] | None] = Future()
        with self._lock:
            ws = self._require_connected()
            command_id = next(self._ids)
            self._pending[command_id] = (method, future)

        payload: dict[str, Any] = {"id": command_id, "method": method}
        if params:
            payload["params"] = params
        log_cdp_command(method, command_id, **(params or {}))

        try:
            ws.send(json.dumps(payload))
        except Exception as e:
            self._forget(command_id)
            raise PresseError(
                ErrorKind.CONNECTION_FAILED,
                f"Failed to send {method} to Chrome DevTools: {e}",
                cause=e,
            ) from e

        try:
            return future.result(timeout=None if timeout_ms is None else timeout_ms / 1000)
        except FuturesTimeout:
            self._forget(command_id)
            raise PresseError(
                ErrorKind.TIMEOUT,
                f"{method} timed out after {timeout_ms} ms",
                details={"timeout_ms": timeout_ms},
            ) from None

    # --- Page domain ---

    def page_enable(self) -> None:
        self.send("Page.enable")

    def navigate(self, url: str) -> dict[str, Any]:
        """Page.navigate. The result may carry an "errorText" field."""
        return self.send("Page.navigate", {"url": url}) or {}

    def get_frame_tree(self) -> dict[str, Any]:
        return self.send("Page.getFrameTree") or {}

    def set_document_content(self, frame_id: str, html: str) -> None:
        self.send("Page.setDocumentContent", {"frameId": frame_id, "html": html})

    def print_to_pdf(
        self,
        params: dict[str, Any],
        timeout_ms: int | None = None,
    ) -> dict[str, Any] | None:
        return self.send("Page.printToPDF", params, timeout_ms=timeout_ms)

    # --- Network domain ---

    def network_enable(self) -> None:
        self.send("Network.enable")

    def network_disable(self) -> None:
        self.send("Network.disable")

    # --- Runtime / Emulation domains ---

    def runtime_evaluate(self, expression: str, await_promise: bool = False) -> dict[str, Any]:
        return self.send("Runtime.evaluate", {
            "expression": expression,
            "awaitPromise": await_promise,
            "returnByValue": True,
        }) or {}

    def set_device_metrics(self, width: int, height: int, device_scale_factor: float) -> None:
        self.send("Emulation.setDeviceMetricsOverride", {
            "width": width,
            "height": height,
            "deviceScaleFactor": device_scale_factor,
            "mobile": False,
        })

    def set_user_agent(self, user_agent: str) -> None:
        self.send("Emulation.setUserAgentOverride", {"userAgent": user_agent})

    def set_script_execution_disabled(self, disabled: bool) -> None:
        self.send("Emulation.setScriptExecutionDisabled", {"value": disabled})

    # =========================================================================
    # EVENTS
    # =========================================================================

    def add_listener(self, method: str, callback: EventCallback) -> Callable[[], None]:
        """
        Register a persistent listener for an event.

        Callbacks run on the reader thread and must not block.

        Returns:
            A zero-argument function that removes the listener
        """
        with self._lock:
            self._listeners.setdefault(method, []).append(callback)
        return lambda: self.remove_listener(method, callback)

    def remove_listener(self, method: str, callback: EventCallback) -> None:
        """Remove a listener. Removing an unknown listener is a no-op."""
        with self._lock:
            callbacks = self._listeners.get(method, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._listeners.pop(method, None)

    def expect_event(self, method: str) -> EventWaiter:
        """
        Arm a one-shot waiter for the next occurrence of an event.

        Arm it before sending the command that triggers the event.
        """
        waiter = EventWaiter(self, method)
        with self._lock:
            self._require_connected()
            self._waiters.add(waiter)
            self._listeners.setdefault(method, []).append(waiter._deliver)
        return waiter

    def _retire(self, waiter: EventWaiter) -> None:
        with self._lock:
            self._waiters.discard(waiter)
        self.remove_listener(waiter.method, waiter._deliver)

    # =========================================================================
    # READER THREAD
    # =========================================================================

    def _read_loop(self, ws: Any) -> None:
        reason: BaseException | None = None
        try:
            while True:
                self._dispatch(ws.recv())
        except ConnectionClosed as e:
            reason = e
        except Exception as e:
            logger.error(f"Chrome DevTools reader stopped: {e}")
            reason = e

        with self._lock:
            deliberate = self._closing
            self._state = SessionState.CLOSED
            if not deliberate:
                self._lost_reason = reason

        if not deliberate:
            logger.warning(f"Chrome DevTools connection lost: {reason}")
            self._fail_outstanding(PresseError(
                ErrorKind.CONNECTION_FAILED,
                "Connection to Chrome DevTools was lost",
                cause=reason,
            ))

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed CDP frame: {shorten(repr(raw))}")
            return

        if "id" in message:
            with self._lock:
                entry = self._pending.pop(message["id"], None)
            if entry is None:
                logger.debug(f"CDP <- response for unknown command #{message['id']}")
                return
            method, future = entry
            if "error" in message:
                error = message["error"] or {}
                future.set_exception(
                    CdpCommandError(method, error.get("code"), error.get("message", ""))
                )
            else:
                future.set_result(message.get("result"))
        elif "method" in message:
            self._emit(message["method"], message.get("params") or {})

    def _emit(self, method: str, params: dict[str, Any]) -> None:
        log_cdp_event(method)
        with self._lock:
            callbacks = list(self._listeners.get(method, ()))
        for callback in callbacks:
            try:
                callback(params)
            except Exception as e:
                logger.error(f"Listener for {method} raised: {e}")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _require_connected(self) -> Any:
        if self._state is SessionState.CONNECTED:
            return self._ws
        if self._state is SessionState.CLOSED:
            if self._lost_reason is not None or not self._closing:
                raise PresseError(
                    ErrorKind.CONNECTION_FAILED,
                    "Connection to Chrome DevTools was lost",
                    cause=self._lost_reason,
                )
            raise RuntimeError("CdpSession has been closed")
        raise RuntimeError("Not connected to Chrome DevTools. Call connect() first.")

    def _forget(self, command_id: int) -> None:
        with self._lock:
            self._pending.pop(command_id, None)

    def _fail_outstanding(self, error: PresseError) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            waiters = list(self._waiters)
            self._waiters.clear()
        for _method, future in pending:
            future.set_exception(error)
        for waiter in waiters:
            waiter._fail(error)


# =============================================================================
# TARGET DISCOVERY (HTTP /json endpoints)
# =============================================================================

def _devtools_base(host: str, port: int) -> str:
    return f"http://{host}:{port}"


def _json_body(response: httpx.Response) -> Any:
    response.raise_for_status()
    try:
        return response.json()
    except json.JSONDecodeError as e:
        raise PresseError(
            ErrorKind.CONNECTION_FAILED,
            f"{response.url} did not return JSON; is this a DevTools endpoint?",
            cause=e,
        ) from e


def is_cdp_available(host: str = config.CDP_HOST, port: int = config.CDP_PORT) -> bool:
    """
    Check if Chrome DevTools Protocol is available.

    Returns True if Chrome answers /json/version on host:port.
    """
    try:
        response = httpx.get(
            f"{_devtools_base(host, port)}/json/version", timeout=config.DISCOVERY_TIMEOUT
        )
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@with_retry(max_attempts=3, delay_ms=500)
def get_browser_version(
    host: str = config.CDP_HOST,
    port: int = config.CDP_PORT,
) -> dict[str, Any]:
    """Browser metadata from /json/version (Browser, Protocol-Version, ...)."""
    response = httpx.get(
        f"{_devtools_base(host, port)}/json/version", timeout=config.DISCOVERY_TIMEOUT
    )
    version: dict[str, Any] = _json_body(response)
    return version


@with_retry(max_attempts=3, delay_ms=500)
def list_targets(
    host: str = config.CDP_HOST,
    port: int = config.CDP_PORT,
) -> list[dict[str, Any]]:
    """All debuggable targets from /json/list."""
    response = httpx.get(
        f"{_devtools_base(host, port)}/json/list", timeout=config.DISCOVERY_TIMEOUT
    )
    targets: list[dict[str, Any]] = _json_body(response)
    return targets


@with_retry(max_attempts=3, delay_ms=500)
def new_target(
    host: str = config.CDP_HOST,
    port: int = config.CDP_PORT,
    url: str = "about:blank",
) -> dict[str, Any]:
    """
    Open a new page target.

    Chrome takes the initial URL as the raw query string and requires PUT.

    Returns:
        Target description including "id" and "webSocketDebuggerUrl"
    """
    response = httpx.put(
        f"{_devtools_base(host, port)}/json/new?{quote(url, safe=':/')}",
        timeout=config.DISCOVERY_TIMEOUT,
    )
    target: dict[str, Any] = _json_body(response)
    return target


def close_target(host: str, port: int, target_id: str) -> None:
    """Close a page target. Failures are logged, not raised (cleanup path)."""
    try:
        response = httpx.get(
            f"{_devtools_base(host, port)}/json/close/{target_id}",
            timeout=config.DISCOVERY_TIMEOUT,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Failed to close target {target_id}: {e}")


@contextmanager
def open_page_session(
    host: str = config.CDP_HOST,
    port: int = config.CDP_PORT,
    connect_timeout_ms: int = config.CONNECT_TIMEOUT_MS,
) -> Iterator[CdpSession]:
    """
    Open a fresh page target and a connected session on it.

    Both are closed on exit, so a session left inconsistent by a timeout
    never leaks into the next conversion.

    Raises:
        PresseError: CONNECTION_FAILED if Chrome is unreachable
    """
    target = new_target(host, port)
    ws_url = target.get("webSocketDebuggerUrl")
    target_id = target.get("id", "")

    if not ws_url:
        if target_id:
            close_target(host, port, target_id)
        raise PresseError(
            ErrorKind.CONNECTION_FAILED,
            "New target has no webSocketDebuggerUrl (is another DevTools client attached?)",
        )

    session = CdpSession(ws_url, connect_timeout_ms)
    try:
        session.connect()
        yield session
    finally:
        session.close()
        if target_id:
            close_target(host, port, target_id)
