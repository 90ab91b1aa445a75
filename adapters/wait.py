"""
Wait strategies: extra readiness conditions checked after DOMContentLoaded.

DOMContentLoaded fires before late scripts, fonts and XHR-driven content
settle. A strategy blocks until its own condition holds or the shared
deadline passes, then raises TimeoutError with a reason. PageController
turns that into PresseError TIMEOUT.

Deadlines are time.monotonic() values. A strategy always checks its
condition at least once, even when the deadline has already passed.
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

from adapters.cdp import CdpCommandError, CdpSession
from logging_config import logger, shorten
from models import PresseError

__all__ = [
    "ConditionWait",
    "DelayWait",
    "ElementWait",
    "NetworkIdleWait",
    "WaitStrategy",
]

_ELEMENT_PRESENT_SCRIPT = "document.querySelector(%s) !== null"

_ELEMENT_VISIBLE_SCRIPT = (
    "(function() {"
    "  var el = document.querySelector(%s);"
    "  if (!el) return false;"
    "  var rect = el.getBoundingClientRect();"
    "  var style = window.getComputedStyle(el);"
    "  return rect.width > 0 && rect.height > 0"
    "    && style.visibility !== 'hidden' && style.display !== 'none';"
    "})()"
)


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


def _is_truthy(remote_object: dict[str, Any]) -> bool:
    """JavaScript truthiness of a Runtime.evaluate result (returnByValue)."""
    if remote_object.get("type") in ("object", "function") and remote_object.get("subtype") != "null":
        return True
    unserializable = remote_object.get("unserializableValue")
    if unserializable is not None:
        return unserializable not in ("NaN", "-0", "0n")
    value = remote_object.get("value")
    if isinstance(value, (bool, int, float, str)):
        return bool(value)
    return value is not None


class WaitStrategy(ABC):
    """One readiness condition. Subclasses implement wait()."""

    @abstractmethod
    def wait(self, session: CdpSession, deadline: float) -> None:
        """
        Block until ready.

        Raises:
            TimeoutError: If the condition doesn't hold before deadline
            PresseError: If the session fails underneath
        """

    @abstractmethod
    def describe(self) -> str:
        """Short label for logs."""


class _PollingWait(WaitStrategy):
    """Evaluates an expression until it reports ready."""

    def __init__(self, poll_interval_ms: int):
        if poll_interval_ms <= 0:
            raise ValueError(f"Poll interval must be positive, got {poll_interval_ms}")
        self.poll_interval_ms = poll_interval_ms

    @abstractmethod
    def _expression(self) -> str: ...

    @abstractmethod
    def _ready(self, result: dict[str, Any]) -> bool: ...

    def wait(self, session: CdpSession, deadline: float) -> None:
        expression = self._expression()
        while True:
            try:
                result = session.runtime_evaluate(expression)
            except CdpCommandError as e:
                # Context can vanish mid-navigation; the next poll retries
                logger.debug(f"{self.describe()}: evaluate failed, polling again: {e}")
                result = None

            if result is not None and self._ready(result):
                return

            remaining = _remaining(deadline)
            if remaining <= 0:
                raise TimeoutError(f"Timed out waiting for {self.describe()}")
            time.sleep(min(self.poll_interval_ms / 1000, remaining))


class ElementWait(_PollingWait):
    """Wait until a CSS selector matches, optionally also visible."""

    def __init__(self, selector: str, visible: bool = False, poll_interval_ms: int = 100):
        if selector is None or not selector.strip():
            raise ValueError("Selector cannot be empty")
        super().__init__(poll_interval_ms)
        self.selector = selector
        self.visible = visible

    def describe(self) -> str:
        what = "visible element" if self.visible else "element"
        return f"{what} {shorten(self.selector)!r}"

    def _expression(self) -> str:
        script = _ELEMENT_VISIBLE_SCRIPT if self.visible else _ELEMENT_PRESENT_SCRIPT
        return script % json.dumps(self.selector)

    def _ready(self, result: dict[str, Any]) -> bool:
        if result.get("exceptionDetails"):
            return False
        return (result.get("result") or {}).get("value") is True


class ConditionWait(_PollingWait):
    """Wait until a JavaScript expression evaluates truthy. Throwing counts as not yet."""

    def __init__(self, expression: str, poll_interval_ms: int = 100):
        if expression is None or not expression.strip():
            raise ValueError("Condition expression cannot be empty")
        super().__init__(poll_interval_ms)
        self.expression = expression

    def describe(self) -> str:
        return f"condition {shorten(self.expression)!r}"

    def _expression(self) -> str:
        return self.expression

    def _ready(self, result: dict[str, Any]) -> bool:
        if result.get("exceptionDetails"):
            return False
        return _is_truthy(result.get("result") or {})


class DelayWait(WaitStrategy):
    """Fixed pause, cut short by the deadline."""

    def __init__(self, delay_ms: int):
        if delay_ms < 0:
            raise ValueError(f"Delay cannot be negative, got {delay_ms}")
        self.delay_ms = delay_ms

    def describe(self) -> str:
        return f"{self.delay_ms} ms delay"

    def wait(self, session: CdpSession, deadline: float) -> None:
        time.sleep(min(self.delay_ms / 1000, _remaining(deadline)))


class NetworkIdleWait(WaitStrategy):
    """
    Wait until at most max_inflight requests are pending and no request
    has started or finished for quiet_period_ms.

    Requests are tracked by requestId, so a redirect chain counts once.
    Only traffic after the wait begins is seen.
    """

    REQUEST_EVENTS = ("Network.requestWillBeSent",)
    DONE_EVENTS = ("Network.loadingFinished", "Network.loadingFailed")

    def __init__(self, quiet_period_ms: int = 500, max_inflight: int = 0):
        if quiet_period_ms <= 0:
            raise ValueError(f"Quiet period must be positive, got {quiet_period_ms}")
        if max_inflight < 0:
            raise ValueError(f"Max inflight requests cannot be negative, got {max_inflight}")
        self.quiet_period_ms = quiet_period_ms
        self.max_inflight = max_inflight

    def describe(self) -> str:
        return f"network idle ({self.quiet_period_ms} ms quiet, <= {self.max_inflight} inflight)"

    def wait(self, session: CdpSession, deadline: float) -> None:
        inflight: set[str] = set()
        changed = threading.Condition()
        last_activity = [time.monotonic()]

        def on_request(params: dict[str, Any]) -> None:
            with changed:
                inflight.add(params.get("requestId", ""))
                last_activity[0] = time.monotonic()
                changed.notify_all()

        def on_done(params: dict[str, Any]) -> None:
            with changed:
                inflight.discard(params.get("requestId", ""))
                last_activity[0] = time.monotonic()
                changed.notify_all()

        removers = [session.add_listener(m, on_request) for m in self.REQUEST_EVENTS]
        removers += [session.add_listener(m, on_done) for m in self.DONE_EVENTS]
        try:
            session.network_enable()
            quiet_s = self.quiet_period_ms / 1000
            with changed:
                while True:
                    now = time.monotonic()
                    idle_for = now - last_activity[0]
                    if len(inflight) <= self.max_inflight and idle_for >= quiet_s:
                        return
                    if now >= deadline:
                        raise TimeoutError(
                            f"Network did not become idle in time "
                            f"(inflight requests: {len(inflight)})"
                        )
                    if len(inflight) > self.max_inflight:
                        pause = deadline - now
                    else:
                        pause = min(quiet_s - idle_for, deadline - now)
                    changed.wait(pause)
        finally:
            for remove in removers:
                remove()
            try:
                session.network_disable()
            except (CdpCommandError, PresseError) as e:
                logger.warning(f"Network.disable failed: {e}")
