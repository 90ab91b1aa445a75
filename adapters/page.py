"""
Page adapter: load synchronization and printing for one CDP session.

Turns the asynchronous Page.domContentEventFired stream into blocking calls
with a deadline. The load waiter is always armed before the command that
triggers the load, so a fast page can't fire the event before anyone listens.

Two ways in for HTML:
- load_html_content(): data: URL navigation, bounded by URL length
- set_document_content(): injects into the root frame of about:blank

After a load, wait_until_ready() runs wait strategies (adapters/wait.py)
against what is left of the load budget. inject_css() and
execute_javascript() then adjust the page before generate_pdf().
"""

import base64
import json
import re
import time
from collections.abc import Iterator, Sequence
from concurrent.futures import TimeoutError as FuturesTimeout
from contextlib import contextmanager
from enum import Enum
from urllib.parse import quote

import config
from adapters.cdp import CdpSession, EventWaiter
from adapters.wait import WaitStrategy
from logging_config import logger, shorten
from models import ErrorKind, PageOptions, PdfOptions, PresseError
from validation import validate_navigation_url

DOM_CONTENT_EVENT = "Page.domContentEventFired"
ABOUT_BLANK = "about:blank"
DATA_URL_PREFIX = "data:text/html;charset=utf-8,"

# Chrome refuses URLs longer than 2 MiB
MAX_DATA_URL_LENGTH = 2 * 1024 * 1024

# Left unescaped, matching encodeURIComponent
_DATA_URL_SAFE_CHARS = "!'()*"

_HEAD_TAG = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<html(?:\s[^>]*)?>", re.IGNORECASE)

_CSS_INJECTION_SCRIPT = (
    "(function() {"
    "  var style = document.createElement('style');"
    "  style.textContent = %s;"
    "  (document.head || document.documentElement).appendChild(style);"
    "})()"
)

_USER_SCRIPT_WRAPPER = "(async function() { %s })()"


class PageState(Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    AWAITING_LOAD = "awaiting_load"
    LOADED = "loaded"
    TIMED_OUT = "timed_out"
    LOAD_ERROR = "load_error"


def to_data_url(html: str) -> str:
    """Percent-encode HTML into a data: URL Chrome can navigate to."""
    return DATA_URL_PREFIX + quote(html, safe=_DATA_URL_SAFE_CHARS)


def inject_base_url(html: str, base_url: str) -> str:
    """
    Insert <base href> so relative links resolve against base_url.

    Goes right after <head>; if there's no <head>, one is created after
    <html>, or prepended when the fragment has neither.
    """
    base_tag = '<base href="%s">' % base_url.replace('"', "&quot;")

    head = _HEAD_TAG.search(html)
    if head:
        return html[:head.end()] + base_tag + html[head.end():]

    root = _HTML_TAG.search(html)
    if root:
        return html[:root.end()] + f"<head>{base_tag}</head>" + html[root.end():]

    return f"<head>{base_tag}</head>{html}"


class PageController:
    """
    Drives one page through load and print over a borrowed CdpSession.

    The controller never closes the session. Each load operation walks
    IDLE → NAVIGATING → AWAITING_LOAD → LOADED, or ends in TIMED_OUT /
    LOAD_ERROR. After a timeout, treat the session as contaminated.
    """

    def __init__(
        self,
        session: CdpSession,
        page_load_timeout_ms: int = config.LOAD_TIMEOUT_MS,
        print_timeout_ms: int | None = None,
    ):
        if session is None:
            raise ValueError("CdpSession cannot be None")
        if page_load_timeout_ms <= 0:
            raise ValueError(f"Page load timeout must be positive, got {page_load_timeout_ms}")
        if print_timeout_ms is not None and print_timeout_ms <= 0:
            raise ValueError(f"Print timeout must be positive, got {print_timeout_ms}")

        self._session = session
        self._page_load_timeout_ms = page_load_timeout_ms
        self._print_timeout_ms = print_timeout_ms
        self.state = PageState.IDLE

    @property
    def page_load_timeout_ms(self) -> int:
        return self._page_load_timeout_ms

    @property
    def print_timeout_ms(self) -> int | None:
        return self._print_timeout_ms

    # =========================================================================
    # LOADING
    # =========================================================================

    def navigate_to_url(self, url: str) -> None:
        """
        Navigate and block until DOMContentLoaded.

        Raises:
            ValueError: If url is empty or not navigable
            PresseError: PAGE_LOAD_FAILED if Chrome reports errorText or the
                command fails; TIMEOUT if the page doesn't load in time
        """
        url = validate_navigation_url(url)
        logger.info(f"Navigating to URL: {shorten(url)}")

        with self._load_phase("Failed to navigate to URL"):
            self._session.page_enable()
            with self._session.expect_event(DOM_CONTENT_EVENT) as loaded:
                result = self._session.navigate(url)
                error_text = result.get("errorText")
                if error_text:
                    raise PresseError(
                        ErrorKind.PAGE_LOAD_FAILED,
                        f"Navigation failed: {error_text}",
                        details={"url": shorten(url)},
                    )
                self._await_load(loaded, f"URL: {shorten(url)}")

    def load_html_content(self, html: str) -> None:
        """
        Load HTML by navigating to it as a data: URL.

        Raises:
            ValueError: If html is None or the encoded URL exceeds
                MAX_DATA_URL_LENGTH (use set_document_content instead)
        """
        if html is None:
            raise ValueError("HTML content cannot be None")

        data_url = to_data_url(html)
        if len(data_url) > MAX_DATA_URL_LENGTH:
            raise ValueError(
                f"Encoded HTML is {len(data_url)} characters, over the "
                f"{MAX_DATA_URL_LENGTH} data URL limit. Use set_document_content() instead."
            )

        logger.debug(f"Loading HTML content ({len(html)} chars) via data URL")
        self.navigate_to_url(data_url)

    def set_document_content(self, html: str, base_url: str | None = None) -> None:
        """
        Replace the document of a blank page with html.

        No size limit beyond the WebSocket frame. With base_url, a <base href>
        tag is injected so relative resources resolve against it.

        Raises:
            ValueError: If html is None
            PresseError: PAGE_LOAD_FAILED or TIMEOUT, as for navigate_to_url
        """
        if html is None:
            raise ValueError("HTML content cannot be None")
        if base_url is not None:
            html = inject_base_url(html, validate_navigation_url(base_url))

        # Wait for the blank page first, or its DOMContentLoaded could
        # release the content waiter below
        self.navigate_to_url(ABOUT_BLANK)

        logger.debug(f"Setting document content ({len(html)} chars)")
        with self._load_phase("Failed to set document content"):
            frame_id = self._root_frame_id()
            with self._session.expect_event(DOM_CONTENT_EVENT) as loaded:
                self._session.set_document_content(frame_id, html)
                self._await_load(loaded, "document content")

    def wait_until_ready(self, strategies: Sequence[WaitStrategy], timeout_ms: int) -> None:
        """
        Run wait strategies in order against one shared deadline.

        Called after a load with whatever is left of the load budget.

        Raises:
            PresseError: TIMEOUT when a strategy gives up; PAGE_LOAD_FAILED
                if one fails for another reason
        """
        if not strategies:
            return

        deadline = time.monotonic() + max(timeout_ms, 0) / 1000
        for strategy in strategies:
            logger.debug(f"Waiting for {strategy.describe()}")
            try:
                strategy.wait(self._session, deadline)
            except PresseError:
                raise
            except TimeoutError as e:
                self.state = PageState.TIMED_OUT
                logger.warning(f"Wait timed out: {e}")
                raise PresseError(
                    ErrorKind.TIMEOUT,
                    f"{e} (load budget {self._page_load_timeout_ms} ms)",
                    cause=e,
                    details={"timeout_ms": self._page_load_timeout_ms},
                ) from e
            except Exception as e:
                self.state = PageState.LOAD_ERROR
                raise PresseError(
                    ErrorKind.PAGE_LOAD_FAILED,
                    f"Failed waiting for {strategy.describe()}: {e}",
                    cause=e,
                ) from e

    # =========================================================================
    # PAGE SETUP
    # =========================================================================

    def apply_page_options(self, page_options: PageOptions) -> None:
        """Apply viewport, user agent and JavaScript settings before loading."""
        if page_options is None:
            raise ValueError("PageOptions cannot be None")

        try:
            self._session.set_device_metrics(
                page_options.viewport_width,
                page_options.viewport_height,
                page_options.device_scale_factor,
            )
            if page_options.user_agent:
                self._session.set_user_agent(page_options.user_agent)
            if not page_options.javascript_enabled:
                self._session.set_script_execution_disabled(True)
        except PresseError:
            raise
        except Exception as e:
            raise PresseError(
                ErrorKind.PAGE_LOAD_FAILED,
                f"Failed to apply page options: {e}",
                cause=e,
            ) from e

    def inject_css(self, css: str) -> None:
        """
        Append a <style> element to the loaded document.

        Raises:
            PresseError: GENERATION_FAILED if the page throws
        """
        if css is None:
            raise ValueError("CSS cannot be None")
        if not css.strip():
            return

        logger.debug(f"Injecting custom CSS ({len(css)} chars)")
        try:
            result = self._session.runtime_evaluate(_CSS_INJECTION_SCRIPT % json.dumps(css))
        except PresseError:
            raise
        except Exception as e:
            raise PresseError(
                ErrorKind.GENERATION_FAILED,
                f"Failed to inject custom CSS: {e}",
                cause=e,
            ) from e

        exception_details = result.get("exceptionDetails")
        if exception_details:
            thrown = exception_details.get("exception") or {}
            reason = thrown.get("description") or exception_details.get("text", "unknown error")
            raise PresseError(ErrorKind.GENERATION_FAILED, f"Failed to inject CSS: {reason}")

    def execute_javascript(self, javascript: str) -> None:
        """
        Run caller JavaScript in the loaded page and wait for it to settle.

        The code becomes the body of an async function, so it may use
        `await` and `return`; a returned promise is awaited.

        Raises:
            PresseError: GENERATION_FAILED if the script throws or rejects
        """
        if javascript is None:
            raise ValueError("JavaScript cannot be None")
        if not javascript.strip():
            return

        logger.debug(f"Executing custom JavaScript ({len(javascript)} chars)")
        try:
            result = self._session.runtime_evaluate(
                _USER_SCRIPT_WRAPPER % javascript, await_promise=True
            )
        except PresseError:
            raise
        except Exception as e:
            raise PresseError(
                ErrorKind.GENERATION_FAILED,
                f"Failed to execute custom JavaScript: {e}",
                cause=e,
            ) from e

        exception_details = result.get("exceptionDetails")
        if exception_details:
            thrown = exception_details.get("exception") or {}
            reason = thrown.get("description") or exception_details.get("text", "unknown error")
            raise PresseError(ErrorKind.GENERATION_FAILED, f"Failed to execute JavaScript: {reason}")

    # =========================================================================
    # PRINTING
    # =========================================================================

    def generate_pdf(self, options: PdfOptions | None = None) -> bytes:
        """
        Print the current page and return the decoded PDF bytes.

        Raises:
            PresseError: GENERATION_FAILED on a null result, empty data,
                undecodable data or command failure; TIMEOUT only when
                print_timeout_ms is set and exceeded
        """
        options = options or PdfOptions()
        logger.debug(
            f"Generating PDF: {options.paper_width}x{options.paper_height}in, "
            f"landscape={options.landscape}, scale={options.scale}"
        )

        try:
            result = self._session.print_to_pdf(
                options.to_print_params(), timeout_ms=self._print_timeout_ms
            )
        except PresseError:
            raise
        except Exception as e:
            raise PresseError(
                ErrorKind.GENERATION_FAILED,
                f"Failed to generate PDF: {e}",
                cause=e,
            ) from e

        if result is None:
            raise PresseError(ErrorKind.GENERATION_FAILED, "PDF generation returned null result")

        data = result.get("data")
        if not data:
            raise PresseError(ErrorKind.GENERATION_FAILED, "PDF generation returned empty data")

        # binascii.Error is a ValueError; non-ASCII str input raises plain ValueError
        try:
            pdf = base64.b64decode(data, validate=True)
        except (ValueError, TypeError) as e:
            raise PresseError(
                ErrorKind.GENERATION_FAILED,
                "Failed to decode PDF data",
                cause=e,
            ) from e

        logger.debug(f"PDF generated ({len(pdf)} bytes)")
        return pdf

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @contextmanager
    def _load_phase(self, failure_message: str) -> Iterator[None]:
        self.state = PageState.NAVIGATING
        try:
            yield
        except PresseError:
            if self.state is not PageState.TIMED_OUT:
                self.state = PageState.LOAD_ERROR
            raise
        except Exception as e:
            self.state = PageState.LOAD_ERROR
            raise PresseError(
                ErrorKind.PAGE_LOAD_FAILED,
                f"{failure_message}: {e}",
                cause=e,
            ) from e

    def _await_load(self, waiter: EventWaiter, target: str) -> None:
        self.state = PageState.AWAITING_LOAD
        try:
            waiter.wait(self._page_load_timeout_ms)
        except FuturesTimeout:
            self.state = PageState.TIMED_OUT
            logger.warning(f"Page load timed out after {self._page_load_timeout_ms} ms")
            raise PresseError(
                ErrorKind.TIMEOUT,
                f"Page load timed out after {self._page_load_timeout_ms} ms for {target}",
                details={"timeout_ms": self._page_load_timeout_ms},
            ) from None
        self.state = PageState.LOADED

    def _root_frame_id(self) -> str:
        tree = self._session.get_frame_tree()
        frame_id = tree.get("frameTree", {}).get("frame", {}).get("id")
        if not frame_id:
            raise PresseError(
                ErrorKind.PAGE_LOAD_FAILED,
                "Frame tree did not contain a root frame id",
            )
        return frame_id
