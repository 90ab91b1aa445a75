"""
Convert tool implementation.

HtmlToPdfConverter composes a CdpSession and a PageController into one
convert(html) -> bytes call. It owns no protocol logic itself.

do_html_to_pdf / do_url_to_pdf are the CLI/MCP entry points: each opens a
fresh page target, converts, deposits the PDF to presse-out/ and returns a
ConvertResult (or an error dict).
"""

import dataclasses
import re
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Literal

import config
from adapters.cdp import CdpSession, open_page_session
from adapters.page import PageController, inject_base_url, to_data_url
from adapters.wait import ConditionWait, DelayWait, ElementWait, NetworkIdleWait, WaitStrategy
from logging_config import logger, shorten
from models import (
    ConversionContext,
    ConvertResult,
    DEFAULT_SOURCE_IDENTIFIER,
    ErrorKind,
    PageOptions,
    PaperFormat,
    PdfOptions,
    PresseError,
)
from validation import check_url_allowed, validate_navigation_url
from workspace import get_deposit_folder, source_id, write_manifest, write_pdf

LoadStrategy = Literal["auto", "data_url", "inject"]
LOAD_STRATEGIES: frozenset[str] = frozenset({"auto", "data_url", "inject"})

# Above this, "auto" injects into the frame instead of building a data: URL
INLINE_HTML_MAX_BYTES = 32 * 1024

PDF_SIGNATURE = b"%PDF"

# Page objects, not the /Pages tree nodes
_PAGE_OBJECT = re.compile(rb"/Type\s*/Page(?![a-zA-Z])")

HEADER_FOOTER_PRESETS: dict[str, Callable[[PdfOptions], PdfOptions]] = {
    "page_numbers": PdfOptions.with_page_numbers,
    "title_header": PdfOptions.with_title_header,
    "date_footer": PdfOptions.with_date_footer,
    "standard": PdfOptions.with_standard_header_footer,
}


def choose_load_strategy(
    html: str,
    base_url: str | None = None,
    requested: str = "auto",
) -> Literal["data_url", "inject"]:
    """
    Pick how HTML reaches the page.

    "auto" navigates to a data: URL when the encoded document fits in
    INLINE_HTML_MAX_BYTES and no base_url is set; otherwise it injects the
    document into the root frame.
    """
    if requested not in LOAD_STRATEGIES:
        allowed = ", ".join(sorted(LOAD_STRATEGIES))
        raise ValueError(f"Unknown load strategy: '{requested}'. Expected one of: {allowed}")
    if requested == "data_url":
        return "data_url"
    if requested == "inject":
        return "inject"
    if base_url is None and len(to_data_url(html)) <= INLINE_HTML_MAX_BYTES:
        return "data_url"
    return "inject"


def count_pages(pdf: bytes) -> int:
    """Rough page count from /Type /Page objects. Good enough for cues."""
    return len(_PAGE_OBJECT.findall(pdf))


class HtmlToPdfConverter:
    """
    One-call HTML/URL to PDF conversion over a connected CdpSession.

    The session is borrowed; the converter never closes it. After a TIMEOUT
    the session should be discarded.

    Example:
        with open_page_session() as session:
            pdf = HtmlToPdfConverter(session).convert("<h1>Hello</h1>")
    """

    def __init__(
        self,
        session: CdpSession,
        load_timeout_ms: int = config.LOAD_TIMEOUT_MS,
        print_timeout_ms: int | None = config.PRINT_TIMEOUT_MS,
        page_options: PageOptions | None = None,
    ):
        if session is None:
            raise ValueError("CdpSession cannot be None")
        self._session = session
        self._load_timeout_ms = load_timeout_ms
        self._controller = PageController(session, load_timeout_ms, print_timeout_ms)
        self._page_options = page_options
        self.last_context: ConversionContext | None = None

    def convert(
        self,
        html: str,
        options: PdfOptions | None = None,
        *,
        css: str | None = None,
        javascript: str | None = None,
        wait_for: Sequence[WaitStrategy] = (),
        base_url: str | None = None,
        load_strategy: str = "auto",
    ) -> bytes:
        """
        Convert an HTML document to PDF bytes.

        After the load, wait_for strategies run within what is left of the
        load timeout, then css is applied and javascript executed.

        Raises:
            ValueError: On None html or an unknown load strategy
            PresseError: CONNECTION_FAILED, TIMEOUT, PAGE_LOAD_FAILED or
                GENERATION_FAILED
        """
        if html is None:
            raise ValueError("HTML content cannot be None")

        strategy = choose_load_strategy(html, base_url, load_strategy)
        context = ConversionContext(
            session=self._session,
            options=options,
            load_timeout_ms=self._load_timeout_ms,
            source_identifier=DEFAULT_SOURCE_IDENTIFIER,
        )

        def load() -> None:
            if strategy == "inject":
                self._controller.set_document_content(html, base_url)
            elif base_url is not None:
                self._controller.load_html_content(
                    inject_base_url(html, validate_navigation_url(base_url))
                )
            else:
                self._controller.load_html_content(html)

        logger.debug(f"Loading {len(html)} chars of HTML via {strategy}")
        return self._run(context, load, css, javascript, wait_for)

    def convert_url(
        self,
        url: str,
        options: PdfOptions | None = None,
        *,
        css: str | None = None,
        javascript: str | None = None,
        wait_for: Sequence[WaitStrategy] = (),
    ) -> bytes:
        """Navigate to a URL and print it. Extras behave as in convert()."""
        url = validate_navigation_url(url)
        context = ConversionContext(
            session=self._session,
            options=options,
            load_timeout_ms=self._load_timeout_ms,
            source_identifier=url,
        )
        return self._run(
            context, lambda: self._controller.navigate_to_url(url), css, javascript, wait_for
        )

    def _run(
        self,
        context: ConversionContext,
        load: Callable[[], None],
        css: str | None,
        javascript: str | None,
        wait_for: Sequence[WaitStrategy],
    ) -> bytes:
        if not self._session.is_connected:
            raise PresseError(
                ErrorKind.CONNECTION_FAILED,
                "CdpSession is not connected. Call connect() first.",
            )

        self.last_context = context
        logger.info(f"Converting {shorten(context.source_identifier)} to PDF")
        context.mark_started()
        try:
            if self._page_options is not None:
                self._controller.apply_page_options(self._page_options)
            load_started = time.monotonic()
            load()
            if wait_for:
                elapsed_ms = int((time.monotonic() - load_started) * 1000)
                self._controller.wait_until_ready(wait_for, self._load_timeout_ms - elapsed_ms)
            if css:
                self._controller.inject_css(css)
            if javascript:
                self._controller.execute_javascript(javascript)
            pdf = self._controller.generate_pdf(context.options)
        finally:
            context.mark_completed()

        if not pdf.startswith(PDF_SIGNATURE):
            raise PresseError(
                ErrorKind.GENERATION_FAILED,
                "Generated data does not appear to be a valid PDF",
                details={"leading_bytes": pdf[:8].hex()},
            )

        logger.info(f"PDF generated successfully ({len(pdf)} bytes, {context.duration_ms} ms)")
        return pdf


# =============================================================================
# TOOL ENTRY POINTS (CLI / MCP)
# =============================================================================

def build_pdf_options(params: dict[str, Any] | None = None) -> PdfOptions:
    """
    Build PdfOptions from loose tool parameters.

    Besides PdfOptions field names, accepts:
        paper_format: "a4", "letter", ...
        margins: all four margins, number (inches) or unit string ("1cm")
        header_footer: one of HEADER_FOOTER_PRESETS

    Raises:
        ValueError: On unknown keys or invalid values
    """
    params = dict(params or {})
    paper_format = params.pop("paper_format", None)
    margins = params.pop("margins", None)
    preset = params.pop("header_footer", None)

    known = {f.name for f in dataclasses.fields(PdfOptions)}
    unknown = sorted(set(params) - known)
    if unknown:
        raise ValueError(f"Unknown PDF option(s): {', '.join(unknown)}")

    options = PdfOptions.build(
        paper_format=PaperFormat.from_name(paper_format) if paper_format else None,
        margins=margins,
        **params,
    )

    if preset:
        if preset not in HEADER_FOOTER_PRESETS:
            allowed = ", ".join(sorted(HEADER_FOOTER_PRESETS))
            raise ValueError(f"Unknown header_footer preset: '{preset}'. Expected one of: {allowed}")
        options = HEADER_FOOTER_PRESETS[preset](options)

    return options


WAIT_KEYS = frozenset({"network_idle", "quiet_ms", "selector", "visible", "condition", "delay_ms"})


def build_wait_strategies(params: dict[str, Any] | None = None) -> list[WaitStrategy]:
    """
    Build wait strategies from loose tool parameters.

    Keys (all optional, run in this order):
        network_idle: true to wait for network quiet; quiet_ms tunes the
            quiet period (default 500)
        selector: CSS selector that must match; visible: also require it
            to be rendered
        condition: JavaScript expression that must become truthy
        delay_ms: fixed pause

    Raises:
        ValueError: On unknown keys or invalid values
    """
    params = params or {}
    unknown = sorted(set(params) - WAIT_KEYS)
    if unknown:
        raise ValueError(f"Unknown wait option(s): {', '.join(unknown)}")

    strategies: list[WaitStrategy] = []
    quiet_ms = params.get("quiet_ms")
    if params.get("network_idle"):
        strategies.append(NetworkIdleWait(quiet_period_ms=500 if quiet_ms is None else quiet_ms))
    elif quiet_ms is not None:
        raise ValueError("quiet_ms only applies with network_idle")
    if params.get("selector") is not None:
        strategies.append(ElementWait(params["selector"], visible=bool(params.get("visible"))))
    elif params.get("visible"):
        raise ValueError("visible only applies with selector")
    if params.get("condition") is not None:
        strategies.append(ConditionWait(params["condition"]))
    if params.get("delay_ms") is not None:
        strategies.append(DelayWait(params["delay_ms"]))
    return strategies


def _load_timeout(load_timeout_ms: int | None) -> int:
    timeout_ms = config.LOAD_TIMEOUT_MS if load_timeout_ms is None else load_timeout_ms
    if timeout_ms <= 0:
        raise ValueError(f"Load timeout must be positive, got {timeout_ms}")
    return timeout_ms


def _check_url(url: str | None, allow_private_hosts: bool | None) -> str:
    """Apply the configured URL policy to a caller-supplied URL."""
    return check_url_allowed(
        url,
        allow_private_hosts=(
            config.ALLOW_PRIVATE_HOSTS if allow_private_hosts is None else allow_private_hosts
        ),
        allowed_domains=config.ALLOWED_DOMAINS,
        blocked_domains=config.BLOCKED_DOMAINS,
    )


def _invalid_input(e: ValueError) -> dict[str, Any]:
    return {"error": True, "kind": ErrorKind.INVALID_INPUT.value, "message": str(e)}


def _deposit(
    pdf: bytes,
    source_kind: Literal["html", "url"],
    title: str,
    resource_id: str,
    context: ConversionContext,
    base_path: str | None,
) -> ConvertResult:
    folder = get_deposit_folder(title, resource_id, Path(base_path) if base_path else None)
    pdf_path = write_pdf(folder, pdf)

    page_count = count_pages(pdf)
    options = context.options
    write_manifest(folder, source_kind, title, resource_id, extra={
        "source": context.source_identifier,
        "size_bytes": len(pdf),
        "page_count": page_count,
        "duration_ms": context.duration_ms,
        "paper": {"width_in": options.paper_width, "height_in": options.paper_height},
        "landscape": options.landscape,
    })

    return ConvertResult(
        path=str(folder),
        pdf_file=str(pdf_path),
        source=context.source_identifier,
        size_bytes=len(pdf),
        duration_ms=context.duration_ms,
        cues={"page_count": page_count, "files": [pdf_path.name, "manifest.json"]},
    )


def do_html_to_pdf(
    html: str | None = None,
    title: str | None = None,
    options: dict[str, Any] | None = None,
    css: str | None = None,
    javascript: str | None = None,
    wait: dict[str, Any] | None = None,
    base_url: str | None = None,
    load_strategy: str = "auto",
    load_timeout_ms: int | None = None,
    base_path: str | None = None,
    allow_private_hosts: bool | None = None,
) -> ConvertResult | dict[str, Any]:
    """
    Convert inline HTML to a PDF deposited under presse-out/.

    Args:
        html: The document
        title: Used for the deposit folder name (default "document")
        options: Loose print options, see build_pdf_options()
        css: Extra stylesheet applied after load
        javascript: Script run after the CSS, as an async function body
        wait: Loose wait options, see build_wait_strategies()
        base_url: Resolve relative links against this URL; checked
            against the URL policy like url_to_pdf targets
        load_strategy: "auto" | "data_url" | "inject"
        load_timeout_ms: Override PRESSE_LOAD_TIMEOUT_MS
        base_path: Working directory for the deposit (defaults to cwd)
        allow_private_hosts: Override PRESSE_ALLOW_PRIVATE_HOSTS

    Returns:
        ConvertResult on success, error dict on failure
    """
    if html is None:
        return _invalid_input(ValueError("html is required"))

    try:
        pdf_options = build_pdf_options(options)
        wait_for = build_wait_strategies(wait)
        timeout_ms = _load_timeout(load_timeout_ms)
        if base_url is not None:
            base_url = _check_url(base_url, allow_private_hosts)
        with open_page_session() as session:
            converter = HtmlToPdfConverter(session, timeout_ms)
            pdf = converter.convert(
                html,
                pdf_options,
                css=css,
                javascript=javascript,
                wait_for=wait_for,
                base_url=base_url,
                load_strategy=load_strategy,
            )
            context = converter.last_context
    except ValueError as e:
        return _invalid_input(e)
    except PresseError as e:
        return e.to_dict()

    assert context is not None
    return _deposit(pdf, "html", title or "document", source_id(html), context, base_path)


def do_url_to_pdf(
    url: str | None = None,
    options: dict[str, Any] | None = None,
    css: str | None = None,
    javascript: str | None = None,
    wait: dict[str, Any] | None = None,
    load_timeout_ms: int | None = None,
    base_path: str | None = None,
    allow_private_hosts: bool | None = None,
) -> ConvertResult | dict[str, Any]:
    """
    Print a web page to a PDF deposited under presse-out/.

    Only http, https and data URLs are accepted, and hosts on loopback or
    private networks are refused unless allow_private_hosts (or
    PRESSE_ALLOW_PRIVATE_HOSTS) says otherwise. See check_url_allowed().

    Returns:
        ConvertResult on success, error dict on failure
    """
    try:
        url = _check_url(url, allow_private_hosts)
        pdf_options = build_pdf_options(options)
        wait_for = build_wait_strategies(wait)
        timeout_ms = _load_timeout(load_timeout_ms)
        with open_page_session() as session:
            converter = HtmlToPdfConverter(session, timeout_ms)
            pdf = converter.convert_url(
                url, pdf_options, css=css, javascript=javascript, wait_for=wait_for
            )
            context = converter.last_context
    except ValueError as e:
        return _invalid_input(e)
    except PresseError as e:
        return e.to_dict()

    assert context is not None
    return _deposit(pdf, "url", url, source_id(url), context, base_path)
