"""
Type definitions for presse.

Dataclasses defining the contracts between layers:
- validation.py checks raw values before they land in these types
- adapters/ consume PdfOptions / PageOptions and raise PresseError
- tools/ wire everything together and return ConvertResult

Value objects here are immutable (PdfOptions, PageOptions) except
ConversionContext, which records start/end timestamps for one conversion.
"""

import dataclasses
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from validation import (
    normalize_page_ranges,
    parse_margin,
    validate_margin,
    validate_positive,
    validate_scale,
)

if TYPE_CHECKING:
    from adapters.cdp import CdpSession


# ============================================================================
# ERROR TYPES
# ============================================================================

class ErrorKind(Enum):
    """Categories of errors for consistent handling."""
    CONNECTION_FAILED = "connection_failed"  # Transport unreachable or dropped
    TIMEOUT = "timeout"                      # Load (or print) wait exceeded its bound
    PAGE_LOAD_FAILED = "page_load_failed"    # Navigation or content injection failed
    GENERATION_FAILED = "generation_failed"  # printToPDF produced nothing usable
    INVALID_INPUT = "invalid_input"          # Bad parameters (rendered from ValueError)


class PresseError(Exception):
    """
    Structured error for consistent handling across layers.

    Adapters raise these on protocol failures.
    Tools catch and format for CLI/MCP response.

    The kind is the tag callers switch on; cause is the underlying
    exception when one exists (also chained via ``raise ... from``).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.details = details or {}

    @property
    def timeout_ms(self) -> int | None:
        """The bound that was exceeded, for TIMEOUT errors."""
        return self.details.get("timeout_ms")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for CLI/MCP response."""
        result: dict[str, Any] = {
            "error": True,
            "kind": self.kind.value,
            "message": self.message,
            **self.details,
        }
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result


# ============================================================================
# PAPER FORMATS
# ============================================================================

class PaperFormat(Enum):
    """Common paper formats, (width, height) in inches."""
    LETTER = (8.5, 11.0)
    LEGAL = (8.5, 14.0)
    TABLOID = (11.0, 17.0)
    LEDGER = (17.0, 11.0)
    A0 = (33.1, 46.8)
    A1 = (23.4, 33.1)
    A2 = (16.5, 23.4)
    A3 = (11.7, 16.5)
    A4 = (8.27, 11.7)
    A5 = (5.83, 8.27)
    A6 = (4.13, 5.83)

    @property
    def width(self) -> float:
        return self.value[0]

    @property
    def height(self) -> float:
        return self.value[1]

    @classmethod
    def from_name(cls, name: str) -> "PaperFormat":
        """
        Resolve a format by name, case-insensitively.

        Raises:
            ValueError: If the name is not a known format
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            known = ", ".join(f.name.lower() for f in cls)
            raise ValueError(f"Unknown paper format: '{name}'. Expected one of: {known}") from None


# ============================================================================
# PDF OPTIONS
# ============================================================================

# Header/footer presets. Chrome fills the span classes at print time.
PAGE_NUMBER_FOOTER = (
    '<div style="font-size: 10px; text-align: center; width: 100%;">'
    'Page <span class="pageNumber"></span> of <span class="totalPages"></span>'
    "</div>"
)
TITLE_HEADER = (
    '<div style="font-size: 10px; text-align: center; width: 100%;">'
    '<span class="title"></span>'
    "</div>"
)
DATE_FOOTER = (
    '<div style="font-size: 10px; text-align: center; width: 100%;">'
    '<span class="date"></span>'
    "</div>"
)
STANDARD_HEADER = (
    '<div style="font-size: 10px; padding: 0 0.5cm; width: 100%;">'
    '<span class="title"></span>'
    "</div>"
)

_MARGIN_FIELDS = ("margin_top", "margin_bottom", "margin_left", "margin_right")

Margin = float | int | str


@dataclass(frozen=True)
class PdfOptions:
    """
    Validated print settings for one PDF.

    Maps onto Chrome's Page.printToPDF parameters. All lengths are inches.
    Every instance satisfies the field constraints: construction fails with
    ValueError otherwise.

    Use ``PdfOptions.build()`` to pass margins as unit strings ("1cm") or to
    pick a PaperFormat, and ``evolve()`` to derive a modified copy.
    """
    landscape: bool = False
    display_header_footer: bool = False
    print_background: bool = False
    scale: float = 1.0
    paper_width: float = PaperFormat.LETTER.width
    paper_height: float = PaperFormat.LETTER.height
    margin_top: float = 0.4  # Chrome's default margin
    margin_bottom: float = 0.4
    margin_left: float = 0.4
    margin_right: float = 0.4
    page_ranges: str = ""
    header_template: str = ""
    footer_template: str = ""
    prefer_css_page_size: bool = False

    def __post_init__(self) -> None:
        # frozen: normalized values go through object.__setattr__
        object.__setattr__(self, "scale", validate_scale(self.scale))
        object.__setattr__(self, "paper_width", validate_positive(self.paper_width, "Paper width"))
        object.__setattr__(self, "paper_height", validate_positive(self.paper_height, "Paper height"))
        for name in _MARGIN_FIELDS:
            side = name.removeprefix("margin_").capitalize()
            object.__setattr__(self, name, validate_margin(getattr(self, name), f"{side} margin"))
        object.__setattr__(self, "page_ranges", normalize_page_ranges(self.page_ranges))
        object.__setattr__(self, "header_template", self.header_template or "")
        object.__setattr__(self, "footer_template", self.footer_template or "")

    @classmethod
    def build(
        cls,
        paper_format: PaperFormat | None = None,
        margins: Margin | None = None,
        **fields: Any,
    ) -> "PdfOptions":
        """
        Construct options from loosely-typed input.

        Args:
            paper_format: Overwrites paper_width/paper_height when given
            margins: Sets all four margins (inches, or a unit string like "1cm")
            **fields: Any PdfOptions field; margin_* fields accept unit strings

        Raises:
            ValueError: If any value violates its constraint
        """
        return cls().evolve(paper_format=paper_format, margins=margins, **fields)

    def evolve(
        self,
        paper_format: PaperFormat | None = None,
        margins: Margin | None = None,
        **changes: Any,
    ) -> "PdfOptions":
        """Return a new validated snapshot with changes applied. self is untouched."""
        if margins is not None:
            inches = _margin_to_inches(margins)
            for name in _MARGIN_FIELDS:
                changes.setdefault(name, inches)
        for name in _MARGIN_FIELDS:
            if isinstance(changes.get(name), str):
                changes[name] = parse_margin(changes[name])
        if paper_format is not None:
            changes["paper_width"] = paper_format.width
            changes["paper_height"] = paper_format.height
        return dataclasses.replace(self, **changes)

    # --- Header/footer presets ---

    def with_page_numbers(self) -> "PdfOptions":
        """Centered "Page X of Y" footer."""
        return self.evolve(display_header_footer=True, footer_template=PAGE_NUMBER_FOOTER)

    def with_title_header(self) -> "PdfOptions":
        """Centered document title header."""
        return self.evolve(display_header_footer=True, header_template=TITLE_HEADER)

    def with_date_footer(self) -> "PdfOptions":
        """Centered print date footer."""
        return self.evolve(display_header_footer=True, footer_template=DATE_FOOTER)

    def with_standard_header_footer(self) -> "PdfOptions":
        """Title header on the left, page numbers centered in the footer."""
        return self.evolve(
            display_header_footer=True,
            header_template=STANDARD_HEADER,
            footer_template=PAGE_NUMBER_FOOTER,
        )

    def to_print_params(self) -> dict[str, Any]:
        """
        Parameters for Page.printToPDF.

        Every field is sent on every call. transferMode is left out so Chrome
        returns the document base64-encoded in the response.
        """
        return {
            "landscape": self.landscape,
            "displayHeaderFooter": self.display_header_footer,
            "printBackground": self.print_background,
            "scale": self.scale,
            "paperWidth": self.paper_width,
            "paperHeight": self.paper_height,
            "marginTop": self.margin_top,
            "marginBottom": self.margin_bottom,
            "marginLeft": self.margin_left,
            "marginRight": self.margin_right,
            "pageRanges": self.page_ranges,
            "ignoreInvalidPageRanges": False,
            "headerTemplate": self.header_template,
            "footerTemplate": self.footer_template,
            "preferCSSPageSize": self.prefer_css_page_size,
        }


def _margin_to_inches(value: Margin) -> float:
    if isinstance(value, str):
        return parse_margin(value)
    return validate_margin(value, "Margin")


@dataclass(frozen=True)
class PageOptions:
    """
    Page settings applied before navigation (Emulation domain).

    user_agent=None keeps Chrome's default.
    """
    viewport_width: int = 1920
    viewport_height: int = 1080
    device_scale_factor: float = 1.0
    user_agent: str | None = None
    javascript_enabled: bool = True

    def __post_init__(self) -> None:
        validate_positive(self.viewport_width, "Viewport width")
        validate_positive(self.viewport_height, "Viewport height")
        validate_positive(self.device_scale_factor, "Device scale factor")


# ============================================================================
# CONVERSION CONTEXT
# ============================================================================

DEFAULT_LOAD_TIMEOUT_MS = 30000
DEFAULT_SOURCE_IDENTIFIER = "HTML content"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class ConversionContext:
    """
    State for a single conversion operation.

    The session is borrowed for the operation's duration, never owned.
    Timestamps are wall-clock epoch milliseconds; 0 means "not recorded".
    """
    session: "CdpSession"
    options: PdfOptions = field(default_factory=PdfOptions)
    load_timeout_ms: int = DEFAULT_LOAD_TIMEOUT_MS
    source_identifier: str = DEFAULT_SOURCE_IDENTIFIER
    started_at_ms: int = field(default=0, init=False)
    completed_at_ms: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.session is None:
            raise ValueError("CdpSession cannot be None")
        if self.load_timeout_ms <= 0:
            raise ValueError(f"Load timeout must be positive, got {self.load_timeout_ms}")
        if self.options is None:
            self.options = PdfOptions()
        if self.source_identifier is None:
            self.source_identifier = DEFAULT_SOURCE_IDENTIFIER

    def mark_started(self) -> None:
        self.started_at_ms = _now_ms()

    def mark_completed(self) -> None:
        self.completed_at_ms = _now_ms()

    @property
    def duration_ms(self) -> int:
        """Elapsed time, or 0 unless both timestamps are recorded."""
        if not self.started_at_ms or not self.completed_at_ms:
            return 0
        return max(0, self.completed_at_ms - self.started_at_ms)


# ============================================================================
# TOOL RESPONSE TYPES
# ============================================================================

@dataclass
class ConvertResult:
    """Successful conversion deposited to disk."""
    path: str                    # Deposit folder
    pdf_file: str                # Full path to document.pdf
    source: str                  # URL or "HTML content"
    size_bytes: int
    duration_ms: int
    cues: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "pdf_file": self.pdf_file,
            "source": self.source,
            "size_bytes": self.size_bytes,
            "duration_ms": self.duration_ms,
            "cues": self.cues,
        }
