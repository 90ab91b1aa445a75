#!/usr/bin/env python3
"""
presse MCP Server

HTML and web pages to PDF through a running Chrome (DevTools Protocol).

Tools:
- html_to_pdf: Inline HTML to a PDF on disk
- url_to_pdf: A web page to a PDF on disk

PDFs are deposited to presse-out/ under base_path; tools return the path,
never the bytes. Documentation is provided via MCP Resources, not a tool.

Architecture:
- adapters/: CDP session and page control
- tools/: Tool implementations (conversion + deposit)
- workspace/: Deposit folder management
- server.py: Thin MCP wrappers (this file)
"""

import os
import signal
from typing import Any

from mcp.server.fastmcp import FastMCP

import config
from logging_config import configure_logging
from tools import do_html_to_pdf, do_url_to_pdf

_BASE_PATH_REQUIRED = {
    "error": True,
    "kind": "invalid_input",
    "message": "base_path is required. Pass your working directory so PDFs land in your project, not the MCP server's directory",
}

# Initialize MCP server
mcp = FastMCP("presse")


def _print_options(
    paper_format: str | None,
    landscape: bool,
    print_background: bool,
    scale: float | None,
    margins: str | None,
    page_ranges: str | None,
    header_footer: str | None,
) -> dict[str, Any]:
    options: dict[str, Any] = {
        "landscape": landscape,
        "print_background": print_background,
    }
    if paper_format:
        options["paper_format"] = paper_format
    if scale is not None:
        options["scale"] = scale
    if margins:
        options["margins"] = margins
    if page_ranges:
        options["page_ranges"] = page_ranges
    if header_footer:
        options["header_footer"] = header_footer
    return options


def _wait_options(
    wait_for_selector: str | None,
    wait_for_visible: bool,
    wait_for_network_idle: bool,
    wait_for_condition: str | None,
    wait_ms: int | None,
) -> dict[str, Any]:
    wait: dict[str, Any] = {}
    if wait_for_network_idle:
        wait["network_idle"] = True
    if wait_for_selector:
        wait["selector"] = wait_for_selector
    if wait_for_visible:
        wait["visible"] = True
    if wait_for_condition:
        wait["condition"] = wait_for_condition
    if wait_ms is not None:
        wait["delay_ms"] = wait_ms
    return wait


# ============================================================================
# TOOLS (thin wrappers)
# ============================================================================

@mcp.tool()
def html_to_pdf(
    html: str,
    base_path: str = "",
    title: str = "document",
    paper_format: str | None = None,
    landscape: bool = False,
    print_background: bool = False,
    scale: float | None = None,
    margins: str | None = None,
    page_ranges: str | None = None,
    header_footer: str | None = None,
    css: str | None = None,
    javascript: str | None = None,
    wait_for_selector: str | None = None,
    wait_for_visible: bool = False,
    wait_for_network_idle: bool = False,
    wait_for_condition: str | None = None,
    wait_ms: int | None = None,
    base_url: str | None = None,
) -> dict[str, Any]:
    """
    Render HTML to PDF with headless Chrome.

    Writes document.pdf + manifest.json to presse-out/pdf--{title}--{id}/.

    Args:
        html: Complete document or fragment
        base_path: Directory for deposits (pass your cwd)
        title: Names the deposit folder
        paper_format: letter (default), legal, tabloid, ledger, a0-a6
        landscape: Landscape orientation
        print_background: Include background colors and images
        scale: 0.1 to 2.0
        margins: All four margins, e.g. "1cm", "0.5in", "10mm", "96px"
        page_ranges: e.g. "1-5, 8, 11-13" (default: all pages)
        header_footer: page_numbers | title_header | date_footer | standard
        css: Extra stylesheet applied after the page loads
        javascript: Script run after the stylesheet, as an async function
            body (may await; a throw fails the conversion)
        wait_for_selector: Wait until this CSS selector matches
        wait_for_visible: With wait_for_selector, also require it rendered
        wait_for_network_idle: Wait until no requests for 500 ms
        wait_for_condition: Wait until this JavaScript expression is truthy
        wait_ms: Fixed pause after load
        base_url: Resolve relative links (images, stylesheets) against this
            URL. Must be public http(s), like url_to_pdf targets

    Returns:
        path: Deposit folder
        pdf_file: Path to the PDF
        size_bytes, duration_ms
        cues: page_count and deposited files
    """
    if not base_path:
        return dict(_BASE_PATH_REQUIRED)
    options = _print_options(
        paper_format, landscape, print_background, scale, margins, page_ranges, header_footer
    )
    wait = _wait_options(
        wait_for_selector, wait_for_visible, wait_for_network_idle, wait_for_condition, wait_ms
    )
    result = do_html_to_pdf(
        html,
        title=title,
        options=options,
        css=css,
        javascript=javascript,
        wait=wait,
        base_url=base_url,
        base_path=base_path,
    )
    return result if isinstance(result, dict) else result.to_dict()


@mcp.tool()
def url_to_pdf(
    url: str,
    base_path: str = "",
    paper_format: str | None = None,
    landscape: bool = False,
    print_background: bool = False,
    scale: float | None = None,
    margins: str | None = None,
    page_ranges: str | None = None,
    header_footer: str | None = None,
    css: str | None = None,
    javascript: str | None = None,
    wait_for_selector: str | None = None,
    wait_for_visible: bool = False,
    wait_for_network_idle: bool = False,
    wait_for_condition: str | None = None,
    wait_ms: int | None = None,
) -> dict[str, Any]:
    """
    Print a web page to PDF with headless Chrome.

    Waits for DOMContentLoaded plus any wait_for_* conditions, then
    prints. Same options as html_to_pdf.

    Args:
        url: Public http(s):// URL, or a data: URL. Hosts on localhost or
            private networks are refused unless the server was started
            with PRESSE_ALLOW_PRIVATE_HOSTS=1
        base_path: Directory for deposits (pass your cwd)

    Returns:
        Same shape as html_to_pdf
    """
    if not base_path:
        return dict(_BASE_PATH_REQUIRED)
    options = _print_options(
        paper_format, landscape, print_background, scale, margins, page_ranges, header_footer
    )
    wait = _wait_options(
        wait_for_selector, wait_for_visible, wait_for_network_idle, wait_for_condition, wait_ms
    )
    result = do_url_to_pdf(
        url, options=options, css=css, javascript=javascript, wait=wait, base_path=base_path
    )
    return result if isinstance(result, dict) else result.to_dict()


# ============================================================================
# RESOURCES
# ============================================================================

@mcp.resource("presse://docs/overview")
def docs_overview() -> str:
    """Overview of the presse MCP server."""
    return f"""# presse

HTML to PDF through a running Chrome instance.

## Tools

| Tool | Input | Writes files? |
|------|-------|---------------|
| `html_to_pdf` | Inline HTML | Yes |
| `url_to_pdf` | A public http(s) or data: URL | Yes |

## Chrome

Chrome must already be running with remote debugging:

    chrome --headless=new --remote-debugging-port={config.CDP_PORT}

Each call opens its own tab and closes it afterwards.

## Waiting

Both tools print once DOMContentLoaded fires. For pages that keep
rendering after that, pass wait_for_network_idle, wait_for_selector
(optionally wait_for_visible), wait_for_condition or wait_ms. They run in
that order and share the load timeout (PRESSE_LOAD_TIMEOUT_MS).

## URL policy

url_to_pdf and base_url accept http, https and data: URLs. Hosts that are
localhost or resolve to loopback, private or link-local addresses are
refused unless PRESSE_ALLOW_PRIVATE_HOSTS=1. PRESSE_ALLOWED_DOMAINS (a
whitelist) and PRESSE_BLOCKED_DOMAINS take comma-separated domains.

## Deposit layout

    {config.OUTPUT_DIR_NAME}/pdf--{{title-slug}}--{{id}}/
        document.pdf
        manifest.json

The id is a short hash of the source; converting the same input again
overwrites the same folder.

## Errors

Errors come back as `{{"error": true, "kind": ..., "message": ...}}` with kind one of
`connection_failed`, `timeout`, `page_load_failed`, `generation_failed`,
`invalid_input`.
"""


@mcp.resource("presse://docs/options")
def docs_options() -> str:
    """Print option reference."""
    return """# Print options

| Option | Default | Notes |
|--------|---------|-------|
| paper_format | letter | letter, legal, tabloid, ledger, a0-a6 |
| landscape | false | |
| print_background | false | Off by default, like the browser print dialog |
| scale | 1.0 | 0.1 to 2.0 |
| margins | 0.4in | Units: in, cm, mm, px (96px = 1in) |
| page_ranges | all | "1-5, 8, 11-13"; pages start at 1 |
| header_footer | none | page_numbers, title_header, date_footer, standard |

Header/footer presets print in the page margins, so leave at least ~0.5in
top/bottom when using them.
"""


# ============================================================================
# SERVER ENTRY POINT
# ============================================================================

def _shutdown_handler(signum: int, frame: object) -> None:
    """Handle termination signals by exiting immediately.

    os._exit() is required because sys.exit() raises SystemExit,
    which asyncio's event loop catches and ignores.
    """
    os._exit(0)


def main() -> None:
    signal.signal(signal.SIGTERM, _shutdown_handler)
    signal.signal(signal.SIGINT, _shutdown_handler)
    configure_logging(config.LOG_LEVEL)
    mcp.run()


if __name__ == "__main__":
    main()
