#!/usr/bin/env python3
"""
CLI interface for presse.

Usage:
    presse html page.html --format a4
    presse url https://example.com --landscape
    presse targets

Same functionality as the MCP tools, via command line. Results are printed
as JSON on stdout; logs go to stderr.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import config
from adapters.cdp import get_browser_version, list_targets
from logging_config import configure_logging
from models import PresseError
from tools import do_html_to_pdf, do_url_to_pdf
from tools.convert import HEADER_FOOTER_PRESETS, LOAD_STRATEGIES


def _print_result(result: Any) -> None:
    payload = result if isinstance(result, dict) else result.to_dict()
    print(json.dumps(payload, indent=2))
    if payload.get("error"):
        sys.exit(1)


def _pdf_options(args: argparse.Namespace) -> dict[str, Any]:
    """Collect print flags into build_pdf_options() parameters."""
    options: dict[str, Any] = {}
    if args.format:
        options["paper_format"] = args.format
    if args.margins:
        options["margins"] = args.margins
    if args.landscape:
        options["landscape"] = True
    if args.background:
        options["print_background"] = True
    if args.scale is not None:
        options["scale"] = args.scale
    if args.pages:
        options["page_ranges"] = args.pages
    if args.header_footer:
        options["header_footer"] = args.header_footer
    if args.css_page_size:
        options["prefer_css_page_size"] = True
    return options


def _read_file(path: str | None) -> str | None:
    if not path:
        return None
    return Path(path).read_text(encoding="utf-8")


def _wait_options(args: argparse.Namespace) -> dict[str, Any]:
    """Collect wait flags into build_wait_strategies() parameters."""
    wait: dict[str, Any] = {}
    if args.wait_network_idle:
        wait["network_idle"] = True
    if args.wait_selector:
        wait["selector"] = args.wait_selector
    if args.wait_visible:
        wait["visible"] = True
    if args.wait_js:
        wait["condition"] = args.wait_js
    if args.wait_ms is not None:
        wait["delay_ms"] = args.wait_ms
    return wait


def cmd_html(args: argparse.Namespace) -> None:
    """Convert an HTML file (or stdin) to PDF."""
    if args.file == "-":
        html = sys.stdin.read()
        title = args.title or "stdin"
    else:
        path = Path(args.file)
        html = path.read_text(encoding="utf-8")
        title = args.title or path.stem

    result = do_html_to_pdf(
        html,
        title=title,
        options=_pdf_options(args),
        css=_read_file(args.css),
        javascript=_read_file(args.js),
        wait=_wait_options(args),
        base_url=args.base_url,
        load_strategy=args.strategy,
        load_timeout_ms=args.timeout,
        base_path=args.output_dir,
        allow_private_hosts=args.allow_private or None,
    )
    _print_result(result)


def cmd_url(args: argparse.Namespace) -> None:
    """Print a web page to PDF."""
    result = do_url_to_pdf(
        args.url,
        options=_pdf_options(args),
        css=_read_file(args.css),
        javascript=_read_file(args.js),
        wait=_wait_options(args),
        load_timeout_ms=args.timeout,
        base_path=args.output_dir,
        allow_private_hosts=args.allow_private or None,
    )
    _print_result(result)


def cmd_targets(args: argparse.Namespace) -> None:
    """Show the browser version and open targets."""
    try:
        version = get_browser_version(args.host, args.port)
        targets = list_targets(args.host, args.port)
    except PresseError as e:
        _print_result(e.to_dict())
        return

    _print_result({
        "browser": version.get("Browser"),
        "protocol_version": version.get("Protocol-Version"),
        "targets": [
            {"id": t.get("id"), "type": t.get("type"), "title": t.get("title"), "url": t.get("url")}
            for t in targets
        ],
    })


def _add_print_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--format", help="Paper format: letter, legal, tabloid, ledger, a0-a6")
    p.add_argument("--margins", help="All margins, e.g. 1cm, 0.5in, 10mm, 96px")
    p.add_argument("--landscape", action="store_true", help="Landscape orientation")
    p.add_argument("--background", action="store_true", help="Print background graphics")
    p.add_argument("--scale", type=float, help="Scale factor 0.1-2.0 (default: 1.0)")
    p.add_argument("--pages", help="Page ranges, e.g. '1-5, 8, 11-13'")
    p.add_argument(
        "--header-footer",
        choices=sorted(HEADER_FOOTER_PRESETS),
        help="Header/footer preset",
    )
    p.add_argument("--css-page-size", action="store_true", help="Prefer CSS @page size")
    p.add_argument("--css", help="Path to a stylesheet applied after load")
    p.add_argument("--js", help="Path to a script run after the stylesheet (async function body)")
    p.add_argument(
        "--wait-network-idle",
        action="store_true",
        help="After load, wait until the network has been quiet for 500 ms",
    )
    p.add_argument("--wait-selector", help="After load, wait until this CSS selector matches")
    p.add_argument(
        "--wait-visible",
        action="store_true",
        help="With --wait-selector, also require the element to be rendered",
    )
    p.add_argument("--wait-js", help="After load, wait until this JavaScript expression is truthy")
    p.add_argument("--wait-ms", type=int, help="After load, pause this many ms")
    p.add_argument(
        "--allow-private",
        action="store_true",
        help="Allow URLs on localhost and private networks",
    )
    p.add_argument(
        "--timeout",
        type=int,
        help=f"Page load timeout in ms (default: {config.LOAD_TIMEOUT_MS})",
    )
    p.add_argument("--output-dir", help="Where presse-out/ is created (default: cwd)")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="HTML to PDF via Chrome DevTools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Chrome must be running with remote debugging enabled:
    chrome --headless=new --remote-debugging-port=9222

Examples:
    presse html invoice.html --format a4 --margins 1cm
    cat report.html | presse html - --title "Q3 report" --header-footer page_numbers
    presse html page.html --base-url https://example.com/assets/
    presse url https://example.com --landscape --background
    presse url https://example.com/dashboard --wait-selector "#chart svg" --wait-visible
    presse url http://localhost:8000/ --allow-private
    presse targets
""",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # html
    html_p = subparsers.add_parser("html", help="Convert an HTML file to PDF")
    html_p.add_argument("file", help="HTML file path, or - for stdin")
    html_p.add_argument("--title", help="Title for the deposit folder (default: file name)")
    html_p.add_argument("--base-url", help="Resolve relative links against this URL")
    html_p.add_argument(
        "--strategy",
        choices=sorted(LOAD_STRATEGIES),
        default="auto",
        help="How HTML reaches the page (default: auto)",
    )
    _add_print_flags(html_p)
    html_p.set_defaults(func=cmd_html)

    # url
    url_p = subparsers.add_parser("url", help="Print a web page to PDF")
    url_p.add_argument("url", help="http(s):// or data: URL")
    _add_print_flags(url_p)
    url_p.set_defaults(func=cmd_url)

    # targets
    targets_p = subparsers.add_parser("targets", help="List DevTools targets")
    targets_p.add_argument("--host", default=config.CDP_HOST, help="DevTools host")
    targets_p.add_argument("--port", type=int, default=config.CDP_PORT, help="DevTools port")
    targets_p.set_defaults(func=cmd_targets)

    args = parser.parse_args(argv)
    configure_logging(config.LOG_LEVEL)
    args.func(args)


if __name__ == "__main__":
    main()
