"""
Tools: CLI/MCP tool implementations.

server.py and cli.py are thin wrappers that call into these.

- html_to_pdf: inline HTML to a deposited PDF
- url_to_pdf: a web page to a deposited PDF
"""

from .convert import HtmlToPdfConverter, build_pdf_options, do_html_to_pdf, do_url_to_pdf

__all__ = ["HtmlToPdfConverter", "build_pdf_options", "do_html_to_pdf", "do_url_to_pdf"]
