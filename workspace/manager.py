"""
Workspace Manager: Handles deposit of generated PDFs.

Deposits each conversion into presse-out/pdf--{title}--{id}/ in the
current working directory: document.pdf plus a manifest.json describing
where it came from. The id is a short hash of the source, so converting
the same input again lands in the same folder.
"""

import hashlib
import json
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import config

SourceKind = Literal["html", "url"]

PDF_FILENAME = "document.pdf"
MANIFEST_FILENAME = "manifest.json"


def slugify(text: str, max_length: int = 50) -> str:
    """
    Convert text to a filesystem-safe slug.

    Examples:
        "Quarterly Report 2026" -> "quarterly-report-2026"
        "https://example.com/a/b" -> "https-example-com-a-b"
        "Über Cool Invoice!!!" -> "uber-cool-invoice"
    """
    # Normalize unicode (é -> e, etc)
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii").lower()

    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")

    if len(text) > max_length:
        # Try to break at a hyphen
        text = text[:max_length].rsplit("-", 1)[0]

    return text or "untitled"


def source_id(source: str | bytes) -> str:
    """Short stable identifier for a conversion source (HTML or URL)."""
    raw = source.encode("utf-8") if isinstance(source, str) else source
    return hashlib.sha256(raw).hexdigest()[:12]


def get_deposit_folder(
    title: str,
    resource_id: str,
    base_path: Path | None = None,
) -> Path:
    """
    Get the folder path for depositing a PDF.

    Creates the folder structure:
        presse-out/pdf--{title-slug}--{id}/

    Args:
        title: Human-readable title (will be slugified)
        resource_id: Source identifier, truncated to 12 chars
        base_path: Base directory (defaults to cwd)

    Returns:
        Path to the deposit folder (created if not exists)
    """
    base = base_path or Path.cwd()
    short_id = resource_id[:12]
    folder_path = base / config.OUTPUT_DIR_NAME / f"pdf--{slugify(title)}--{short_id}"
    folder_path.mkdir(parents=True, exist_ok=True)
    return folder_path


def write_pdf(folder: Path, pdf_bytes: bytes, filename: str = PDF_FILENAME) -> Path:
    """Write PDF bytes to the deposit folder."""
    file_path = folder / filename
    file_path.write_bytes(pdf_bytes)
    return file_path


def write_manifest(
    folder: Path,
    source_kind: SourceKind,
    title: str,
    resource_id: str,
    extra: dict[str, Any] | None = None,
) -> Path:
    """
    Write a manifest.json to make the deposit folder self-describing.

    Args:
        folder: Deposit folder from get_deposit_folder()
        source_kind: "html" for inline documents, "url" for navigated pages
        title: Source description (URL or document title)
        resource_id: Source identifier
        extra: Additional metadata (size_bytes, duration_ms, options, ...)

    Returns:
        Path to the manifest file
    """
    manifest: dict[str, Any] = {
        "type": "pdf",
        "source_kind": source_kind,
        "title": title,
        "id": resource_id,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
    if extra:
        manifest.update(extra)

    file_path = folder / MANIFEST_FILENAME
    file_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return file_path
