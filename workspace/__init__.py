"""
Workspace: PDF deposit folders.

Handles file deposit to presse-out/pdf--{title}--{id}/ folders.
Filesystem-first pattern: the PDF goes to disk, callers get its path.
"""

from .manager import (
    slugify,
    source_id,
    get_deposit_folder,
    write_pdf,
    write_manifest,
)

__all__ = [
    "slugify",
    "source_id",
    "get_deposit_folder",
    "write_pdf",
    "write_manifest",
]
