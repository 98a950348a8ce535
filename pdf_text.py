"""Pull the text layer out of a user-selected PDF."""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Union

from pypdf import PdfReader

from errors import DocumentExtractionError


LOGGER = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def extract_text(path: Optional[PathLike]) -> str:
    """Return the text of every page, joined with newlines.

    Raises ``DocumentExtractionError`` when the file is missing or pypdf
    cannot read it. Pages without a text layer contribute an empty line.
    """
    if path is None or not os.path.isfile(path):
        raise DocumentExtractionError("File not found or is null")

    name = os.path.basename(os.fspath(path))
    try:
        reader = PdfReader(path)
        parts: List[str] = [page.extract_text() or "" for page in reader.pages]
    except Exception as exc:  # pypdf raises TypeError/KeyError/... on damaged files
        raise DocumentExtractionError(f"Failed to extract text from PDF: {name}") from exc

    LOGGER.info("Extracted %d page(s) from %s", len(parts), name)
    return "\n".join(parts)
