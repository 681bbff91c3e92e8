"""PDF text extraction backed by PyPDF2."""
from __future__ import annotations

from io import BytesIO

import PyPDF2

from payment_analyzer.infrastructure.parsing.utils import PAGE_BREAK


class PdfTextExtractor:
    """Reads every page's text layer; pages are joined with a form feed.

    Scanned documents without a text layer come back as blank pages, which the
    parsers then report as holding no data.
    """

    def extract_text(self, content: bytes, filename: str) -> str:
        reader = PyPDF2.PdfReader(BytesIO(content))
        pages = [page.extract_text() or "" for page in reader.pages]
        return PAGE_BREAK.join(pages)
