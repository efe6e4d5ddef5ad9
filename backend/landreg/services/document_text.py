"""
Text extraction from title register PDFs.
"""

import io
import logging
import re

import pdfplumber

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class DocumentUnreadable(Exception):
    """Raised when bytes cannot be opened as a PDF."""
    def __init__(self, message: str, error_code: str = "document_unreadable"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def extract_document_text(pdf_bytes: bytes) -> str:
    """
    Extract the text of every page, joined with a space, with all runs of
    whitespace collapsed to a single space.

    Does NOT support scanned PDFs (no OCR); an image-only register yields "".

    Raises:
        DocumentUnreadable: if pdfplumber cannot open or read the document
    """
    if not pdf_bytes:
        raise DocumentUnreadable("Empty document")

    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        raise DocumentUnreadable(f"Could not read PDF: {e}")

    text = _WHITESPACE.sub(" ", " ".join(pages)).strip()
    logger.debug(f"Extracted {len(text)} chars from {len(pages)} page(s)")
    return text
