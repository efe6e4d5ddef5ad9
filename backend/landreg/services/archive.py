"""
Title deeds archive extraction.
"""

import io
import logging
import os
import zipfile

logger = logging.getLogger(__name__)


class ArchiveError(Exception):
    """Raised when the title deeds ZIP cannot be opened."""
    def __init__(self, message: str, error_code: str = "archive_unreadable"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def extract_title_documents(zip_bytes: bytes) -> dict[str, bytes]:
    """
    Map title number to PDF bytes for every .pdf entry in the archive.

    The title number is the entry's file name without directory or
    extension, upper-cased so lookups are case-insensitive. Directories and
    non-PDF entries are ignored.

    Raises:
        ArchiveError: if the bytes are not a readable ZIP
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(zip_bytes))
    except (zipfile.BadZipFile, ValueError) as e:
        raise ArchiveError(f"Could not open title deeds archive: {e}")

    documents: dict[str, bytes] = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            base = os.path.basename(info.filename)
            stem, ext = os.path.splitext(base)
            if ext.lower() != ".pdf" or not stem:
                continue
            try:
                documents[stem.upper()] = archive.read(info)
            except (zipfile.BadZipFile, OSError) as e:
                raise ArchiveError(f"Could not read {info.filename} from archive: {e}")

    logger.info(f"Extracted {len(documents)} title deed PDF(s) from archive")
    return documents
