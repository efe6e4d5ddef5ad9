"""
Proprietor name extraction from HMLR title registers.

The proprietorship register states owners as free text, e.g.

  PROPRIETOR: JOHN ALAN SMITH of 4 High Street, Anytown AB1 2CD
  PROPRIETOR: JANE DOE and JOHN DOE of 10 Manor Road, Leeds LS1 1AA
  PROPRIETOR: ALICE BROWN of Oak Farm, Kent TN1 1AA and BOB BROWN of 5 Elm Close, Surrey GU1 1AA
  PROPRIETOR: ACME LIMITED (Co. Regn. No. 01234567) of 1 Mill Lane, York YO1 1AA

Names are written in capitals and the word introducing an address is a
lowercase "of". Where the name ends is decided by AddressBoundaryDetector,
which can be swapped for a different heuristic without touching the
extractor.

Public API:
  ProprietorNameExtractor().extract(pdf_bytes, title_number) -> str | None
  ProprietorNameExtractor().extract_from_text(text, title_number) -> str | None
"""

import logging
import re
from typing import Optional

from landreg.services.document_text import DocumentUnreadable, extract_document_text

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# Text after the label up to the next entry number "NN (", the end of the
# register, or the start of the charges register.
PROPRIETOR_PATTERN = re.compile(
    r"PROPRIETOR:\s*(.+?)(?=\s*\d{1,2}\s+\(|\s*End of register|\s*C:\s*Charges Register|$)",
    re.IGNORECASE | re.DOTALL,
)

REGISTRATION_PATTERN = re.compile(
    r"\s*\([^)]*(?:Co\.|Regn|incorporated|OE ID|UK Regn)[^)]*\)",
    re.IGNORECASE,
)

UK_POSTCODE_PATTERN = re.compile(r"\b[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}\b")

ADDRESS_KEYWORDS = (
    "House", "Farm", "Building", "Court", "Lodge", "Hall", "Place", "Gardens",
    "Park", "Road", "Street", "Avenue", "Lane", "Drive", "Close", "Way",
    "Crescent", "Flat", "Apartment", "Cottage", "Mews", "Terrace", "Square",
    "Grove", "Hill", "Green", "Manor", "Barn", "Mill", "Estate", "Unit",
    "Suite", "Floor", "Row", "London", "Birmingham", "Manchester", "Leeds",
    "Bristol", "Liverpool", "Sheffield", "Cardiff", "Nottingham", "Leicester",
)
ADDRESS_KEYWORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(ADDRESS_KEYWORDS) + r")\b", re.IGNORECASE
)

CARE_OF_PATTERN = re.compile(r"\s+(?:care of|c/o)\s+", re.IGNORECASE)
OF_PATTERN = re.compile(r"\s+of\s+")
JOINT_OWNER_SPLIT = re.compile(r"\s+and\s+(?=[A-Z])")
TRAILING_OF = re.compile(r"\s+of$", re.IGNORECASE)

# How far past an "of" to look for address evidence.
ADDRESS_LOOKAHEAD_CHARS = 100


# ---------------------------------------------------------------------------
# Address boundary
# ---------------------------------------------------------------------------

class AddressBoundaryDetector:
    """
    Finds where the owner name stops and the address starts.

    Priority:
      1. "care of" / "c/o"
      2. the first "of" followed by a street number, or by a postcode or an
         address keyword within ADDRESS_LOOKAHEAD_CHARS
      3. the last "of" before the first postcode in the text
    """

    def __init__(self, lookahead_chars: int = ADDRESS_LOOKAHEAD_CHARS):
        self.lookahead_chars = lookahead_chars

    def _introduces_address(self, text: str, match: re.Match) -> bool:
        following = text[match.end():match.end() + self.lookahead_chars]
        if following[:1].isdigit():
            return True
        return bool(
            UK_POSTCODE_PATTERN.search(following)
            or ADDRESS_KEYWORD_PATTERN.search(following)
        )

    def address_of_positions(self, text: str) -> list[int]:
        """Start index of every "of" that looks like it introduces an address."""
        return [
            m.start() for m in OF_PATTERN.finditer(text)
            if self._introduces_address(text, m)
        ]

    def find_boundary(self, text: str) -> Optional[int]:
        care_of = CARE_OF_PATTERN.search(text)
        if care_of:
            return care_of.start()

        positions = self.address_of_positions(text)
        if positions:
            return positions[0]

        postcode = UK_POSTCODE_PATTERN.search(text)
        if postcode:
            preceding = [
                m.start() for m in OF_PATTERN.finditer(text, 0, postcode.start())
            ]
            if preceding:
                return preceding[-1]

        return None


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

def clean_proprietor_name(name: str) -> str:
    cleaned = REGISTRATION_PATTERN.sub("", name)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = cleaned.rstrip(".,;:").strip()
    cleaned = TRAILING_OF.sub("", cleaned)
    return cleaned.rstrip(".,;:").strip()


class ProprietorNameExtractor:
    """Pulls the registered proprietor name(s) out of a title register."""

    def __init__(self, boundary_detector: Optional[AddressBoundaryDetector] = None):
        self.boundary_detector = boundary_detector or AddressBoundaryDetector()

    def extract(self, pdf_bytes: bytes, title_number: str = "") -> Optional[str]:
        """
        Extract the proprietor name from a title register PDF.

        Returns None when the PDF cannot be read or carries no usable
        proprietor entry; neither case is an error for the caller.
        """
        try:
            text = extract_document_text(pdf_bytes)
        except DocumentUnreadable as e:
            logger.warning(f"Title register {title_number} unreadable: {e.message}")
            return None
        return self.extract_from_text(text, title_number)

    def extract_from_text(self, text: str, title_number: str = "") -> Optional[str]:
        match = PROPRIETOR_PATTERN.search(text or "")
        if not match:
            logger.info(f"No PROPRIETOR entry found in {title_number}")
            return None

        proprietor_text = REGISTRATION_PATTERN.sub("", match.group(1))
        proprietor_text = re.sub(r"\s+", " ", proprietor_text).strip()
        logger.debug(f"Raw proprietor text for {title_number}: {proprietor_text}")

        if self._has_separate_owner_addresses(proprietor_text):
            name = self._names_with_separate_addresses(proprietor_text)
        else:
            name = self._name_before_address(proprietor_text, title_number)

        if not name:
            logger.info(f"Could not extract a proprietor name from {title_number}")
            return None

        logger.info(f"Extracted proprietor name for {title_number}: {name}")
        return name

    def _has_separate_owner_addresses(self, text: str) -> bool:
        positions = self.boundary_detector.address_of_positions(text)
        if len(positions) < 2:
            return False
        return JOINT_OWNER_SPLIT.search(text, positions[0]) is not None

    def _names_with_separate_addresses(self, text: str) -> str:
        names = []
        for part in JOINT_OWNER_SPLIT.split(text):
            boundary = self.boundary_detector.find_boundary(part)
            if boundary is None and UK_POSTCODE_PATTERN.search(part):
                # tail of the previous owner's address, e.g. "Rose and Crown Yard"
                continue
            segment = part[:boundary] if boundary is not None else part
            name = clean_proprietor_name(segment)
            if name:
                names.append(name)
        return " and ".join(names)

    def _name_before_address(self, text: str, title_number: str) -> str:
        boundary = self.boundary_detector.find_boundary(text)
        if boundary is None:
            logger.info(
                f"No address boundary in proprietor text for {title_number}; using full entry"
            )
            return clean_proprietor_name(text)
        return clean_proprietor_name(text[:boundary])


def extract_proprietor_name(pdf_bytes: bytes, title_number: str = "") -> Optional[str]:
    """Convenience wrapper using the default boundary heuristic."""
    return ProprietorNameExtractor().extract(pdf_bytes, title_number)
