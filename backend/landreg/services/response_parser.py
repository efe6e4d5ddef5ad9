"""
HMLR results spreadsheet parser.

HMLR returns one row per submitted record in a fixed 13-column layout
after a single header row:

  0 CustomerRef            9  Input Postcode
  1 Forename               10 Address Match Result
  2 Surname                11 Title Number
  3 Company Name Supplied  12 Name Match Result
  4-8 Input Address one..five

Public API:
  parse_response_workbook(file_content, filename) -> list[ResponseRow]
  validate_title_number(title_number)             -> str
"""

import io
import logging
import re

import openpyxl
import xlrd

from landreg.models.hmlr import ResponseRow

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a results workbook cannot be read."""
    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


# ---------------------------------------------------------------------------
# Column layout
# ---------------------------------------------------------------------------

COL_CUSTOMER_REF = 0
COL_FORENAME = 1
COL_SURNAME = 2
COL_COMPANY_NAME = 3
COL_ADDRESS_FIRST = 4
COL_ADDRESS_LAST = 8
COL_POSTCODE = 9
COL_ADDRESS_MATCH = 10
COL_TITLE_NUMBER = 11
COL_NAME_MATCH = 12
COLUMN_COUNT = 13

ENCRYPTED_EXTENSIONS = {".rpmsg"}
SUPPORTED_EXTENSIONS = {".xlsx", ".xls"}

# Optional county prefix of up to three letters, then the serial number.
TITLE_NUMBER_PATTERN = re.compile(r"^[A-Z]{0,3}\d{1,7}$")


def _cell_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value == int(value):
        return str(int(value))
    return str(value).strip()


def _extension(filename: str) -> str:
    lower = (filename or "").lower()
    dot = lower.rfind(".")
    return lower[dot:] if dot >= 0 else ""


def validate_title_number(title_number: str) -> str:
    """
    Normalise a title number to upper case, rejecting values that cannot be
    an HMLR title. Blank is allowed (no property match).

    Raises:
        ValueError: for a non-blank value that is not a title number
    """
    normalised = re.sub(r"\s+", "", title_number or "").upper()
    if normalised and not TITLE_NUMBER_PATTERN.match(normalised):
        raise ValueError(f"Invalid title number '{title_number}'")
    return normalised


# ---------------------------------------------------------------------------
# Workbook readers
# ---------------------------------------------------------------------------

def _read_xlsx_rows(file_content: bytes) -> list[list]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(file_content), data_only=True, read_only=True)
    except Exception as e:
        raise ParseError(f"Could not parse xlsx file: {e}", "parse_failed")

    try:
        ws = wb.worksheets[0]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_xls_rows(file_content: bytes) -> list[list]:
    try:
        wb = xlrd.open_workbook(file_contents=file_content)
    except Exception as e:
        raise ParseError(f"Could not parse xls file: {e}", "parse_failed")

    ws = wb.sheet_by_index(0)
    rows = []
    for row_idx in range(ws.nrows):
        row = []
        for col_idx in range(ws.ncols):
            cell = ws.cell(row_idx, col_idx)
            if cell.ctype == xlrd.XL_CELL_EMPTY:
                row.append(None)
            else:
                row.append(cell.value)
        rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_response_workbook(file_content: bytes, filename: str) -> list[ResponseRow]:
    """
    Parse an HMLR results workbook into ResponseRows.

    The first row is the header. Rows whose CustomerRef is blank are
    skipped. Parsing the same bytes twice yields identical rows.

    Raises:
        ParseError: encrypted (.rpmsg) attachment, unsupported extension,
                    or unreadable workbook
    """
    ext = _extension(filename)
    if ext in ENCRYPTED_EXTENSIONS:
        raise ParseError(
            f"{filename} is rights-protected (.rpmsg); decryption is not supported",
            "encrypted",
        )
    if ext not in SUPPORTED_EXTENSIONS:
        raise ParseError(f"Unsupported results file type: {filename}", "unsupported_file_type")
    if not file_content:
        raise ParseError(f"{filename} is empty", "empty_file")

    raw_rows = _read_xls_rows(file_content) if ext == ".xls" else _read_xlsx_rows(file_content)

    rows: list[ResponseRow] = []
    for index, raw in enumerate(raw_rows[1:], start=2):
        cells = [_cell_str(v) for v in (raw or [])]
        if not any(cells):
            continue
        cells += [""] * (COLUMN_COUNT - len(cells))

        customer_ref = cells[COL_CUSTOMER_REF]
        if not customer_ref:
            logger.debug(f"Row {index}: no CustomerRef, skipped")
            continue

        rows.append(ResponseRow(
            row_number=index,
            customer_ref=customer_ref,
            forename=cells[COL_FORENAME],
            surname=cells[COL_SURNAME],
            company_name=cells[COL_COMPANY_NAME],
            address_lines=cells[COL_ADDRESS_FIRST:COL_ADDRESS_LAST + 1],
            postcode=cells[COL_POSTCODE],
            address_match_result=cells[COL_ADDRESS_MATCH],
            title_number=cells[COL_TITLE_NUMBER],
            name_match_result=cells[COL_NAME_MATCH],
        ))

    logger.info(f"Parsed {len(rows)} response row(s) from {filename}")
    return rows
