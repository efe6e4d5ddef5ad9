"""
HMLR results workbook parsing and row status tests.
"""

import io

import openpyxl
import pytest

from landreg.models.hmlr import CheckStatus, MatchType, ResponseRow
from landreg.services.response_parser import (
    ParseError,
    parse_response_workbook,
    validate_title_number,
)

HEADER = [
    "CustomerRef", "Forename", "Surname", "Company Name Supplied",
    "Input Address one", "Input Address two", "Input Address three",
    "Input Address four", "Input Address five", "Input Postcode",
    "Address Match Result", "Title Number", "Name Match Result",
]


def _make_workbook(rows: list[list]) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(HEADER)
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _row(ref="LL-1001", postcode="LS1 1AA", address="Match", title="WYK123", name="Match"):
    return [ref, "John", "Smith", "", "1 High Street", "", "Leeds", "", "", postcode, address, title, name]


class TestParseResponseWorkbook:

    def test_parses_rows_after_header(self):
        content = _make_workbook([_row(), _row(ref="LL-1002", name="No Match")])

        rows = parse_response_workbook(content, "results.xlsx")

        assert len(rows) == 2
        first = rows[0]
        assert first.row_number == 2
        assert first.customer_ref == "LL-1001"
        assert first.forename == "John"
        assert first.surname == "Smith"
        assert first.address_lines == ["1 High Street", "", "Leeds", "", ""]
        assert first.postcode == "LS1 1AA"
        assert first.title_number == "WYK123"
        assert rows[1].row_number == 3
        assert rows[1].name_match_result == "No Match"

    def test_rows_without_customer_ref_are_skipped(self):
        content = _make_workbook([_row(), _row(ref=None), _row(ref="LL-1003")])

        rows = parse_response_workbook(content, "results.xlsx")

        assert [r.customer_ref for r in rows] == ["LL-1001", "LL-1003"]
        assert rows[1].row_number == 4

    def test_numeric_cells_are_read_as_text(self):
        content = _make_workbook([[1001.0, "A", "B", "", "", "", "", "", "", "", "Match", 123456, "Match"]])

        row = parse_response_workbook(content, "results.xlsx")[0]

        assert row.customer_ref == "1001"
        assert row.title_number == "123456"

    def test_short_rows_are_padded(self):
        content = _make_workbook([["LL-1001", "John"]])

        row = parse_response_workbook(content, "results.xlsx")[0]

        assert row.title_number == ""
        assert row.status == CheckStatus.NO_MATCH

    def test_parsing_is_deterministic(self):
        content = _make_workbook([_row(), _row(ref="LL-1002")])
        assert parse_response_workbook(content, "a.xlsx") == parse_response_workbook(content, "a.xlsx")

    def test_rpmsg_is_rejected_as_encrypted(self):
        with pytest.raises(ParseError) as exc_info:
            parse_response_workbook(b"protected", "results.xlsx.rpmsg")
        assert exc_info.value.error_code == "encrypted"

    def test_unsupported_extension(self):
        with pytest.raises(ParseError) as exc_info:
            parse_response_workbook(b"a,b", "results.csv")
        assert exc_info.value.error_code == "unsupported_file_type"

    def test_empty_file(self):
        with pytest.raises(ParseError) as exc_info:
            parse_response_workbook(b"", "results.xlsx")
        assert exc_info.value.error_code == "empty_file"

    def test_corrupt_workbook(self):
        with pytest.raises(ParseError) as exc_info:
            parse_response_workbook(b"not a zip", "results.xlsx")
        assert exc_info.value.error_code == "parse_failed"


class TestRowStatus:

    @pytest.mark.parametrize("address,name,status,match_type", [
        ("Match", "Match", CheckStatus.MATCHED, MatchType.PROPERTY_AND_PERSON),
        ("match ", "MATCH", CheckStatus.MATCHED, MatchType.PROPERTY_AND_PERSON),
        ("Match", "No Match", CheckStatus.UNDER_REVIEW, MatchType.PROPERTY_ONLY),
        ("Match", "", CheckStatus.UNDER_REVIEW, MatchType.PROPERTY_ONLY),
        ("No Match", "Match", CheckStatus.NO_MATCH, MatchType.NO_PROPERTY),
        ("", "", CheckStatus.NO_MATCH, MatchType.NO_PROPERTY),
        ("Partial", "Match", CheckStatus.NO_MATCH, MatchType.NO_PROPERTY),
    ])
    def test_status_from_match_results(self, address, name, status, match_type):
        row = ResponseRow(row_number=2, customer_ref="X", address_match_result=address, name_match_result=name)
        assert row.status == status
        assert row.match_type == match_type

    def test_status_is_serialized(self):
        row = ResponseRow(row_number=2, customer_ref="X", address_match_result="Match", name_match_result="Match")
        dumped = row.model_dump(mode="json")
        assert dumped["status"] == "Matched"
        assert dumped["match_type"] == "Property and Person Match"


class TestValidateTitleNumber:

    @pytest.mark.parametrize("raw,expected", [
        ("WYK123", "WYK123"),
        (" wyk 123 ", "WYK123"),
        ("123456", "123456"),
        ("", ""),
        ("   ", ""),
    ])
    def test_valid(self, raw, expected):
        assert validate_title_number(raw) == expected

    @pytest.mark.parametrize("raw", ["ABCD123", "WYK", "WYK12345678", "WYK-123", "12A"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            validate_title_number(raw)
