"""
Title deeds archive extraction tests.
"""

import io
import zipfile

import pytest

from landreg.services.archive import ArchiveError, extract_title_documents


def _make_zip(entries: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def test_maps_title_number_to_pdf_bytes():
    content = _make_zip({"WYK123.pdf": b"%PDF-a", "NYK9.PDF": b"%PDF-b"})

    documents = extract_title_documents(content)

    assert documents == {"WYK123": b"%PDF-a", "NYK9": b"%PDF-b"}


def test_nested_entries_use_file_name_only():
    content = _make_zip({"Response 123/wyk123.pdf": b"%PDF-a"})
    assert extract_title_documents(content) == {"WYK123": b"%PDF-a"}


def test_non_pdf_entries_and_directories_are_ignored():
    content = _make_zip({
        "folder/": b"",
        "readme.txt": b"hello",
        "WYK123.pdf": b"%PDF-a",
    })
    assert list(extract_title_documents(content)) == ["WYK123"]


def test_empty_archive():
    assert extract_title_documents(_make_zip({})) == {}


def test_not_a_zip():
    with pytest.raises(ArchiveError) as exc_info:
        extract_title_documents(b"definitely not a zip")
    assert exc_info.value.error_code == "archive_unreadable"
