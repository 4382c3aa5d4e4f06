"""
Tests de upload_file (multipart, parte qqfile).
"""
from __future__ import annotations

import pytest

from ttc_book.infrastructure.book_api import BookCredentials
from ttc_book.shared.exceptions.api import BookApiError
from ttc_book.shared.exceptions.domain import EntityNotFoundException, ValidationException


@pytest.fixture
def report_file(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.4 fake content")
    return path


@pytest.mark.asyncio
async def test_upload_sends_multipart_with_field_and_row(loaded_book, server, report_file) -> None:
    server.queue("fileUpload", {"status": "ok", "file": {"id": 77}})

    response = await loaded_book.upload_file("test_code", "attachment", 5001, report_file, uuid="fixed-uuid")

    assert response == {"status": "ok", "file": {"id": 77}}
    form = server.requests_for("fileUpload")[0]
    assert form["req"] == "fileUpload"
    assert form["version"] == "5.89"
    assert form["o_u"] == "ttcapitester"
    assert form["u_c"] == "ttcapitester"
    assert form["sesskey"] == "sess-123"
    assert form["uuid"] == "fixed-uuid"
    assert form["rowId"] == "5001"
    assert form["fieldId"] == "1003"
    assert form["qqfile"]["filename"] == "report.pdf"
    assert form["qqfile"]["content_type"] == "application/pdf"
    assert form["qqfile"]["content"] == b"%PDF-1.4 fake content"


@pytest.mark.asyncio
async def test_upload_generates_uuid_and_honours_overrides(loaded_book, server, report_file) -> None:
    server.queue("fileUpload", {"status": "ok"}, {"status": "ok"})

    await loaded_book.upload_file("test_code", "attachment", 5001, report_file, filename="informe.bin", mimetype="application/x-custom")
    await loaded_book.upload_file("test_code", "attachment", 5001, str(report_file))

    first, second = server.requests_for("fileUpload")
    assert len(first["uuid"]) == 36
    assert first["uuid"] != second["uuid"]
    assert first["qqfile"]["filename"] == "informe.bin"
    assert first["qqfile"]["content_type"] == "application/x-custom"


@pytest.mark.asyncio
async def test_upload_unknown_extension_defaults_to_octet_stream(loaded_book, server, tmp_path) -> None:
    path = tmp_path / "blob.zzqq"
    path.write_bytes(b"\x00\x01")
    server.queue("fileUpload", {"status": "ok"})

    await loaded_book.upload_file("test_code", "attachment", 5001, path)

    assert server.requests_for("fileUpload")[0]["qqfile"]["content_type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_upload_rejects_empty_file(loaded_book, server, tmp_path) -> None:
    path = tmp_path / "empty.txt"
    path.write_bytes(b"")

    with pytest.raises(ValidationException, match="attempt to upload an empty file"):
        await loaded_book.upload_file("test_code", "attachment", 5001, path)

    assert server.requests_for("fileUpload") == []


@pytest.mark.asyncio
async def test_upload_missing_file_raises_os_error(loaded_book, tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        await loaded_book.upload_file("test_code", "attachment", 5001, tmp_path / "nope.pdf")


@pytest.mark.asyncio
async def test_upload_unknown_field(loaded_book, server, report_file) -> None:
    with pytest.raises(EntityNotFoundException):
        await loaded_book.upload_file("test_code", "photo", 5001, report_file)

    assert server.requests_for("fileUpload") == []


@pytest.mark.asyncio
async def test_upload_server_error(loaded_book, server, report_file) -> None:
    server.queue("fileUpload", {"status": "nok", "errorMsg": "file too large"})

    with pytest.raises(BookApiError, match="file too large"):
        await loaded_book.upload_file("test_code", "attachment", 5001, report_file)


@pytest.mark.asyncio
async def test_upload_uses_admin_identity_when_configured(make_book, server, tables_payload, report_file) -> None:
    admin = BookCredentials(b_c="mochatests", b_o="ttcapitester", u_c="admin", sesskey="admin-sess")
    book = make_book(admin=admin)
    server.queue("getBookTables", tables_payload)
    server.queue("fileUpload", {"status": "ok"})
    await book.fetch_tables()

    await book.upload_file("test_code", "attachment", 5001, report_file)

    form = server.requests_for("fileUpload")[0]
    assert form["u_c"] == "admin"
    assert form["o_u"] == "admin"
    assert form["sesskey"] == "admin-sess"
