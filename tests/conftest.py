"""
Configuración de fixtures para pytest.

Las llamadas HTTP se resuelven con httpx.MockTransport: FakeBookServer
registra cada request (form decodificado) y responde con payloads encolados
por discriminador "req".
"""
import json
import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl

import httpx
import pytest

from ttc_book.infrastructure.book_api import Book, BookCredentials

RESOURCES_DIR = Path(__file__).parent / "resources"
ENDPOINT = "https://book.example.com/live/api.php"
VERSION = "5.89"


def load_resource(name: str) -> Any:
    """Lee un JSON de tests/resources."""
    return json.loads((RESOURCES_DIR / name).read_text(encoding="utf-8"))


def _parse_multipart(request: httpx.Request) -> dict[str, Any]:
    boundary = request.headers["content-type"].split("boundary=", 1)[1].encode()
    fields: dict[str, Any] = {}
    for part in request.content.split(b"--" + boundary):
        if b"\r\n\r\n" not in part:
            continue
        raw_headers, body = part.split(b"\r\n\r\n", 1)
        headers = raw_headers.decode()
        name = re.search(r'name="([^"]+)"', headers)
        if not name:
            continue
        body = body[:-2] if body.endswith(b"\r\n") else body
        filename = re.search(r'filename="([^"]*)"', headers)
        if filename:
            content_type = re.search(r"Content-Type: (\S+)", headers)
            fields[name.group(1)] = {
                "filename": filename.group(1),
                "content_type": content_type.group(1) if content_type else None,
                "content": body,
            }
        else:
            fields[name.group(1)] = body.decode()
    return fields


class FakeBookServer:
    """Servidor falso de la Book API para MockTransport."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self._responses: dict[str, list[Any]] = defaultdict(list)
        self.on_request: Optional[Callable[[dict[str, Any]], None]] = None

    def queue(self, req: str, *payloads: Any) -> None:
        """Encola respuestas JSON para un req (se consumen en orden)."""
        self._responses[req].extend(payloads)

    def requests_for(self, req: str) -> list[dict[str, Any]]:
        return [form for form in self.requests if form.get("req") == req]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("multipart/form-data"):
            form = _parse_multipart(request)
        else:
            form = dict(parse_qsl(request.content.decode(), keep_blank_values=True))
        self.requests.append(form)
        if self.on_request:
            self.on_request(form)

        pending = self._responses.get(form.get("req"))
        if not pending:
            return httpx.Response(500, json={"status": "nok", "errorMsg": f"unexpected req {form.get('req')}"})
        payload = pending.pop(0)
        if isinstance(payload, httpx.Response):
            return payload
        return httpx.Response(200, json=payload)


@pytest.fixture
def credentials() -> BookCredentials:
    return BookCredentials(b_c="mochatests", b_o="ttcapitester", u_c="ttcapitester", sesskey="sess-123")


@pytest.fixture
def server() -> FakeBookServer:
    return FakeBookServer()


@pytest.fixture
def make_book(credentials, server) -> Callable[..., Book]:
    """Factory de Book conectado al servidor falso (sin esperas por deadlock)."""

    def _make(**kwargs: Any) -> Book:
        options: dict[str, Any] = {
            "endpoint": ENDPOINT,
            "version": VERSION,
            "client": httpx.AsyncClient(transport=httpx.MockTransport(server)),
            "deadlock_backoff_s": 0.0,
        }
        options.update(kwargs)
        return Book(credentials, **options)

    return _make


@pytest.fixture
def book(make_book) -> Book:
    return make_book()


@pytest.fixture
def resource() -> Callable[[str], Any]:
    return load_resource


@pytest.fixture
def tables_payload() -> dict[str, Any]:
    return load_resource("fetchTables.json")


@pytest.fixture
async def loaded_book(book: Book, server: FakeBookServer, tables_payload) -> Book:
    """Book con las tablas ya cargadas."""
    server.queue("getBookTables", tables_payload)
    await book.fetch_tables()
    return book
