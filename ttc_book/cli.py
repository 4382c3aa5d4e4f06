"""
CLI de operacion sobre la Book API.

Variables de entorno (o .env): ver ttc_book.core.config.Settings.

Ejecucion:
  ttc-book tables
  ttc-book values <table_code> [--key description --value "First item"]
  ttc-book upsert rows.json
  ttc-book upload <table_code> <field_code> <row_id> ./archivo.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import httpx
from dotenv import load_dotenv
from loguru import logger

from ttc_book.core.config import Settings
from ttc_book.core.logging import configure_logging
from ttc_book.infrastructure.book_api import Book
from ttc_book.shared.exceptions.base import BookException
from ttc_book.shared.exceptions.domain import ValidationException


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ttc-book", description="Cliente de la Book API")
    parser.add_argument("--env-file", default=".env", help="Archivo .env a cargar (si existe)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tables", help="Lista las tablas del book")

    p_values = sub.add_parser("values", help="Valores de una tabla")
    p_values.add_argument("table_code")
    p_values.add_argument("--key", default=None, help="fixed_code del campo a filtrar")
    p_values.add_argument("--value", default=None, help="Valor buscado (predicado 'is')")

    p_upsert = sub.add_parser("upsert", help="Upsert por lotes desde un JSON {rowId: fieldValues}")
    p_upsert.add_argument("json_file", type=Path)

    p_upload = sub.add_parser("upload", help="Sube un archivo a un campo de una fila")
    p_upload.add_argument("table_code")
    p_upload.add_argument("field_code")
    p_upload.add_argument("row_id")
    p_upload.add_argument("path", type=Path)

    return parser


def _output_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def run_command(book: Book, args: argparse.Namespace) -> Any:
    """Ejecuta el subcomando contra una sesion ya construida."""
    await book.fetch_tables()

    if args.command == "tables":
        return [
            {"id": table.get("id"), "code": table.get("code"), "name": table.get("name")}
            for table in book.tables or []
        ]

    if args.command == "values":
        table = book.get_table_with_code(args.table_code)
        if (args.key is None) != (args.value is None):
            raise ValidationException("--key and --value must be used together", field="key")
        row_filter: Optional[dict[str, Any]] = None
        if args.key is not None:
            row_filter = book.get_filter_config(table, {"key": args.key, "value": args.value})["filter"]
        return await book.fetch_table_values(table["id"], row_filter)

    if args.command == "upsert":
        rows = json.loads(args.json_file.read_text(encoding="utf-8"))
        if not isinstance(rows, dict):
            raise ValidationException("rows file must contain a JSON object", field="json_file")
        total = len(rows)
        committed = await book.create_or_update_rows(rows)
        return {"rows": total, "committed": committed}

    if args.command == "upload":
        return await book.upload_file(args.table_code, args.field_code, args.row_id, args.path)

    raise ValidationException(f"unknown command {args.command}", field="command")


async def _run(args: argparse.Namespace) -> Any:
    settings = Settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE or None)
    async with Book.from_settings(settings) as book:
        return await run_command(book, args)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(args.env_file, override=False)

    try:
        result = asyncio.run(_run(args))
    except (BookException, httpx.HTTPError, OSError, json.JSONDecodeError) as e:
        logger.error(f"{args.command} fallo: {e}")
        return 1

    _output_json(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
