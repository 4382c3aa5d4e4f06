"""
Tipos, constantes y utilidades puras de la Book API.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

# Discriminadores "req" de la API
REQ_GET_TABLES = "getBookTables"
REQ_GET_VALUES = "getTableValues"
REQ_CREATE_OR_UPDATE_ROW = "createOrUpdateTableRow"
REQ_CREATE_OR_UPDATE_ROWS = "createOrUpdateTableRows"
REQ_FILE_UPLOAD = "fileUpload"

STATUS_OK = "ok"
DEADLOCK_MARKER = "Deadlock"

DEFAULT_TIMEOUT_S = 120.0
WRITE_BATCH_SIZE = 200

# Las tablas, campos y payloads de valores se manejan tal como llegan del servidor.
Table = dict[str, Any]
Field = dict[str, Any]
TableValues = dict[str, Any]


@dataclass(frozen=True)
class BookCredentials:
    """
    Identidad de sesion contra la Book API.

    - b_c: codigo del book
    - b_o: codigo del owner del book
    - u_c: codigo de usuario
    - sesskey: clave de sesion
    """

    b_c: str
    b_o: str
    u_c: str
    sesskey: str


def is_ok(payload: dict[str, Any]) -> bool:
    return payload.get("status") == STATUS_OK


def is_deadlock(payload: dict[str, Any]) -> bool:
    """True si el servidor reporto un deadlock transitorio en la escritura."""
    for key in ("error", "errorMsg"):
        message = payload.get(key)
        if isinstance(message, str) and DEADLOCK_MARKER in message:
            return True
    return False


def find_by_key(items: Optional[list[dict[str, Any]]], key: str, value: Any) -> Optional[dict[str, Any]]:
    """Busqueda lineal; gana la primera coincidencia."""
    for item in items or []:
        if item.get(key) == value:
            return item
    return None


def field_values(field: Field) -> list[Any]:
    """Lista de value de las filas de un campo (payload de getTableValues)."""
    return [entry.get("value") for entry in field.get("values") or []]
