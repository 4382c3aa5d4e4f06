"""
Cliente asincrono de la Book API (httpx).

Una instancia de Book es una sesion autenticada:
- Todas las llamadas son POST al mismo endpoint con un discriminador "req".
- Mantiene caches en memoria (tablas, valores por tabla, mapeo de usuarios)
  que solo crecen: no se invalidan dentro de la sesion. Para datos frescos,
  crear otra instancia.
- No es seguro compartir una instancia entre corrutinas concurrentes: las
  caches se escriben sin locks. Serializar las llamadas por instancia.
"""

from __future__ import annotations

import asyncio
import mimetypes
from itertools import islice
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence, Union
from uuid import uuid4

import httpx
from loguru import logger

from ttc_book.core.logging import BOOK_API_CONTEXT
from ttc_book.infrastructure.book_api.filters import (
    DEFAULT_OPERATOR,
    FilterCondition,
    build_equality_filter,
    build_filter_config,
)
from ttc_book.infrastructure.book_api.form_encoding import encode_form
from ttc_book.infrastructure.book_api.types import (
    DEFAULT_TIMEOUT_S,
    REQ_CREATE_OR_UPDATE_ROW,
    REQ_CREATE_OR_UPDATE_ROWS,
    REQ_FILE_UPLOAD,
    REQ_GET_TABLES,
    REQ_GET_VALUES,
    WRITE_BATCH_SIZE,
    BookCredentials,
    Field,
    Table,
    TableValues,
    field_values,
    find_by_key,
    is_deadlock,
    is_ok,
)
from ttc_book.shared.exceptions.api import BookApiError, DeadlockRetryExhaustedException
from ttc_book.shared.exceptions.base import BookException
from ttc_book.shared.exceptions.domain import (
    AmbiguousMatchException,
    EntityNotFoundException,
    MetadataNotLoadedException,
    SyncInterruptedException,
    ValidationException,
)

if TYPE_CHECKING:
    from ttc_book.core.config import Settings


class Book:
    """
    Sesion contra un book de la API.

    Uso:
        async with Book(creds, endpoint=url, version="5.89") as book:
            await book.fetch_tables()
            table = book.get_table_with_code("items")
            await book.create_or_update_rows({"tmp1": {...}})
    """

    def __init__(
        self,
        credentials: BookCredentials,
        *,
        endpoint: str,
        version: str,
        admin: Optional[BookCredentials] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        write_batch_size: int = WRITE_BATCH_SIZE,
        deadlock_max_retries: Optional[int] = 10,
        deadlock_backoff_s: float = 0.5,
        deadlock_max_backoff_s: float = 10.0,
    ) -> None:
        """
        Args:
            credentials: Identidad de la sesion
            endpoint: URL de la API (api.php)
            version: Version de API enviada en cada request
            admin: Override de administrador para la identidad de los requests
            client: AsyncClient a reutilizar; si es None se crea uno propio
            timeout_s: Timeout por request del cliente propio
            write_batch_size: Filas por pagina en create_or_update_rows
            deadlock_max_retries: Reintentos por pagina ante deadlock; None = sin limite
            deadlock_backoff_s: Espera inicial entre reintentos (exponencial)
            deadlock_max_backoff_s: Tope de la espera entre reintentos
        """
        if write_batch_size < 1:
            raise ValidationException("write_batch_size must be >= 1", field="write_batch_size")

        self.credentials = credentials
        self.endpoint = endpoint
        self.version = version
        self.admin = admin
        self.write_batch_size = write_batch_size
        self.deadlock_max_retries = deadlock_max_retries
        self.deadlock_backoff_s = deadlock_backoff_s
        self.deadlock_max_backoff_s = deadlock_max_backoff_s

        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None

        # Caches de sesion: solo crecen
        self._tables: Optional[list[Table]] = None
        self._table_values: dict[Any, TableValues] = {}
        self._user_mapping: Optional[dict[Any, Any]] = None

        self._stopped = False
        self._log = logger.bind(context=BOOK_API_CONTEXT, book=credentials.b_c)

    @classmethod
    def from_settings(cls, settings: "Settings", **kwargs: Any) -> "Book":
        """Construye la sesion desde la configuracion (env / .env)."""
        options: dict[str, Any] = {
            "endpoint": settings.TTC_ENDPOINT,
            "version": settings.TTC_API_VERSION,
            "admin": settings.admin_credentials,
            "timeout_s": settings.REQUEST_TIMEOUT_S,
            "write_batch_size": settings.WRITE_BATCH_SIZE,
            "deadlock_max_retries": settings.DEADLOCK_MAX_RETRIES,
            "deadlock_backoff_s": settings.DEADLOCK_BACKOFF_S,
            "deadlock_max_backoff_s": settings.DEADLOCK_MAX_BACKOFF_S,
        }
        options.update(kwargs)
        return cls(settings.credentials, **options)

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    @property
    def client(self) -> httpx.AsyncClient:
        """Cliente HTTP (se crea al primer uso si no fue inyectado)."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s))
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Cierra el cliente HTTP si es propio."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Book":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def stop(self) -> None:
        """
        Marca la sesion como detenida. Las llamadas siguientes a fetch_tables
        y las paginas pendientes de create_or_update_rows fallan con
        SyncInterruptedException. Lo ya escrito queda escrito.
        """
        self._stopped = True
        self._log.info("Sesion detenida por el usuario")

    @property
    def stopped(self) -> bool:
        return self._stopped

    # ------------------------------------------------------------------
    # Caches (lectura)
    # ------------------------------------------------------------------

    @property
    def tables(self) -> Optional[list[Table]]:
        """Tablas cacheadas por fetch_tables, o None si aun no se pidieron."""
        return self._tables

    @property
    def table_values(self) -> dict[Any, TableValues]:
        """Valores cacheados por id de tabla."""
        return self._table_values

    @property
    def user_mapping(self) -> Optional[dict[Any, Any]]:
        return self._user_mapping

    # ------------------------------------------------------------------
    # Transporte
    # ------------------------------------------------------------------

    @property
    def _identity(self) -> BookCredentials:
        return self.admin or self.credentials

    def _identity_fields(self) -> dict[str, Any]:
        identity = self._identity
        return {
            "version": self.version,
            "o_u": identity.u_c,
            "u_c": identity.u_c,
            "sesskey": identity.sesskey,
        }

    def _ensure_running(self) -> None:
        if self._stopped:
            raise SyncInterruptedException()

    @staticmethod
    def _parse(response: httpx.Response) -> dict[str, Any]:
        response.raise_for_status()
        return response.json()

    async def _post(self, req: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """POST form-encoded con la identidad de sesion y el discriminador req."""
        form = {**self._identity_fields(), "req": req, **fields}
        self._log.debug(f"POST req={req}")
        response = await self.client.post(self.endpoint, data=encode_form(form))
        return self._parse(response)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def fetch_tables(self) -> list[Table]:
        """
        Trae las tablas del book (con sus campos) y las cachea.

        Se descartan las categorias de sistema (sysFunc) y las pivot (pivot_id).
        Si ya estan cacheadas no se hace request.

        Raises:
            BookApiError: si el servidor no responde "ok"
            SyncInterruptedException: si la sesion fue detenida
        """
        self._ensure_running()
        if self._tables is not None:
            return self._tables

        owner = self._identity
        payload = await self._post(
            REQ_GET_TABLES,
            {"b_c": owner.b_c, "b_o": owner.b_o, "includeFields": True},
        )
        if not is_ok(payload):
            raise BookApiError.from_error_msg(payload)

        categories = (payload.get("bookTables") or {}).get("categories") or []
        self._tables = [
            category
            for category in categories
            if not category.get("sysFunc") and not category.get("pivot_id")
        ]
        self._log.debug(f"fetch_tables: {len(self._tables)} tablas")
        return self._tables

    def get_table_with_code(self, code: str) -> Table:
        if self._tables is None:
            raise MetadataNotLoadedException(
                "no tables yet. please use fetch_tables before get_table_with_code"
            )
        table = find_by_key(self._tables, "code", code)
        if table is None:
            raise EntityNotFoundException(f"no table found with code {code}", "table", code)
        return table

    def get_field_with_fixed_code(self, table_code: str, field_fixed_code: str) -> Field:
        table = self.get_table_with_code(table_code)
        field = find_by_key(table.get("fields"), "fixed_code", field_fixed_code)
        if field is None:
            raise EntityNotFoundException(
                f"no field found with code {field_fixed_code} for table with code {table_code}",
                "field",
                field_fixed_code,
            )
        return field

    # ------------------------------------------------------------------
    # Valores
    # ------------------------------------------------------------------

    async def fetch_table_values(self, table_id: Any, filter: Optional[Mapping[str, Any]] = None) -> TableValues:
        """
        Valores de una tabla, cache-aware.

        - Sin filtro y ya cacheado: se devuelve la cache sin request.
        - Con filtro: siempre va al servidor y REEMPLAZA la entrada cacheada
          (no se mezcla con resultados anteriores).
        """
        if not filter and table_id in self._table_values:
            return self._table_values[table_id]

        fields: dict[str, Any] = {"catId": table_id}
        if filter:
            fields["filterRowIds"] = filter
        payload = await self._post(REQ_GET_VALUES, fields)
        if not is_ok(payload):
            raise BookApiError.from_error_msg(payload)

        table_values = payload.get("tableValues") or {}
        self._table_values[table_id] = table_values
        return table_values

    def get_filter_config(
        self,
        table: Table,
        config: Union[FilterCondition, Sequence[FilterCondition]],
        operator: str = DEFAULT_OPERATOR,
    ) -> dict[str, Any]:
        """Filtro listo para fetch_table_values a partir de condiciones por fixed_code."""
        return build_filter_config(table, config, operator)

    # ------------------------------------------------------------------
    # Escrituras
    # ------------------------------------------------------------------

    async def create_or_update_row_with_id(self, row_id: Any, field_values: Mapping[str, Any]) -> Any:
        """
        Crea (row_id temporal) o actualiza (row_id existente) una fila.

        Returns:
            id de la fila asignado por el servidor
        """
        values = {key: value for key, value in field_values.items() if key != "rowId"}
        payload = await self._post(
            REQ_CREATE_OR_UPDATE_ROW,
            {"rowId": row_id, "fieldValues": values, "bypassUrlTrigger": False},
        )
        if not is_ok(payload):
            raise BookApiError.from_payload(payload)

        rows = payload.get("rows")
        if not isinstance(rows, list) or len(rows) != 1:
            raise BookApiError("unable to identify new row id", payload=payload)
        return rows[0].get("id")

    async def create_or_update_row(self, field_values: Mapping[str, Any]) -> Any:
        """
        Upsert de una fila identificada por una clave externa.

        field_values debe traer:
        - "filter": {field_id: clave_externa} (exactamente una entrada)
        - "tableId": id de la tabla
        El resto de claves son los valores a escribir. El dict no se modifica.

        Raises:
            ValidationException: filter o tableId invalidos
            AmbiguousMatchException: mas de una fila con esa clave
        """
        values = dict(field_values)
        row_filter = values.pop("filter", None)
        table_id = values.pop("tableId", None)
        if not isinstance(row_filter, Mapping) or len(row_filter) != 1:
            raise ValidationException("filter must map exactly one field id to a value", field="filter")
        if table_id is None:
            raise ValidationException("tableId is required", field="tableId")

        (field_id, key), = row_filter.items()
        self._log.debug(f"create_or_update_row: tabla {table_id}, clave {key}")
        table_values = await self.fetch_table_values(table_id, build_equality_filter(field_id, key))
        row_id = self._resolve_row_id(table_values, key)
        return await self.create_or_update_row_with_id(row_id, values)

    @staticmethod
    def _resolve_row_id(table_values: TableValues, key: Any) -> Any:
        """0 coincidencias -> id temporal, 1 -> su id, mas -> error."""
        fields = table_values.get("fields")
        if isinstance(fields, list) and fields and isinstance(fields[0].get("values"), list):
            matches = fields[0]["values"]
            if len(matches) == 1:
                return matches[0]["id"]
            if len(matches) > 1:
                raise AmbiguousMatchException(key, len(matches))
        return f"tmp{key}"

    def _deadlock_delay(self, attempt: int) -> float:
        return min(self.deadlock_max_backoff_s, self.deadlock_backoff_s * (2 ** attempt))

    async def create_or_update_rows(self, rows: dict[Any, Mapping[str, Any]]) -> int:
        """
        Upsert por lotes de write_batch_size filas.

        rows mapea row_id (existente o temporal) -> valores. Cada pagina
        confirmada se elimina de rows, por lo que tras un fallo el dict queda
        con las filas pendientes.

        Ante deadlock del servidor se reenvia la misma pagina con backoff
        exponencial, hasta deadlock_max_retries veces seguidas.

        Returns:
            Cantidad de filas confirmadas

        Raises:
            DeadlockRetryExhaustedException: deadlock persistente en una pagina
            BookApiError: cualquier otro status distinto de "ok"
            SyncInterruptedException: si la sesion fue detenida
        """
        self._log.debug(f"create_or_update_rows: {len(rows)} filas")
        committed = 0
        deadlocks = 0

        while rows:
            self._ensure_running()
            page_ids = list(islice(rows, self.write_batch_size))
            page = {row_id: rows[row_id] for row_id in page_ids}
            self._log.debug(f"create_or_update_rows: {len(rows)} pendientes")

            payload = await self._post(REQ_CREATE_OR_UPDATE_ROWS, {"rows": page})

            if is_ok(payload):
                for row_id in page_ids:
                    del rows[row_id]
                committed += len(page_ids)
                deadlocks = 0
                continue

            if is_deadlock(payload):
                if self.deadlock_max_retries is not None and deadlocks >= self.deadlock_max_retries:
                    raise DeadlockRetryExhaustedException(deadlocks, payload)
                delay = self._deadlock_delay(deadlocks)
                deadlocks += 1
                self._log.warning(
                    f"create_or_update_rows: deadlock, reintento {deadlocks} en {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue

            raise BookApiError.from_payload(payload)

        return committed

    # ------------------------------------------------------------------
    # Archivos
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        table_code: str,
        field_fixed_code: str,
        row_id: Any,
        filepath: Union[str, Path],
        uuid: Optional[str] = None,
        filename: Optional[str] = None,
        mimetype: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Sube un archivo a un campo de una fila (multipart, parte "qqfile").

        uuid es el token de idempotencia del upload; si no se pasa se genera uno.

        Con override de administrador el upload tambien viaja con la identidad
        admin (u_c/sesskey del admin), no con la de la sesion.

        Raises:
            OSError: si el archivo no existe o no se puede leer
            ValidationException: si el archivo esta vacio
            EntityNotFoundException: si el campo no existe en la tabla
            BookApiError: si el servidor no responde "ok"
        """
        path = Path(filepath)
        if path.stat().st_size == 0:
            raise ValidationException("attempt to upload an empty file", field="filepath")

        field = self.get_field_with_fixed_code(table_code, field_fixed_code)
        name = filename or path.name
        content_type = mimetype or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        form = {
            **self._identity_fields(),
            "req": REQ_FILE_UPLOAD,
            "uuid": uuid or str(uuid4()),
            "rowId": row_id,
            "fieldId": field["id"],
        }

        self._log.debug(f"POST req={REQ_FILE_UPLOAD} ({name}, {content_type})")
        with path.open("rb") as fh:
            response = await self.client.post(
                self.endpoint,
                data=encode_form(form),
                files={"qqfile": (name, fh, content_type)},
            )
        payload = self._parse(response)
        if not is_ok(payload):
            raise BookApiError.from_payload(payload)
        return payload

    # ------------------------------------------------------------------
    # Mapeo de usuarios
    # ------------------------------------------------------------------

    async def get_user_mapping(
        self,
        mapping_table_code: str,
        user_field_code: str,
        mapped_user_field_code: str,
    ) -> dict[Any, Any]:
        """
        Mapeo {valor de mapped_user_field_code: valor de user_field_code}
        construido una sola vez por sesion a partir de la tabla de mapeo.
        Las claves vacias se descartan.
        """
        if self._user_mapping is not None:
            return self._user_mapping

        table = self.get_table_with_code(mapping_table_code)
        table_values = await self.fetch_table_values(table["id"])

        keys: list[Any] = []
        values: list[Any] = []
        for field in table_values.get("fields") or []:
            code = field.get("fixed_code")
            if code == user_field_code and not values:
                values = field_values(field)
            elif code == mapped_user_field_code and not keys:
                keys = field_values(field)
            if keys and values:
                break

        if not values or len(keys) != len(values):
            raise BookException(
                "could not resolve user mapping",
                details={"keys": len(keys), "values": len(values)},
            )

        self._user_mapping = {key: value for key, value in zip(keys, values) if key}
        return self._user_mapping

    def get_mapped_user(self, u_c: Optional[str] = None) -> Any:
        """Clave del mapeo cuyo valor coincide (sin mayusculas) con el usuario."""
        if self._user_mapping is None:
            raise MetadataNotLoadedException("call get_user_mapping before calling get_mapped_user")

        user_code = u_c or self.credentials.u_c
        for key, value in self._user_mapping.items():
            if isinstance(value, str) and value.lower() == user_code.lower():
                return key
        raise EntityNotFoundException(f"could not find a mapped id for user {user_code}", "user", user_code)
