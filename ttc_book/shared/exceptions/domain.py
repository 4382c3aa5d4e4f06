"""
Excepciones relacionadas con la resolución de tablas, campos y filas.
"""
from typing import Any, Optional

from ttc_book.shared.exceptions.base import BookException


class EntityNotFoundException(BookException):
    """Excepción cuando no se encuentra una tabla, campo o usuario."""

    def __init__(self, message: str, entity_name: str, entity_id: Any):
        super().__init__(
            message=message,
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )


class MetadataNotLoadedException(BookException):
    """Se pidió una búsqueda antes de cargar la metadata correspondiente."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="METADATA_NOT_LOADED")


class AmbiguousMatchException(BookException):
    """Más de una fila coincide con una clave externa que debería ser única."""

    def __init__(self, key: Any, count: int):
        super().__init__(
            message=f"found {count} records for internal id {key}",
            error_code="AMBIGUOUS_MATCH",
            details={"key": str(key), "count": count}
        )
        self.count = count


class ValidationException(BookException):
    """Argumento o payload de entrada invalido; field nombra el parametro culpable."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None
        )
        self.field = field


class SyncInterruptedException(BookException):
    """La sesión fue detenida con Book.stop()."""

    def __init__(self):
        super().__init__(
            message="sync interrupted by user",
            error_code="SYNC_INTERRUPTED"
        )
