"""
Excepciones relacionadas con respuestas de la Book API.
"""
import json
from typing import Any, Dict, Optional

from ttc_book.shared.exceptions.base import BookException


class BookApiError(BookException):
    """
    El servidor respondio con status distinto de "ok".
    El payload crudo queda en details["payload"].
    """

    def __init__(
        self,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        error_code: str = "API_ERROR",
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details={"payload": payload} if payload is not None else None
        )
        self.payload = payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BookApiError":
        """Usa el payload completo serializado como mensaje."""
        return cls(json.dumps(payload), payload=payload)

    @classmethod
    def from_error_msg(cls, payload: Dict[str, Any]) -> "BookApiError":
        """Usa errorMsg del servidor; si no viene, el payload serializado."""
        message = payload.get("errorMsg") or payload.get("error")
        if not message:
            return cls.from_payload(payload)
        return cls(str(message), payload=payload)


class DeadlockRetryExhaustedException(BookApiError):
    """Se agotaron los reintentos de una pagina por deadlock del servidor."""

    def __init__(self, attempts: int, payload: Dict[str, Any]):
        super().__init__(
            message=f"deadlock persisted after {attempts} retries: {json.dumps(payload)}",
            payload=payload,
            error_code="DEADLOCK_RETRY_EXHAUSTED",
        )
        self.attempts = attempts
