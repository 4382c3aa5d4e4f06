"""
Excepción base del cliente de la Book API.
"""
from typing import Optional, Dict, Any


class BookException(Exception):
    """
    Raiz de los errores del cliente.

    error_code es estable (sirve para ramificar sin parsear mensajes) y
    details lleva el contexto estructurado: payload crudo, campo invalido, etc.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "BOOK_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"
