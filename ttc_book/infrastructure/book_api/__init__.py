"""
Integracion con la Book API (api.php, POST + discriminador "req").

- types: credenciales, constantes y helpers puros
- form_encoding: payloads anidados a form-urlencoded
- filters: filtros applyViewFilters
- book_client: sesion Book (httpx async) con caches en memoria
"""
from ttc_book.infrastructure.book_api.book_client import Book
from ttc_book.infrastructure.book_api.types import BookCredentials

__all__ = ["Book", "BookCredentials"]
