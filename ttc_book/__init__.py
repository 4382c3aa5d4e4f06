"""
ttc_book: cliente asincrono de la Book API.
"""
from ttc_book.infrastructure.book_api import Book, BookCredentials
from ttc_book.shared.exceptions.api import BookApiError, DeadlockRetryExhaustedException
from ttc_book.shared.exceptions.base import BookException
from ttc_book.shared.exceptions.domain import (
    AmbiguousMatchException,
    EntityNotFoundException,
    MetadataNotLoadedException,
    SyncInterruptedException,
    ValidationException,
)

__version__ = "0.1.0"

__all__ = [
    "AmbiguousMatchException",
    "Book",
    "BookApiError",
    "BookCredentials",
    "BookException",
    "DeadlockRetryExhaustedException",
    "EntityNotFoundException",
    "MetadataNotLoadedException",
    "SyncInterruptedException",
    "ValidationException",
]
