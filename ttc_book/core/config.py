"""
Configuracion central del cliente.
Gestiona variables de entorno (o .env) para credenciales de la Book API,
endpoint, timeouts, tamaño de lote y logging.

El objeto Book no lee el entorno por si mismo: se construye con argumentos
explicitos o via Book.from_settings(settings).
"""
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings

from ttc_book.infrastructure.book_api.types import BookCredentials


class Settings(BaseSettings):
    """
    Clase de configuracion del cliente.
    Lee variables de entorno y proporciona valores por defecto.

    - TTC_*: identidad de sesion contra la Book API
    - TTC_ADMIN_*: override de administrador (opcional)
    - DEADLOCK_*: politica de reintentos para escrituras por lotes
    """

    # Endpoint y version de la API
    TTC_ENDPOINT: str = Field(default="https://timetonic.com/live/api.php")
    TTC_API_VERSION: str = Field(default="5.89")

    # Credenciales de sesion
    TTC_BOOK_CODE: str = Field(default="")
    TTC_BOOK_OWNER: str = Field(default="")
    TTC_USER_CODE: str = Field(default="")
    TTC_SESSKEY: str = Field(default="")

    # Override de administrador (se activa si hay user code y sesskey)
    TTC_ADMIN_BOOK_CODE: str = Field(default="")
    TTC_ADMIN_BOOK_OWNER: str = Field(default="")
    TTC_ADMIN_USER_CODE: str = Field(default="")
    TTC_ADMIN_SESSKEY: str = Field(default="")

    # HTTP
    REQUEST_TIMEOUT_S: float = Field(default=120.0)

    # Escrituras por lotes
    WRITE_BATCH_SIZE: int = Field(default=200, ge=1)
    DEADLOCK_MAX_RETRIES: int = Field(default=10, ge=0)
    DEADLOCK_BACKOFF_S: float = Field(default=0.5, ge=0)
    DEADLOCK_MAX_BACKOFF_S: float = Field(default=10.0, ge=0)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="")

    @computed_field
    @property
    def credentials(self) -> BookCredentials:
        """Credenciales de la sesion principal."""
        return BookCredentials(
            b_c=self.TTC_BOOK_CODE,
            b_o=self.TTC_BOOK_OWNER,
            u_c=self.TTC_USER_CODE,
            sesskey=self.TTC_SESSKEY,
        )

    @computed_field
    @property
    def admin_credentials(self) -> Optional[BookCredentials]:
        """
        Credenciales de administrador, o None si no estan configuradas.
        Requiere al menos TTC_ADMIN_USER_CODE y TTC_ADMIN_SESSKEY.
        """
        if not (self.TTC_ADMIN_USER_CODE and self.TTC_ADMIN_SESSKEY):
            return None
        return BookCredentials(
            b_c=self.TTC_ADMIN_BOOK_CODE or self.TTC_BOOK_CODE,
            b_o=self.TTC_ADMIN_BOOK_OWNER or self.TTC_BOOK_OWNER,
            u_c=self.TTC_ADMIN_USER_CODE,
            sesskey=self.TTC_ADMIN_SESSKEY,
        )

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env
