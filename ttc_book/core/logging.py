"""
Configuracion de logging (loguru) para el cliente de la Book API.

El cliente emite sus lineas con logger.bind(context="book_api"); aqui se
decide a donde van (nivel de consola y archivo rotativo opcional).
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

BOOK_API_CONTEXT = "book_api"
LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[context]} | {message}"


def _is_book_api_record(record) -> bool:
    return record["extra"].get("context") == BOOK_API_CONTEXT


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configura los sinks de loguru.

    - Reemplaza el sink de consola por uno a stderr con el nivel indicado.
    - Si log_file no esta vacio, agrega un archivo rotativo con las lineas del
      contexto book_api.
    - Cada llamada quita los sinks previos: reconfigurar no duplica lineas.

    Args:
        level: Nivel minimo (DEBUG, INFO, WARNING...)
        log_file: Ruta del archivo de log; None o "" para no escribir a disco
    """
    logger.remove()
    logger.configure(extra={"context": "-"})
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=LOG_FORMAT,
            filter=_is_book_api_record,
            rotation="50 MB",
            retention="10 days",
            level="DEBUG",
        )
        logger.info(f"Log de la Book API en {log_file}")
