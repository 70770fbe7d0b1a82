import logging
import sys
import os

from marketchat.core.config import settings


def configure_logging() -> None:
    # Preparar directorio de logs
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    log_file = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    # Limpiar handlers previos para evitar duplicados en reinicios
    root = logging.getLogger()
    if root.handlers:
        root.handlers.clear()

    fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
    formatter = logging.Formatter(fmt)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    root.setLevel(level)
    root.addHandler(console_handler)
    root.addHandler(file_handler)

    # httpx registra cada request en INFO; demasiado ruido con el webhook
    logging.getLogger("httpx").setLevel(logging.WARNING)
