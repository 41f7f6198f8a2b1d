"""
Настройка логирования сервиса ваучеров.
"""

import logging
import sys

from config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Драйверы и HTTP-сервер пишут на каждый запрос
QUIET_LOGGERS = ("sqlalchemy", "asyncpg", "aiosqlite", "httpx", "uvicorn.access")


def setup_logging(level: str | None = None) -> None:
    """
    Настраивает корневой логгер один раз при старте API.

    Уровень берется из аргумента или Config.LOG_LEVEL; неизвестное имя
    уровня дает INFO. Повторный вызов только меняет уровень.
    """
    level_name = (level or Config.LOG_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not any(getattr(h, "_voucher_service", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._voucher_service = True
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Логирование настроено, уровень {level_name}")
