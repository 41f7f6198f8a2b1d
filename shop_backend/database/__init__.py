"""
Пакет базы данных.

Содержит инициализацию асинхронного движка SQLAlchemy, настройки сессий
и базовый класс DatabaseMixin, предоставляющий общие методы для выполнения SQL-запросов.

Переменные:
    engine (AsyncEngine): Асинхронный движок SQLAlchemy.
    async_session (async_sessionmaker): Фабрика асинхронных сессий.
    Base (DeclarativeBase): Базовый класс для моделей.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Sequence

from sqlalchemy import event
from sqlalchemy.engine.result import Result
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import Executable
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import Config

logger = logging.getLogger(__name__)

DATABASE_URL = Config.DATABASE_URL


def _engine_options(url: str) -> dict:
    options = {"echo": Config.DB_ECHO}
    if url.startswith("postgresql"):
        options.update(
            pool_size=Config.DB_POOL_SIZE,
            max_overflow=Config.DB_MAX_OVERFLOW,
            pool_timeout=Config.DB_POOL_TIMEOUT,
            pool_pre_ping=True,
        )
    return options


# Настройка движка базы данных
engine = create_async_engine(url=DATABASE_URL, **_engine_options(DATABASE_URL))

if engine.dialect.name == "sqlite":

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        # Транзакциями управляет SQLAlchemy, а не драйвер
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        # Блокировка на запись берется сразу, иначе параллельные UPDATE ловят SQLITE_BUSY
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# Фабрика сессий
async_session = async_sessionmaker(
    bind=engine, expire_on_commit=False, class_=AsyncSession
)

Base = declarative_base()

# Константы для повторных попыток
DB_TIMEOUT_SECONDS = Config.DB_TIMEOUT_SECONDS
DB_MAX_RETRY_ATTEMPTS = Config.DB_MAX_RETRY_ATTEMPTS

# Повторять имеет смысл только сбои соединения, а не ошибки запроса
TRANSIENT_ERRORS = (OperationalError, InterfaceError, asyncio.TimeoutError)

read_retry = retry(
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    stop=stop_after_attempt(DB_MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


@asynccontextmanager
async def log_slow_query(query_info: Any, threshold: float = 1.0):
    """
    Контекстный менеджер для логирования медленных запросов.

    Если выполнение блока кода занимает более `threshold` секунд,
    выводится предупреждение в лог.

    Аргументы:
        query_info (Any): Информация о запросе (строка или объект SQL).
        threshold (float): Порог времени в секундах.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start
        if duration > threshold:
            logger.warning(f"SLOW QUERY ({duration:.3f}s): {query_info}")


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Асинхронный контекстный менеджер для получения сессии базы данных.

    Возвращает:
        AsyncSession: Новая сессия SQLAlchemy.
    """
    async with async_session() as session:
        yield session


@asynccontextmanager
async def transaction() -> AsyncGenerator[AsyncSession, None]:
    """
    Сессия с открытой транзакцией.

    Commit выполняется при выходе из блока, при любом исключении - rollback.
    """
    async with async_session() as session:
        async with session.begin():
            yield session


class DatabaseMixin:
    """
    Миксин с базовыми методами для работы с БД.

    Предоставляет методы fetch, fetchrow, fetchall, add с автоматическим
    управлением сессиями и логированием. Чтение повторяется при сбоях
    соединения (tenacity), запись не повторяется никогда.
    """

    @staticmethod
    @read_retry
    async def fetch(sql: Executable) -> Sequence[Any]:
        """
        Выполняет запрос и возвращает список скалярных значений.

        Аргументы:
            sql (Executable): SQL-запрос.

        Возвращает:
            Sequence[Any]: Список результатов (scalars().all()).
        """
        try:
            async with log_slow_query(sql):
                async with asyncio.timeout(DB_TIMEOUT_SECONDS):
                    async with get_session() as session:
                        session: AsyncSession
                        logger.debug(f"Получение данных (fetch): {sql}")
                        res: Result = await session.execute(sql)
                        results = res.scalars().all()
                        logger.debug(f"Получено {len(results)} строк")
                        return results
        except asyncio.TimeoutError:
            logger.error(f"Таймаут БД в fetch() после {DB_TIMEOUT_SECONDS}с")
            raise
        except Exception as e:
            logger.error(f"Ошибка БД в fetch(): {e}", exc_info=True)
            raise

    @staticmethod
    async def _fetchrow(sql: Executable, commit: bool) -> Any | None:
        try:
            async with log_slow_query(sql):
                async with asyncio.timeout(DB_TIMEOUT_SECONDS):
                    async with get_session() as session:
                        session: AsyncSession
                        logger.debug(f"Получение строки (fetchrow): {sql}")
                        res: Result = await session.execute(sql)
                        result = res.scalar_one_or_none()
                        if commit:
                            await session.commit()
                            logger.debug("Транзакция зафиксирована")
                        logger.debug(f"Строка получена: {result is not None}")
                        return result
        except asyncio.TimeoutError:
            logger.error(f"Таймаут БД в fetchrow() после {DB_TIMEOUT_SECONDS}с")
            raise
        except Exception as e:
            logger.error(f"Ошибка БД в fetchrow(): {e}", exc_info=True)
            raise

    @classmethod
    async def fetchrow(cls, sql: Executable, commit: bool = False) -> Any | None:
        """
        Выполняет запрос и возвращает одну запись (скаляр).

        Запросы с commit=True (UPDATE/DELETE ... RETURNING) не повторяются.

        Аргументы:
            sql (Executable): SQL-запрос.
            commit (bool): Выполнять ли commit.

        Возвращает:
            Any | None: Результат или None.
        """
        if commit:
            return await cls._fetchrow(sql, commit=True)
        return await read_retry(cls._fetchrow)(sql, commit=False)

    @staticmethod
    @read_retry
    async def fetchall(sql: Executable) -> Sequence[Any]:
        """
        Выполняет запрос и возвращает все строки (список кортежей).

        Аргументы:
            sql (Executable): SQL-запрос.

        Возвращает:
            Sequence[Any]: Список строк (Result.all()).
        """
        try:
            async with log_slow_query(sql):
                async with asyncio.timeout(DB_TIMEOUT_SECONDS):
                    async with get_session() as session:
                        session: AsyncSession
                        logger.debug(f"Получение всех строк (fetchall): {sql}")
                        res: Result = await session.execute(sql)
                        results = res.all()
                        logger.debug(f"Получено {len(results)} строк")
                        return results
        except asyncio.TimeoutError:
            logger.error(f"Таймаут БД в fetchall() после {DB_TIMEOUT_SECONDS}с")
            raise
        except Exception as e:
            logger.error(f"Ошибка БД в fetchall(): {e}", exc_info=True)
            raise

    @staticmethod
    async def add(obj: Any, commit: bool = True) -> Any:
        """
        Добавляет объект в сессию и сохраняет его.

        Аргументы:
            obj (Any): Объект модели.
            commit (bool): Выполнять ли commit.

        Возвращает:
            Any: Обновленный объект.
        """
        try:
            async with log_slow_query(f"Add {obj.__class__.__name__}"):
                async with asyncio.timeout(DB_TIMEOUT_SECONDS):
                    async with get_session() as session:
                        session: AsyncSession
                        logger.debug(f"Добавление объекта: {obj.__class__.__name__}")
                        session.add(obj)
                        if commit:
                            await session.commit()
                            await session.refresh(obj)
                            logger.debug(
                                f"Объект добавлен и зафиксирован: {obj.__class__.__name__}"
                            )
                        return obj
        except asyncio.TimeoutError:
            logger.error(f"Таймаут БД в add() после {DB_TIMEOUT_SECONDS}с")
            raise
        except Exception as e:
            logger.error(f"Ошибка БД в add(): {e}", exc_info=True)
            raise
