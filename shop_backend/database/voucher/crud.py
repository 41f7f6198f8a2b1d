"""
Модуль операций базы данных для ваучеров.
"""

import asyncio
import logging
import time
from typing import List, Tuple

from sqlalchemy import and_, case, delete, false, func, literal, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shop_backend.database import (
    DB_TIMEOUT_SECONDS,
    DatabaseMixin,
    engine,
    log_slow_query,
    transaction,
)
from shop_backend.database.db_types import VoucherStatus
from shop_backend.database.voucher.model import Voucher
from shop_backend.database.voucher.query import build_voucher_filters, build_voucher_order
from shop_backend.database.voucher_redemption.model import VoucherRedemption
from shop_backend.database.voucher_usage.model import VoucherUsage
from shop_backend.utils.schemas import RedemptionOutcome, VoucherFilters

logger = logging.getLogger(__name__)


class _RedemptionRejected(Exception):
    """Откатывает транзакцию погашения."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def _insert(model):
    if engine.dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def _replay_query(idempotency_key: str):
    # Повтор относится к ваучеру исходного погашения, а не к запрошенному
    return (
        select(
            VoucherRedemption.voucher_id,
            Voucher.usage_count,
            Voucher.status,
            Voucher.is_active,
        )
        .join(Voucher, Voucher.id == VoucherRedemption.voucher_id)
        .where(VoucherRedemption.idempotency_key == idempotency_key)
    )


def _replayed_outcome(row) -> RedemptionOutcome:
    voucher_id, usage_count, status, is_active = row
    return RedemptionOutcome(
        voucher_id=voucher_id,
        usage_count=usage_count,
        expired=not is_active and status == VoucherStatus.EXPIRED,
        replayed=True,
    )


class VoucherCrud(DatabaseMixin):
    """
    Класс для управления ваучерами.
    """

    async def add_voucher(self, **kwargs) -> Voucher:
        """
        Добавляет новый ваучер.

        Аргументы:
            **kwargs: Поля модели Voucher.

        Возвращает:
            Voucher: Созданный ваучер.
        """
        return await self.add(Voucher(**kwargs))

    async def get_voucher(self, voucher_id: int) -> Voucher | None:
        """
        Получает ваучер по ID.
        """
        return await self.fetchrow(select(Voucher).where(Voucher.id == voucher_id))

    async def get_voucher_by_code(self, code: str) -> Voucher | None:
        """
        Получает ваучер по коду.

        Аргументы:
            code (str): Нормализованный (UPPERCASE) код.

        Возвращает:
            Voucher | None: Объект ваучера.
        """
        return await self.fetchrow(select(Voucher).where(Voucher.code == code))

    async def get_voucher_with_usage(
        self, code: str, user_id: str | None = None
    ) -> Tuple[Voucher | None, int | None]:
        """
        Получает ваучер по коду вместе со счетчиком пользователя одним запросом.

        Аргументы:
            code (str): Нормализованный код.
            user_id (str | None): ID пользователя.

        Возвращает:
            Tuple[Voucher | None, int | None]: Ваучер и число его использований
            пользователем (0, если не использовал; None, если user_id не передан).
        """
        if user_id is None:
            return await self.get_voucher_by_code(code), None

        stmt = (
            select(Voucher, VoucherUsage.count)
            .outerjoin(
                VoucherUsage,
                and_(
                    VoucherUsage.voucher_id == Voucher.id,
                    VoucherUsage.user_id == user_id,
                ),
            )
            .where(Voucher.code == code)
        )
        rows = await self.fetchall(stmt)
        if not rows:
            return None, None
        voucher, count = rows[0]
        return voucher, count or 0

    async def update_voucher(self, voucher_id: int, **kwargs) -> Voucher | None:
        """
        Обновляет ваучер и возвращает его новую версию.

        Новый usage_limit проверяется тем же UPDATE: лимит ниже уже
        сделанных использований не записывается.

        Аргументы:
            voucher_id (int): ID ваучера.
            **kwargs: Поля для обновления.

        Возвращает:
            Voucher | None: Обновленный ваучер или None, если его нет
            или лимит оказался ниже usage_count.
        """
        kwargs.setdefault("updated_timestamp", int(time.time()))
        stmt = update(Voucher).where(Voucher.id == voucher_id)
        if kwargs.get("usage_limit") is not None:
            stmt = stmt.where(Voucher.usage_count <= kwargs["usage_limit"])
        stmt = stmt.values(**kwargs).returning(Voucher)
        return await self.fetchrow(stmt, commit=True)

    async def delete_voucher(self, voucher_id: int) -> Voucher | None:
        """
        Удаляет ваучер безвозвратно вместе со счетчиками и журналом погашений.

        Возвращает:
            Voucher | None: Удаленный ваучер или None, если его нет.
        """
        stmt = delete(Voucher).where(Voucher.id == voucher_id).returning(Voucher)
        return await self.fetchrow(stmt, commit=True)

    async def get_vouchers(
        self, filters: VoucherFilters, now: int | None = None
    ) -> Tuple[List[Voucher], int]:
        """
        Получает страницу ваучеров и общее количество по фильтрам.

        Аргументы:
            filters (VoucherFilters): Поиск, статус, страница, сортировка.
            now (int | None): Текущее время для фильтра просроченных.

        Возвращает:
            Tuple[List[Voucher], int]: Ваучеры страницы и общее количество.
        """
        conditions = build_voucher_filters(filters, now)

        items_stmt = (
            select(Voucher)
            .where(*conditions)
            .order_by(*build_voucher_order(filters.sort))
            .offset(filters.offset)
            .limit(filters.limit)
        )
        total_stmt = select(func.count(Voucher.id)).where(*conditions)

        items, total = await asyncio.gather(
            self.fetch(items_stmt), self.fetchrow(total_stmt)
        )
        return list(items), total or 0

    async def commit_redemption(
        self,
        voucher_id: int,
        user_id: str | None = None,
        idempotency_key: str | None = None,
        now: int | None = None,
    ) -> RedemptionOutcome:
        """
        Атомарно фиксирует одно использование ваучера.

        Все шаги выполняются в одной транзакции условными запросами,
        без чтения-изменения-записи документа:
        1. Повтор по ключу идемпотентности возвращается без изменений.
        2. usage_count увеличивается, только если лимит не исчерпан; при
           достижении лимита тем же UPDATE ставится status=expired, is_active=false.
        3. Per-user счетчик увеличивается upsert'ом, только если он ниже per_user_limit.
        Любой отказ откатывает транзакцию целиком. Повторно не выполняется.

        Аргументы:
            voucher_id (int): ID ваучера.
            user_id (str | None): ID пользователя.
            idempotency_key (str | None): Ключ идемпотентности от вызывающей стороны.
            now (int | None): Время погашения (unix).

        Возвращает:
            RedemptionOutcome: Итог; при отказе заполнено поле rejection.
        """
        now = int(time.time()) if now is None else now

        try:
            async with log_slow_query(f"Commit redemption voucher={voucher_id}"):
                async with asyncio.timeout(DB_TIMEOUT_SECONDS):
                    async with transaction() as session:
                        if idempotency_key:
                            replayed = (
                                await session.execute(_replay_query(idempotency_key))
                            ).one_or_none()
                            if replayed is not None:
                                logger.info(
                                    f"Повтор погашения ваучера {replayed.voucher_id} "
                                    f"по ключу {idempotency_key} (запрошен {voucher_id})"
                                )
                                return _replayed_outcome(replayed)

                        next_count = Voucher.usage_count + 1
                        limit_reached = and_(
                            Voucher.usage_limit.is_not(None),
                            next_count >= Voucher.usage_limit,
                        )
                        claim = await session.execute(
                            update(Voucher)
                            .where(
                                Voucher.id == voucher_id,
                                or_(
                                    Voucher.usage_limit.is_(None),
                                    Voucher.usage_count < Voucher.usage_limit,
                                ),
                            )
                            .values(
                                usage_count=next_count,
                                last_used_timestamp=now,
                                status=case(
                                    (limit_reached, literal(VoucherStatus.EXPIRED.value)),
                                    else_=Voucher.status,
                                ),
                                is_active=case(
                                    (limit_reached, false()),
                                    else_=Voucher.is_active,
                                ),
                            )
                            .returning(
                                Voucher.usage_count,
                                Voucher.usage_limit,
                                Voucher.per_user_limit,
                            )
                            .execution_options(synchronize_session=False)
                        )
                        row = claim.one_or_none()
                        if row is None:
                            exists = await session.scalar(
                                select(Voucher.id).where(Voucher.id == voucher_id)
                            )
                            raise _RedemptionRejected(
                                "usage_exhausted" if exists is not None else "not_found"
                            )

                        usage_count, usage_limit, per_user_limit = row

                        if idempotency_key:
                            logged = await session.scalar(
                                _insert(VoucherRedemption)
                                .values(
                                    idempotency_key=idempotency_key,
                                    voucher_id=voucher_id,
                                    user_id=user_id,
                                    created_timestamp=now,
                                )
                                .on_conflict_do_nothing(
                                    index_elements=[VoucherRedemption.idempotency_key]
                                )
                                .returning(VoucherRedemption.idempotency_key)
                            )
                            if logged is None:
                                raise _RedemptionRejected("replayed")

                        if user_id is not None and per_user_limit is not None:
                            user_count = await session.scalar(
                                _insert(VoucherUsage)
                                .values(
                                    voucher_id=voucher_id,
                                    user_id=user_id,
                                    count=1,
                                    last_used_timestamp=now,
                                )
                                .on_conflict_do_update(
                                    index_elements=[VoucherUsage.voucher_id, VoucherUsage.user_id],
                                    set_={
                                        "count": VoucherUsage.count + 1,
                                        "last_used_timestamp": now,
                                    },
                                    where=VoucherUsage.count < per_user_limit,
                                )
                                .returning(VoucherUsage.count)
                            )
                            if user_count is None:
                                raise _RedemptionRejected("per_user_limit")

        except _RedemptionRejected as e:
            if e.reason == "replayed":
                # Параллельный запрос с тем же ключом успел зафиксироваться первым
                rows = await self.fetchall(_replay_query(idempotency_key))
                if rows:
                    return _replayed_outcome(rows[0])
                return RedemptionOutcome(voucher_id=voucher_id, replayed=True)
            logger.warning(f"Погашение ваучера {voucher_id} отклонено: {e.reason}")
            return RedemptionOutcome(voucher_id=voucher_id, rejection=e.reason)
        except asyncio.TimeoutError:
            logger.error(f"Таймаут БД в commit_redemption() после {DB_TIMEOUT_SECONDS}с")
            raise
        except Exception as e:
            logger.error(f"Ошибка БД в commit_redemption(): {e}", exc_info=True)
            raise

        expired = usage_limit is not None and usage_count >= usage_limit
        logger.info(
            f"Ваучер {voucher_id} погашен: usage_count={usage_count}, user={user_id}, expired={expired}"
        )
        return RedemptionOutcome(
            voucher_id=voucher_id, usage_count=usage_count, expired=expired
        )
