"""
Модуль операций базы данных для журнала погашений.
"""

import logging

from sqlalchemy import select

from shop_backend.database import DatabaseMixin
from shop_backend.database.voucher_redemption.model import VoucherRedemption

logger = logging.getLogger(__name__)


class VoucherRedemptionCrud(DatabaseMixin):
    """
    Класс для чтения журнала погашений.
    """

    async def get_redemption(self, idempotency_key: str) -> VoucherRedemption | None:
        """
        Получает погашение по ключу идемпотентности.

        Аргументы:
            idempotency_key (str): Ключ идемпотентности.

        Возвращает:
            VoucherRedemption | None: Запись или None.
        """
        return await self.fetchrow(
            select(VoucherRedemption).where(
                VoucherRedemption.idempotency_key == idempotency_key
            )
        )
