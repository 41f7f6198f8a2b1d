"""
Модуль операций базы данных для счетчиков использования ваучеров пользователями.
"""

import logging
from typing import List

from sqlalchemy import select

from shop_backend.database import DatabaseMixin
from shop_backend.database.voucher_usage.model import VoucherUsage

logger = logging.getLogger(__name__)


class VoucherUsageCrud(DatabaseMixin):
    """
    Класс для чтения per-user счетчиков.

    Запись выполняется только внутри VoucherCrud.commit_redemption.
    """

    async def get_usage(self, voucher_id: int, user_id: str) -> VoucherUsage | None:
        """
        Получает счетчик использований ваучера пользователем.

        Аргументы:
            voucher_id (int): ID ваучера.
            user_id (str): ID пользователя.

        Возвращает:
            VoucherUsage | None: Запись или None, если пользователь ваучер не использовал.
        """
        return await self.fetchrow(
            select(VoucherUsage).where(
                VoucherUsage.voucher_id == voucher_id,
                VoucherUsage.user_id == user_id,
            )
        )

    async def get_voucher_usages(self, voucher_id: int) -> List[VoucherUsage]:
        """
        Получает все per-user счетчики ваучера в порядке первого использования.
        """
        return await self.fetch(
            select(VoucherUsage)
            .where(VoucherUsage.voucher_id == voucher_id)
            .order_by(VoucherUsage.id)
        )
