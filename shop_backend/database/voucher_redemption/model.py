"""
Модель журнала погашений ваучеров с ключом идемпотентности.
"""

import time
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from shop_backend.database import Base


class VoucherRedemption(Base):
    """
    Запись о погашении ваучера.

    Атрибуты:
        idempotency_key (str): Ключ, переданный вызывающей стороной (PK).
        voucher_id (int): ID ваучера.
        user_id (str | None): ID пользователя.
        created_timestamp (int): Время погашения.
    """
    __tablename__ = "voucher_redemptions"

    idempotency_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    voucher_id: Mapped[int] = mapped_column(ForeignKey("vouchers.id", ondelete="CASCADE"))
    user_id: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    created_timestamp: Mapped[int] = mapped_column(BigInteger, default=lambda: int(time.time()))
