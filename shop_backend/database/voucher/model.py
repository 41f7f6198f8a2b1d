"""
Модель данных ваучера (промокода на скидку).
"""

import time
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from shop_backend.database import Base
from shop_backend.database.db_types import DiscountType, VoucherStatus


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Voucher(Base):
    """
    Модель ваучера.

    Атрибуты:
        code (str): Уникальный код (хранится в верхнем регистре).
        discount_type (DiscountType): Процент или фиксированная сумма.
        discount_value (float): Размер скидки.
        max_discount_value (int | None): Потолок скидки в валюте.
        usage_limit (int | None): Общий лимит использований.
        usage_count (int): Счетчик использований, меняется только через commit_redemption.
        per_user_limit (int | None): Лимит использований на одного пользователя.
        status (VoucherStatus): Административный статус (не фактический).
        is_active (bool): Административный выключатель.
    """
    __tablename__ = "vouchers"
    __table_args__ = (
        Index("ix_vouchers_status_active", "status", "is_active"),
        Index("ix_vouchers_schedule", "start_timestamp", "end_timestamp"),
        Index("ix_vouchers_usage_count", "usage_count"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, comment='Код ваучера (UPPERCASE)')
    name: Mapped[str] = mapped_column(String(120), comment='Название')
    description: Mapped[Optional[str]] = mapped_column(String(512), default=None)

    # Скидка
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, values_callable=_enum_values, native_enum=False, length=16),
        default=DiscountType.FIXED,
    )
    discount_value: Mapped[float] = mapped_column(comment='Процент или сумма скидки')
    max_discount_value: Mapped[Optional[int]] = mapped_column(BigInteger, default=None, comment='Потолок скидки')
    min_order_value: Mapped[int] = mapped_column(BigInteger, default=0, comment='Минимальная сумма заказа')

    # Расписание (unix timestamp)
    start_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, default=None)
    end_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, default=None)

    # Лимиты и счетчики
    usage_limit: Mapped[Optional[int]] = mapped_column(default=None, comment='Общий лимит использований')
    usage_count: Mapped[int] = mapped_column(default=0, comment='Сколько раз использован')
    per_user_limit: Mapped[Optional[int]] = mapped_column(default=None, comment='Лимит на пользователя')
    last_used_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, default=None)

    auto_apply: Mapped[bool] = mapped_column(default=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Административное состояние
    status: Mapped[VoucherStatus] = mapped_column(
        Enum(VoucherStatus, values_callable=_enum_values, native_enum=False, length=16),
        default=VoucherStatus.DRAFT,
    )
    is_active: Mapped[bool] = mapped_column(default=True)

    # Аудит
    created_by: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    created_timestamp: Mapped[int] = mapped_column(BigInteger, default=lambda: int(time.time()))
    updated_timestamp: Mapped[int] = mapped_column(BigInteger, default=lambda: int(time.time()))
