"""
Модель данных использования ваучера конкретным пользователем.
"""

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shop_backend.database import Base


class VoucherUsage(Base):
    """
    Счетчик использований ваучера одним пользователем.

    Пара (voucher_id, user_id) уникальна, что позволяет делать
    атомарный upsert с инкрементом.
    """
    __tablename__ = "voucher_usages"
    __table_args__ = (
        UniqueConstraint("voucher_id", "user_id", name="uq_voucher_usages_voucher_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    voucher_id: Mapped[int] = mapped_column(ForeignKey("vouchers.id", ondelete="CASCADE"))
    user_id: Mapped[str] = mapped_column(String(64))
    count: Mapped[int] = mapped_column(default=0)
    last_used_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, default=None)
