"""
Модуль общих типов и перечислений базы данных.

Содержит перечисления (Enum) для типов скидки, статусов ваучера и
сортировки, используемых в моделях и бизнес-логике.
"""

from enum import Enum


class DiscountType(str, Enum):
    """Тип скидки ваучера."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"

    def __str__(self):
        return self.value


class VoucherStatus(str, Enum):
    """
    Статус ваучера.

    В БД хранится как административный признак, фактический статус
    вычисляется функцией resolve_status.
    """

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    EXPIRED = "expired"
    DISABLED = "disabled"

    def __str__(self):
        return self.value


class VoucherSort(str, Enum):
    """Порядок сортировки списка ваучеров."""

    LATEST = "latest"
    USAGE = "usage"

    def __str__(self):
        return self.value
