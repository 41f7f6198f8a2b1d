"""
Правила применения ваучеров.

Чистые функции без обращений к БД:
- resolve_status: фактический статус ваучера на момент now
- compute_discount: размер скидки для суммы заказа
- check_eligibility: проверка применимости в фиксированном порядке
"""

import logging
import math
import time
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from shop_backend.database.db_types import DiscountType, VoucherStatus
from shop_backend.utils.errors import VoucherIneligible
from shop_backend.utils.lang.language import text
from shop_backend.utils.schemas import Eligibility

logger = logging.getLogger(__name__)

# Фактический статус -> причина отказа
STATUS_REJECTIONS = {
    VoucherStatus.DISABLED: "unavailable",
    VoucherStatus.DRAFT: "not_activated",
    VoucherStatus.SCHEDULED: "not_started",
    VoucherStatus.EXPIRED: "expired",
}


def resolve_status(voucher, now: int | None = None) -> VoucherStatus:
    """
    Вычисляет фактический статус ваучера.

    Сохраненный status учитывается только для disabled и draft,
    дальше решают расписание и счетчик использований. Выключенный
    ваучер со статусом expired был выключен при исчерпании лимита
    и отдается как expired.

    Аргументы:
        voucher: Объект с полями модели Voucher.
        now (int | None): Текущее время (unix), по умолчанию time.time().

    Возвращает:
        VoucherStatus: Первый подошедший статус.
    """
    now = int(time.time()) if now is None else now

    if voucher.status == VoucherStatus.DISABLED:
        return VoucherStatus.DISABLED

    if not voucher.is_active:
        if voucher.status == VoucherStatus.EXPIRED:
            return VoucherStatus.EXPIRED
        return VoucherStatus.DISABLED

    if voucher.status == VoucherStatus.DRAFT:
        return VoucherStatus.DRAFT

    if voucher.start_timestamp is not None and now < voucher.start_timestamp:
        return VoucherStatus.SCHEDULED

    if voucher.end_timestamp is not None and now > voucher.end_timestamp:
        return VoucherStatus.EXPIRED

    if voucher.usage_limit is not None and voucher.usage_count >= voucher.usage_limit:
        return VoucherStatus.EXPIRED

    return VoucherStatus.ACTIVE


def _to_decimal(value) -> Decimal:
    return Decimal(str(value))


def compute_discount(voucher, subtotal) -> int:
    """
    Считает скидку в целых единицах валюты.

    Результат всегда в диапазоне [0, subtotal]: потолок max_discount_value
    применяется после процента, затем скидка ограничивается суммой заказа
    и округляется до целого (половина вверх).
    """
    if subtotal is None or not math.isfinite(subtotal) or subtotal <= 0:
        return 0

    amount = _to_decimal(subtotal)
    if voucher.discount_type == DiscountType.PERCENTAGE:
        raw = amount * _to_decimal(voucher.discount_value) / 100
    else:
        raw = _to_decimal(voucher.discount_value)

    if voucher.max_discount_value is not None:
        raw = min(raw, _to_decimal(voucher.max_discount_value))

    raw = min(raw, amount)

    rounded = int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    # Для дробной суммы заказа округление вверх не должно превысить ее
    rounded = min(rounded, int(amount.to_integral_value(rounding=ROUND_FLOOR)))
    return max(rounded, 0)


def _format_money(value) -> str:
    return f"{math.ceil(value):,}"


def check_eligibility(
    voucher,
    subtotal,
    user_usage_count: int | None = None,
    now: int | None = None,
) -> Eligibility:
    """
    Проверяет, можно ли применить ваучер к заказу.

    Порядок проверок фиксирован, первая неудача прерывает проверку:
    статус, минимальная сумма заказа, лимит на пользователя, размер скидки.
    Ничего не записывает.

    Аргументы:
        voucher: Объект с полями модели Voucher.
        subtotal: Сумма заказа.
        user_usage_count (int | None): Сколько раз пользователь уже использовал
            ваучер. None - пользователь не указан.
        now (int | None): Текущее время (unix).

    Возвращает:
        Eligibility: Размер скидки и фактический статус.

    Исключения:
        VoucherIneligible: Ваучер нельзя применить (причина в reason).
    """
    runtime_status = resolve_status(voucher, now)
    if runtime_status in STATUS_REJECTIONS:
        raise VoucherIneligible(STATUS_REJECTIONS[runtime_status], status=runtime_status.value)

    if voucher.min_order_value and subtotal < voucher.min_order_value:
        missing = voucher.min_order_value - subtotal
        raise VoucherIneligible(
            "min_order_value",
            text(
                "voucher:error:min_order_value",
                missing=_format_money(missing),
                required=_format_money(voucher.min_order_value),
            ),
            missing=math.ceil(missing),
            required=voucher.min_order_value,
        )

    if (
        voucher.per_user_limit is not None
        and user_usage_count is not None
        and user_usage_count >= voucher.per_user_limit
    ):
        raise VoucherIneligible("per_user_limit", limit=voucher.per_user_limit)

    discount_amount = compute_discount(voucher, subtotal)
    if discount_amount <= 0:
        raise VoucherIneligible("no_benefit")

    return Eligibility(discount_amount=discount_amount, runtime_status=runtime_status)
