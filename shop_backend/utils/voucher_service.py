"""
Сервис ваучеров.

Точка входа для оформления заказа (preview, commit_redemption) и для
административного интерфейса (list, create, update, remove, find).
Бизнес-отказы выбрасываются как VoucherError и превращаются в ответ на
границе API.
"""

import logging
import math
import time

from sqlalchemy.exc import IntegrityError

from shop_backend.database.db import db
from shop_backend.database.voucher.query import build_pagination
from shop_backend.utils.errors import (
    VoucherConflict,
    VoucherIneligible,
    VoucherNotFound,
    VoucherValidationError,
)
from shop_backend.utils.schemas import (
    PreviewResult,
    RedemptionOut,
    RedemptionOutcome,
    VoucherCreate,
    VoucherFilters,
    VoucherOut,
    VoucherPage,
    VoucherUpdate,
    VoucherUsageOut,
    normalize_code,
)
from shop_backend.utils.voucher_rules import check_eligibility

logger = logging.getLogger(__name__)


async def preview(
    code: str | None,
    subtotal: float | None,
    user_id: str | None = None,
    now: int | None = None,
) -> PreviewResult:
    """
    Проверяет ваучер для заказа и считает скидку. Только чтение.

    Аргументы:
        code (str | None): Введенный код.
        subtotal (float | None): Сумма заказа.
        user_id (str | None): ID покупателя, если он известен.
        now (int | None): Текущее время (unix).

    Возвращает:
        PreviewResult: Скидка, ваучер и его фактический статус.
    """
    if not code or not code.strip():
        raise VoucherValidationError("code_required")
    if subtotal is None or not math.isfinite(subtotal) or subtotal <= 0:
        raise VoucherValidationError("invalid_subtotal")

    now = int(time.time()) if now is None else now
    normalized = normalize_code(code)

    voucher, user_usage_count = await db.voucher.get_voucher_with_usage(normalized, user_id)
    if not voucher:
        raise VoucherNotFound(code=normalized)

    try:
        eligibility = check_eligibility(voucher, subtotal, user_usage_count, now)
    except VoucherIneligible as e:
        logger.info(f"Ваучер {normalized} не применен (user={user_id}): {e.reason}")
        raise

    return PreviewResult(
        discount_amount=eligibility.discount_amount,
        voucher=VoucherOut.from_voucher(voucher, now),
        runtime_status=eligibility.runtime_status,
    )


async def commit_redemption(
    voucher_id: int,
    user_id: str | None = None,
    idempotency_key: str | None = None,
) -> RedemptionOutcome:
    """
    Фиксирует использование ваучера после успешной оплаты.

    Без idempotency_key повторный вызов после неясного сбоя (таймаут)
    может засчитать использование дважды.
    """
    outcome = await db.voucher.commit_redemption(
        voucher_id, user_id=user_id, idempotency_key=idempotency_key
    )
    if outcome.rejection == "not_found":
        raise VoucherNotFound(voucher_id=voucher_id)
    if outcome.rejection:
        raise VoucherIneligible(outcome.rejection)
    return outcome


async def list_vouchers(filters: VoucherFilters, now: int | None = None) -> VoucherPage:
    now = int(time.time()) if now is None else now
    items, total = await db.voucher.get_vouchers(filters, now)
    return VoucherPage(
        items=[VoucherOut.from_voucher(voucher, now) for voucher in items],
        pagination=build_pagination(total, filters.page, filters.limit),
    )


async def find_voucher(voucher_id: int) -> VoucherOut:
    voucher = await db.voucher.get_voucher(voucher_id)
    if not voucher:
        raise VoucherNotFound(voucher_id=voucher_id)
    return VoucherOut.from_voucher(voucher)


async def voucher_usages(voucher_id: int, user_id: str | None = None) -> list[VoucherUsageOut]:
    """
    Per-user счетчики ваучера. С user_id - только счетчик этого пользователя
    (пустой список, если он ваучер не использовал).
    """
    if not await db.voucher.get_voucher(voucher_id):
        raise VoucherNotFound(voucher_id=voucher_id)

    if user_id is not None:
        usage = await db.voucher_usage.get_usage(voucher_id, user_id)
        usages = [usage] if usage else []
    else:
        usages = await db.voucher_usage.get_voucher_usages(voucher_id)
    return [VoucherUsageOut.model_validate(usage) for usage in usages]


async def find_redemption(idempotency_key: str) -> RedemptionOut:
    """Погашение по ключу идемпотентности, чтобы проверить исход после сбоя."""
    redemption = await db.voucher_redemption.get_redemption(idempotency_key)
    if not redemption:
        raise VoucherNotFound(idempotency_key=idempotency_key)
    return RedemptionOut.model_validate(redemption)


async def create_voucher(payload: VoucherCreate, user_id: str | None = None) -> VoucherOut:
    """
    Создает ваучер. Код уже нормализован схемой VoucherCreate.

    Исключения:
        VoucherConflict: Код уже занят.
    """
    if await db.voucher.get_voucher_by_code(payload.code):
        raise VoucherConflict(code=payload.code)

    now = int(time.time())
    try:
        voucher = await db.voucher.add_voucher(
            **payload.model_dump(),
            created_by=user_id,
            updated_by=user_id,
            created_timestamp=now,
            updated_timestamp=now,
        )
    except IntegrityError:
        # Код заняли параллельным запросом между проверкой и вставкой
        raise VoucherConflict(code=payload.code)

    logger.info(f"Admin {user_id} created voucher '{voucher.code}' (id={voucher.id})")
    return VoucherOut.from_voucher(voucher)


async def _get_by_id_or_code(id_or_code: int | str):
    if isinstance(id_or_code, int):
        return await db.voucher.get_voucher(id_or_code)

    value = str(id_or_code).strip()
    if value.isdigit():
        voucher = await db.voucher.get_voucher(int(value))
        if voucher:
            return voucher
    return await db.voucher.get_voucher_by_code(normalize_code(value))


async def update_voucher(
    id_or_code: int | str, payload: VoucherUpdate, user_id: str | None = None
) -> VoucherOut:
    """
    Обновляет ваучер по ID или коду. Счетчики использований не меняются.

    Исключения:
        VoucherNotFound: Ваучер не найден.
        VoucherConflict: Новый код уже занят другим ваучером.
        VoucherValidationError: Дата окончания раньше даты начала или
            usage_limit ниже уже сделанных использований.
    """
    voucher = await _get_by_id_or_code(id_or_code)
    if not voucher:
        raise VoucherNotFound(voucher_id=id_or_code)

    data = payload.model_dump(exclude_unset=True)

    new_limit = data.get("usage_limit")
    if new_limit is not None and new_limit < voucher.usage_count:
        raise VoucherValidationError(
            "usage_limit_below_count", usage_count=voucher.usage_count, usage_limit=new_limit
        )

    new_code = data.get("code")
    if new_code and new_code != voucher.code:
        if await db.voucher.get_voucher_by_code(new_code):
            raise VoucherConflict(code=new_code)

    start = data.get("start_timestamp", voucher.start_timestamp)
    end = data.get("end_timestamp", voucher.end_timestamp)
    if start is not None and end is not None and end < start:
        raise VoucherValidationError(
            "validation", "end_timestamp must not be earlier than start_timestamp"
        )

    if user_id:
        data["updated_by"] = user_id

    try:
        updated = await db.voucher.update_voucher(voucher.id, **data)
    except IntegrityError:
        raise VoucherConflict(code=new_code)

    if not updated:
        current = await db.voucher.get_voucher(voucher.id)
        if not current:
            raise VoucherNotFound(voucher_id=voucher.id)
        # Погашение успело увеличить usage_count после проверки выше
        raise VoucherValidationError(
            "usage_limit_below_count", usage_count=current.usage_count, usage_limit=new_limit
        )

    logger.info(f"Admin {user_id} updated voucher '{updated.code}': {sorted(data)}")
    return VoucherOut.from_voucher(updated)


async def remove_voucher(voucher_id: int) -> VoucherOut:
    """
    Удаляет ваучер безвозвратно.
    """
    voucher = await db.voucher.delete_voucher(voucher_id)
    if not voucher:
        raise VoucherNotFound(voucher_id=voucher_id)

    logger.info(f"Voucher '{voucher.code}' (id={voucher_id}) deleted")
    return VoucherOut.from_voucher(voucher)
