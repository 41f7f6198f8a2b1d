"""
Построение условий выборки для административного списка ваучеров.

Каждый фильтр добавляется отдельной группой условий, группы объединяются
через AND. Группы OR (поиск, просроченные) никогда не сливаются в одну.
"""

import math
import time
from typing import List, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from shop_backend.database.db_types import VoucherSort, VoucherStatus
from shop_backend.database.voucher.model import Voucher
from shop_backend.utils.schemas import Pagination, VoucherFilters

LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Экранирует спецсимволы LIKE, чтобы поиск был подстрокой, а не шаблоном."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def search_condition(search: str) -> ColumnElement[bool]:
    pattern = f"%{escape_like(search)}%"
    return or_(
        Voucher.code.ilike(pattern, escape=LIKE_ESCAPE),
        Voucher.name.ilike(pattern, escape=LIKE_ESCAPE),
        Voucher.description.ilike(pattern, escape=LIKE_ESCAPE),
    )


def expired_condition(now: int) -> ColumnElement[bool]:
    """
    Ваучер считается просроченным, если выполняется хотя бы одно:
    статус expired, дата окончания в прошлом, лимит использований исчерпан.
    """
    return or_(
        Voucher.status == VoucherStatus.EXPIRED,
        and_(Voucher.end_timestamp.is_not(None), Voucher.end_timestamp < now),
        and_(
            Voucher.usage_limit.is_not(None),
            Voucher.usage_count >= Voucher.usage_limit,
        ),
    )


def build_voucher_filters(
    filters: VoucherFilters, now: int | None = None
) -> List[ColumnElement[bool]]:
    """
    Собирает список условий для списка ваучеров.

    Аргументы:
        filters (VoucherFilters): Параметры поиска.
        now (int | None): Текущее время (unix), по умолчанию time.time().

    Возвращает:
        List[ColumnElement[bool]]: Условия, которые передаются в where(*conditions).
    """
    now = int(time.time()) if now is None else now
    conditions: List[ColumnElement[bool]] = []

    if filters.is_active is not None:
        conditions.append(Voucher.is_active == filters.is_active)

    if filters.search:
        conditions.append(search_condition(filters.search))

    status = filters.status
    if status in (VoucherStatus.DRAFT, VoucherStatus.DISABLED):
        conditions.append(Voucher.status == status)
    elif status == VoucherStatus.ACTIVE:
        conditions.append(
            Voucher.status.in_([VoucherStatus.ACTIVE, VoucherStatus.SCHEDULED])
        )
        conditions.append(Voucher.is_active == True)  # noqa: E712
    elif status == VoucherStatus.EXPIRED:
        conditions.append(expired_condition(now))

    return conditions


def build_voucher_order(sort: VoucherSort) -> Tuple[ColumnElement, ...]:
    if sort == VoucherSort.USAGE:
        return Voucher.usage_count.desc(), Voucher.updated_timestamp.desc(), Voucher.id.desc()
    return Voucher.created_timestamp.desc(), Voucher.id.desc()


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(
        total=total,
        page=page,
        limit=limit,
        total_pages=max(math.ceil(total / limit), 1),
    )
