from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import Config
from shop_backend.database.db_types import DiscountType, VoucherSort, VoucherStatus


def normalize_code(code: str) -> str:
    return code.strip().upper()


class _VoucherFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("code", mode="before", check_fields=False)
    @classmethod
    def _normalize_code(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_code(value)
        return value

    @model_validator(mode="after")
    def _check_schedule(self):
        start, end = self.start_timestamp, self.end_timestamp
        if start is not None and end is not None and end < start:
            raise ValueError("end_timestamp must not be earlier than start_timestamp")
        return self


class VoucherCreate(_VoucherFields):
    code: str = Field(min_length=3, max_length=32)
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=512)
    discount_type: DiscountType = DiscountType.FIXED
    # Для процентов значение выше 100 не запрещено, есть только абсолютный потолок
    discount_value: float = Field(ge=0, le=Config.VOUCHER_MAX_DISCOUNT_VALUE)
    max_discount_value: Optional[int] = Field(default=None, ge=0)
    min_order_value: int = Field(default=0, ge=0)
    start_timestamp: Optional[int] = None
    end_timestamp: Optional[int] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    per_user_limit: Optional[int] = Field(default=None, ge=1)
    auto_apply: bool = False
    tags: List[str] = Field(default_factory=list)
    status: VoucherStatus = VoucherStatus.DRAFT
    is_active: bool = True


class VoucherUpdate(_VoucherFields):
    """Частичное обновление: учитываются только переданные поля."""

    code: Optional[str] = Field(default=None, min_length=3, max_length=32)
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=512)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(default=None, ge=0, le=Config.VOUCHER_MAX_DISCOUNT_VALUE)
    max_discount_value: Optional[int] = Field(default=None, ge=0)
    min_order_value: Optional[int] = Field(default=None, ge=0)
    start_timestamp: Optional[int] = None
    end_timestamp: Optional[int] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    per_user_limit: Optional[int] = Field(default=None, ge=1)
    auto_apply: Optional[bool] = None
    tags: Optional[List[str]] = None
    status: Optional[VoucherStatus] = None
    is_active: Optional[bool] = None

    @field_validator(
        "code", "name", "discount_type", "discount_value", "min_order_value",
        "auto_apply", "tags", "status", "is_active",
    )
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be null")
        return value


class VoucherOut(BaseModel):
    """Представление ваучера для API: status - фактический, manual_status - сохраненный."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float
    max_discount_value: Optional[int] = None
    min_order_value: int
    start_timestamp: Optional[int] = None
    end_timestamp: Optional[int] = None
    usage_limit: Optional[int] = None
    usage_count: int
    per_user_limit: Optional[int] = None
    auto_apply: bool
    tags: List[str]
    is_active: bool
    status: VoucherStatus
    manual_status: VoucherStatus
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_timestamp: int
    updated_timestamp: int
    last_used_timestamp: Optional[int] = None

    @classmethod
    def from_voucher(cls, voucher, now: int | None = None) -> "VoucherOut":
        from shop_backend.utils.voucher_rules import resolve_status

        data = {name: getattr(voucher, name) for name in cls.model_fields if hasattr(voucher, name)}
        data["tags"] = list(voucher.tags or [])
        data["status"] = resolve_status(voucher, now)
        data["manual_status"] = voucher.status
        return cls(**data)


class VoucherFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[VoucherStatus] = None
    is_active: Optional[bool] = None
    page: int = 1
    limit: int = Config.VOUCHER_LIST_LIMIT
    sort: VoucherSort = VoucherSort.LATEST

    @field_validator("search", mode="before")
    @classmethod
    def _blank_search(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _all_status(cls, value: Any) -> Any:
        if value in ("", "all"):
            return None
        return value

    @field_validator("page", mode="before")
    @classmethod
    def _clamp_page(cls, value: Any) -> Any:
        if value in (None, ""):
            return 1
        return max(int(value), 1)

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value: Any) -> Any:
        if value in (None, "") or int(value) < 1:
            return Config.VOUCHER_LIST_LIMIT
        return min(int(value), Config.VOUCHER_LIST_MAX_LIMIT)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class VoucherPage(BaseModel):
    items: List[VoucherOut]
    pagination: Pagination


class PreviewRequest(BaseModel):
    code: Optional[str] = None
    subtotal: Optional[float] = Field(default=None, allow_inf_nan=False)
    user_id: Optional[str] = None


class Eligibility(BaseModel):
    discount_amount: int
    runtime_status: VoucherStatus


class PreviewResult(BaseModel):
    discount_amount: int
    voucher: VoucherOut
    runtime_status: VoucherStatus


class RedeemRequest(BaseModel):
    user_id: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)


class RedemptionOutcome(BaseModel):
    voucher_id: int
    usage_count: int = 0
    expired: bool = False
    replayed: bool = False
    rejection: Optional[str] = Field(default=None, exclude=True)


class VoucherUsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    count: int
    last_used_timestamp: Optional[int] = None


class RedemptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    idempotency_key: str
    voucher_id: int
    user_id: Optional[str] = None
    created_timestamp: int
