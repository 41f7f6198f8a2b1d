"""
Ошибки бизнес-логики ваучеров.

Каждая ошибка несет kind (класс ошибки для клиента), reason (машинный код
причины) и message (текст для пользователя). На границе API они
превращаются в типизированный JSON-ответ, см. error_handler.api_handler.
"""

from typing import Any, Dict

from shop_backend.utils.lang.language import text


class VoucherError(Exception):
    kind = "error"
    http_status = 400

    def __init__(self, reason: str, message: str | None = None, **details: Any):
        self.reason = reason
        self.message = message or text(f"voucher:error:{reason}")
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": "error",
            "kind": self.kind,
            "reason": self.reason,
            "message": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data


class VoucherNotFound(VoucherError):
    kind = "not_found"
    http_status = 404

    def __init__(self, **details: Any):
        super().__init__("not_found", **details)


class VoucherValidationError(VoucherError):
    kind = "validation"
    http_status = 400


class VoucherIneligible(VoucherError):
    """Ваучер существует, но не может быть применен (причина в reason)."""

    kind = "ineligible"
    http_status = 400


class VoucherConflict(VoucherError):
    kind = "conflict"
    http_status = 409

    def __init__(self, **details: Any):
        super().__init__("exist", **details)
