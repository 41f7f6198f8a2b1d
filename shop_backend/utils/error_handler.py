"""
Модуль обработки ошибок (декораторы).
"""

import logging
from functools import wraps
from typing import Any, Callable

from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from shop_backend.database import TRANSIENT_ERRORS
from shop_backend.utils.errors import VoucherError
from shop_backend.utils.lang.language import text

logger = logging.getLogger(__name__)


def error_response(kind: str, reason: str, message: str, status_code: int, **extra: Any) -> JSONResponse:
    content = {"status": "error", "kind": kind, "reason": reason, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def validation_response(errors: list) -> JSONResponse:
    return error_response(
        "validation",
        "validation",
        text("voucher:error:validation"),
        422,
        details=errors,
    )


def api_handler(stage_info: str) -> Callable:
    """
    Декоратор для API-хендлеров: превращает ожидаемые ошибки в типизированный ответ.

    - VoucherError -> его kind/reason/message и HTTP-статус
    - ошибки валидации pydantic -> 422
    - временный сбой БД -> 503 (чтение можно повторить, погашение - только с ключом)
    - прочие ошибки БД -> 500

    Аргументы:
         stage_info (str): Короткое описание хендлера для логов.

    Возвращает:
        Callable: Обернутая функция.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except VoucherError as e:
                logger.info(f"{stage_info}: {e.kind}/{e.reason}")
                return JSONResponse(status_code=e.http_status, content=e.to_dict())
            except ValidationError as e:
                logger.info(f"{stage_info}: невалидные данные")
                return validation_response(e.errors(include_url=False, include_context=False))
            except TRANSIENT_ERRORS as e:
                logger.error(f"Временный сбой БД в {stage_info}: {e}")
                return error_response("store", "transient", text("store:error:transient"), 503)
            except SQLAlchemyError as e:
                logger.error(f"Ошибка БД в {stage_info}: {e}", exc_info=True)
                return error_response("store", "fatal", text("store:error:fatal"), 500)

        return wrapper
    return decorator
