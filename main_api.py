import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Body, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError

from config import Config
from shop_backend.database.db import db
from shop_backend.utils import voucher_service
from shop_backend.utils.error_handler import api_handler, validation_response
from shop_backend.utils.lang.language import text
from shop_backend.utils.logger import setup_logging
from shop_backend.utils.schemas import (
    PreviewRequest,
    RedeemRequest,
    VoucherCreate,
    VoucherFilters,
    VoucherUpdate,
)

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info(f"Starting voucher service v{Config.VERSION}")
    await db.create_tables()

    yield


app = FastAPI(
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Invalid request to {request.url.path}")
    return validation_response(
        [{k: v for k, v in err.items() if k in ("loc", "msg", "type")} for err in exc.errors()]
    )


def ok(data, message_key: str) -> dict:
    return {"status": "ok", "message": text(message_key), "data": data}


@app.get('/health')
async def health_check():
    return {"status": "ok", "message": "Service is running"}


@app.post('/vouchers/apply')
@api_handler("Voucher apply")
async def apply_voucher(payload: PreviewRequest):
    result = await voucher_service.preview(
        code=payload.code,
        subtotal=payload.subtotal,
        user_id=payload.user_id,
    )
    return ok(result.model_dump(mode="json"), "voucher:success:apply")


@app.post('/vouchers/{voucher_id}/redeem')
@api_handler("Voucher redeem")
async def redeem_voucher(
    voucher_id: int,
    payload: Optional[RedeemRequest] = Body(default=None),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    payload = payload or RedeemRequest()
    outcome = await voucher_service.commit_redemption(
        voucher_id,
        user_id=payload.user_id,
        idempotency_key=payload.idempotency_key or idempotency_key,
    )
    return ok(outcome.model_dump(mode="json"), "voucher:success:redeem")


@app.get('/vouchers')
@api_handler("Voucher list")
async def get_vouchers(
    search: Optional[str] = None,
    status: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    sort: Optional[str] = None,
):
    filters = VoucherFilters(
        search=search,
        status=status,
        is_active=is_active,
        page=page,
        limit=limit,
        sort=sort or "latest",
    )
    result = await voucher_service.list_vouchers(filters)
    return ok(result.model_dump(mode="json"), "voucher:success:list")


@app.post('/vouchers', status_code=201)
@api_handler("Voucher create")
async def create_voucher(
    payload: VoucherCreate,
    x_user_id: Optional[str] = Header(default=None),
):
    voucher = await voucher_service.create_voucher(payload, user_id=x_user_id)
    return ok(voucher.model_dump(mode="json"), "voucher:success:create")


@app.get('/vouchers/{voucher_id}')
@api_handler("Voucher get")
async def get_voucher(voucher_id: int):
    voucher = await voucher_service.find_voucher(voucher_id)
    return ok(voucher.model_dump(mode="json"), "voucher:success:get")


@app.get('/vouchers/{voucher_id}/usages')
@api_handler("Voucher usages")
async def get_voucher_usages(voucher_id: int, user_id: Optional[str] = None):
    usages = await voucher_service.voucher_usages(voucher_id, user_id=user_id)
    return ok([usage.model_dump(mode="json") for usage in usages], "voucher:success:usages")


@app.get('/redemptions/{idempotency_key}')
@api_handler("Redemption get")
async def get_redemption(idempotency_key: str):
    redemption = await voucher_service.find_redemption(idempotency_key)
    return ok(redemption.model_dump(mode="json"), "voucher:success:redemption")


@app.put('/vouchers/{id_or_code}')
@api_handler("Voucher update")
async def update_voucher(
    id_or_code: str,
    payload: VoucherUpdate,
    x_user_id: Optional[str] = Header(default=None),
):
    voucher = await voucher_service.update_voucher(id_or_code, payload, user_id=x_user_id)
    return ok(voucher.model_dump(mode="json"), "voucher:success:update")


@app.delete('/vouchers/{voucher_id}')
@api_handler("Voucher delete")
async def delete_voucher(voucher_id: int):
    voucher = await voucher_service.remove_voucher(voucher_id)
    return ok(voucher.model_dump(mode="json"), "voucher:success:delete")


if __name__ == '__main__':

    uvicorn.run(app, host=Config.API_HOST, port=Config.API_PORT, log_level="info", access_log=True)
