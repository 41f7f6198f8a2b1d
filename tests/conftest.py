"""
Shared pytest fixtures for the voucher test suite.

Tests run against a throwaway SQLite file database (aiosqlite). The URL is
exported before any project module is imported, so config.Config picks it up.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="shop-vouchers-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(_TEST_DB_DIR, "test.db")
os.environ.setdefault("DB_MAX_RETRY_ATTEMPTS", "1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import time  # noqa: E402

import pytest  # noqa: E402

from shop_backend.database import engine  # noqa: E402
from shop_backend.database.db import db  # noqa: E402
from shop_backend.database.db_types import DiscountType, VoucherStatus  # noqa: E402
from shop_backend.database.voucher.model import Voucher  # noqa: E402
from shop_backend.utils import voucher_service  # noqa: E402
from shop_backend.utils.schemas import VoucherCreate  # noqa: E402

# Fixed clock for pure rule tests
NOW = 1_760_000_000


@pytest.fixture
def make_voucher():
    """Build a transient (unsaved) Voucher with every field populated."""

    def _make(**overrides) -> Voucher:
        fields = dict(
            id=1,
            code="SALE10",
            name="Sale",
            description=None,
            discount_type=DiscountType.FIXED,
            discount_value=10_000,
            max_discount_value=None,
            min_order_value=0,
            start_timestamp=None,
            end_timestamp=None,
            usage_limit=None,
            usage_count=0,
            per_user_limit=None,
            auto_apply=False,
            tags=[],
            status=VoucherStatus.ACTIVE,
            is_active=True,
            created_timestamp=NOW,
            updated_timestamp=NOW,
        )
        fields.update(overrides)
        return Voucher(**fields)

    return _make


@pytest.fixture
async def database():
    """Fresh schema per test; the engine pool is disposed with the test's event loop."""
    await db.drop_tables()
    await db.create_tables()
    yield db
    await db.drop_tables()
    await engine.dispose()


@pytest.fixture
def create_voucher(database):
    """Persist a voucher through the service; usage_count may be preset directly."""

    async def _create(usage_count: int = 0, **overrides):
        fields = dict(
            code="SALE10",
            name="Sale",
            discount_type=DiscountType.FIXED,
            discount_value=10_000,
            status=VoucherStatus.ACTIVE,
        )
        fields.update(overrides)
        voucher = await voucher_service.create_voucher(VoucherCreate(**fields), user_id="admin-1")
        if usage_count:
            await database.voucher.update_voucher(voucher.id, usage_count=usage_count)
            voucher = await voucher_service.find_voucher(voucher.id)
        return voucher

    return _create


@pytest.fixture
def now() -> int:
    return int(time.time())
