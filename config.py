import os
import urllib.parse

from dotenv import load_dotenv

load_dotenv()


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    # Кодирование учетных данных
    pg_user = urllib.parse.quote_plus(os.getenv("PG_USER", "postgres"))
    pg_pass = urllib.parse.quote_plus(os.getenv("PG_PASS", ""))
    pg_host = os.getenv("PG_HOST", "localhost")
    pg_database = os.getenv("PG_DATABASE", "shop_db")
    return f"postgresql+asyncpg://{pg_user}:{pg_pass}@{pg_host}/{pg_database}"


class Config:
    VERSION = "1.2.14"

    # Database
    DATABASE_URL = _database_url()
    DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 30))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))
    DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", 40))
    DB_TIMEOUT_SECONDS = int(os.getenv("DB_TIMEOUT_SECONDS", 30))
    DB_MAX_RETRY_ATTEMPTS = int(os.getenv("DB_MAX_RETRY_ATTEMPTS", 3))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", 8099))

    # Vouchers
    VOUCHER_LIST_LIMIT = int(os.getenv("VOUCHER_LIST_LIMIT", 20))
    VOUCHER_LIST_MAX_LIMIT = int(os.getenv("VOUCHER_LIST_MAX_LIMIT", 100))
    VOUCHER_MAX_DISCOUNT_VALUE = 100_000_000


config = Config()
