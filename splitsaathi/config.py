import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


class Config:
    # Storage backend: "memory" for a single process, "mysql" for shared storage
    STORE_BACKEND = os.environ.get("STORE_BACKEND", "memory")

    # Database config (defaults allow local run without crashing)
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_PORT = int(os.environ.get("DB_PORT", 3306))
    DB_USER = os.environ.get("DB_USER", "root")
    DB_PASSWORD = os.environ.get("DB_PASSWORD", "")
    DB_NAME = os.environ.get("DB_NAME", "splitsaathi")
    DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", 10))

    CORS_ORIGINS = [origin.strip() for origin in os.environ.get("CORS_ORIGINS", "*").split(",") if origin.strip()]

    # Validation tolerances: currency units and percentage points
    AMOUNT_TOLERANCE = Decimal(os.environ.get("AMOUNT_TOLERANCE", "0.01"))
    PERCENT_TOLERANCE = Decimal(os.environ.get("PERCENT_TOLERANCE", "0.1"))

    # "retain" or "reject": how balances treat names that left the member list
    REMOVED_MEMBER_POLICY = os.environ.get("REMOVED_MEMBER_POLICY", "retain")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


config = Config()
