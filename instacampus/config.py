"""
Runtime configuration for the InstaCampus API.

Values are read from the environment once, at import time.
"""

import logging
import os

SECRET_KEY = os.getenv("JWT_SECRET", "instacampus-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
TOKEN_COOKIE_NAME = "token"

APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "instacampus")

FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
VENDOR_CODE_TTL_HOURS = int(os.getenv("VENDOR_CODE_TTL_HOURS", 24))

# restock/deduct are open to every vendor unless this is switched on
INVENTORY_OWNER_CHECK = os.getenv("INVENTORY_OWNER_CHECK", "false").lower() == "true"

# public signup as admin is refused unless this is switched on, e.g. to bootstrap the first admin
ALLOW_ADMIN_SIGNUP = os.getenv("ALLOW_ADMIN_SIGNUP", "false").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None):
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
