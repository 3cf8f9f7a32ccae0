"""
Auth gate: password hashing, session tokens and role capabilities.

The session token travels in the httpOnly ``token`` cookie and carries the
user's id and role. Authorization never trusts the role claim; it is read
back from the user document on every request.
"""

from datetime import datetime, timedelta

from fastapi import Depends
from fastapi.security import APIKeyCookie
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from . import config
from .database import get_db, parse_object_id
from .errors import AuthenticationError, NotFoundError, PermissionDenied

MANAGE_CATALOG = "manage_catalog"
MANAGE_INVENTORY = "manage_inventory"
UPDATE_ORDERS = "update_orders"
ISSUE_VENDOR_CODES = "issue_vendor_codes"

_VENDOR_CAPABILITIES = frozenset({MANAGE_CATALOG, MANAGE_INVENTORY, UPDATE_ORDERS})

# a role missing from this table gets no capabilities
ROLE_CAPABILITIES = {
    "student": frozenset(),
    "admin": frozenset({ISSUE_VENDOR_CODES}),
    "canteen-vendor": _VENDOR_CAPABILITIES,
    "stationary-vendor": _VENDOR_CAPABILITIES,
}

ROLE_CATEGORY = {
    "canteen-vendor": "canteen",
    "stationary-vendor": "stationary",
}

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)
cookie_scheme = APIKeyCookie(name=config.TOKEN_COOKIE_NAME, auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def public_user(user: dict) -> dict:
    return {key: value for key, value in user.items() if key != "password_hash"}


def has_capability(user: dict, capability: str) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.get("role"), frozenset())


def vendor_category(user: dict) -> str:
    category = ROLE_CATEGORY.get(user.get("role"))
    if category is None:
        raise PermissionDenied("Invalid vendor role")
    return category


def load_user_from_token(db: Database, token: str | None) -> dict:
    if not token:
        raise AuthenticationError("Unauthorized: Authentication token missing")
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise AuthenticationError("Unauthorized: Invalid or expired token")
    try:
        user_id = parse_object_id(payload.get("id"), "User")
    except NotFoundError:
        raise AuthenticationError("Unauthorized: Invalid or expired token")
    user = db["user"].find_one({"_id": user_id}, {"password_hash": 0})
    if user is None:
        raise AuthenticationError("Unauthorized: User not found")
    return user


async def get_current_user(token: str | None = Depends(cookie_scheme), db: Database = Depends(get_db)):
    return load_user_from_token(db, token)


def require_capability(capability: str):
    """Dependency factory admitting only roles that hold ``capability``."""

    async def dependency(current: dict = Depends(get_current_user)):
        if not has_capability(current, capability):
            raise PermissionDenied(f"{current.get('role')} can not access this resource")
        return current

    return dependency


get_catalog_vendor = require_capability(MANAGE_CATALOG)
get_inventory_vendor = require_capability(MANAGE_INVENTORY)
get_order_vendor = require_capability(UPDATE_ORDERS)
get_current_admin = require_capability(ISSUE_VENDOR_CODES)
