"""Sign-up, login/logout and profile routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from . import config
from .database import create_document, get_db, serialize
from .errors import NotFoundError, PermissionDenied, ValidationFailed
from .schemas import VENDOR_ROLES, LoginRequest, ProfileUpdate, SignupRequest, User
from .security import (
    cookie_scheme,
    create_access_token,
    get_current_user,
    get_password_hash,
    load_user_from_token,
    public_user,
    verify_password,
)
from .vendor_codes import check_code, consume_code

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
user_router = APIRouter(prefix="/user", tags=["user"])


def get_user_by_email(db: Database, email: str):
    return db["user"].find_one({"email": email.lower()})


def _check_role(db: Database, payload: SignupRequest):
    if payload.role == "admin" and not config.ALLOW_ADMIN_SIGNUP:
        raise PermissionDenied("Admin accounts can not be created through signup")
    if payload.role in VENDOR_ROLES:
        if not payload.vendorCode:
            raise ValidationFailed("A vendor code is required to sign up as a vendor")
        try:
            check_code(db, payload.vendorCode, payload.role)
        except NotFoundError:
            raise ValidationFailed("Invalid, expired, or already used vendor code")


def register(db: Database, payload: SignupRequest) -> dict:
    """Create a user; vendor roles spend a matching vendor code."""
    email = payload.email.lower()
    if get_user_by_email(db, email):
        raise ValidationFailed("User already exists")
    _check_role(db, payload)
    user = User(name=payload.name, email=email, password_hash=get_password_hash(payload.password), role=payload.role)
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ValidationFailed("User already exists")

    if payload.role in VENDOR_ROLES:
        try:
            consume_code(db, payload.vendorCode, doc["_id"], payload.role)
        except NotFoundError:
            # the code was spent by someone else between the check and now
            db["user"].delete_one({"_id": doc["_id"]})
            raise ValidationFailed("Invalid, expired, or already used vendor code")
    logger.info("Registered %s user %s", doc["role"], doc["_id"])
    return doc


def authenticate(db: Database, email: str, password: str) -> dict:
    user = get_user_by_email(db, email)
    if not user or not verify_password(password, user["password_hash"]):
        raise ValidationFailed("Invalid Credentials")
    return user


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        key=config.TOKEN_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="none" if config.IS_PRODUCTION else "lax",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(
        key=config.TOKEN_COOKIE_NAME,
        path="/",
        secure=config.IS_PRODUCTION,
        httponly=True,
        samesite="none" if config.IS_PRODUCTION else "lax",
    )


def update_profile(db: Database, user: dict, payload: ProfileUpdate) -> dict:
    changes = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.password is not None:
        changes["password_hash"] = get_password_hash(payload.password)
    if not changes:
        raise ValidationFailed("Provide a name or a password to update")
    changes["updatedAt"] = datetime.utcnow()
    return db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": changes},
        projection={"password_hash": 0},
        return_document=ReturnDocument.AFTER,
    )


@auth_router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    user = register(db, payload)
    return {"success": True, "user": serialize(public_user(user)), "message": "User registered successfully"}


@auth_router.post("/login")
def login(payload: LoginRequest, response: Response, db: Database = Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    token = create_access_token({"id": str(user["_id"]), "role": user["role"]})
    set_session_cookie(response, token)
    logger.info("User %s logged in", user["_id"])
    return {"user": serialize(public_user(user)), "message": "Login Successful"}


@auth_router.post("/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"message": "Logout Successful"}


@auth_router.get("/verify")
def verify(token: str | None = Depends(cookie_scheme), db: Database = Depends(get_db)):
    user = load_user_from_token(db, token)
    return {"success": True, "user": serialize(user)}


@user_router.get("")
def read_me(current: dict = Depends(get_current_user)):
    return {"user": serialize(current)}


@user_router.get("/vendor/{role}")
def list_vendors(role: str, _: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if role not in VENDOR_ROLES:
        raise ValidationFailed(f"{role} is not a vendor role")
    vendors = db["user"].find({"role": role}, {"password_hash": 0}).sort("name", 1)
    return {"filteruser": serialize(list(vendors))}


@user_router.patch("")
def edit_me(
    payload: ProfileUpdate,
    response: Response,
    current: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = update_profile(db, current, payload)
    clear_session_cookie(response)
    return {"user": serialize(user), "message": "Profile Updated"}
