"""
Vendor registration codes.

Admins issue six digit codes for a vendor role; a prospective vendor checks a
code with ``/verify`` and spends it when signing up (or through ``/use``).
A code can be used once and expires after ``VENDOR_CODE_TTL_HOURS``.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, status
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from . import config
from .database import create_document, get_db, lookup, parse_object_id, serialize
from .errors import NotFoundError
from .schemas import Vendorcode, VendorCodeGenerate, VendorCodeUse, VendorCodeVerify
from .security import get_current_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vendor-code", tags=["vendor-code"])


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _usable(now: datetime) -> dict:
    return {"isActive": True, "used": False, "expiresAt": {"$gt": now}}


def _with_users(db: Database, codes: list[dict]) -> list[dict]:
    users = lookup(
        db, "user", [c["createdBy"] for c in codes] + [c.get("usedBy") for c in codes], {"name": 1, "email": 1}
    )
    for code in codes:
        code["createdBy"] = users.get(code["createdBy"], code["createdBy"])
        if code.get("usedBy") is not None:
            code["usedBy"] = users.get(code["usedBy"], code["usedBy"])
    return codes


def issue_code(db: Database, admin: dict, vendor_type: str) -> dict:
    code = generate_code()
    while db["vendorcode"].find_one({"code": code}):
        code = generate_code()
    expires_at = datetime.utcnow() + timedelta(hours=config.VENDOR_CODE_TTL_HOURS)
    doc = create_document(
        db, "vendorcode", Vendorcode(code=code, vendorType=vendor_type, createdBy=admin["_id"], expiresAt=expires_at)
    )
    logger.info("Admin %s issued a %s code", admin["_id"], vendor_type)
    return doc


def check_code(db: Database, code: str, vendor_type: str) -> dict:
    found = db["vendorcode"].find_one({"code": code, "vendorType": vendor_type, **_usable(datetime.utcnow())})
    if found is None:
        raise NotFoundError("Invalid, expired, or already used code")
    return found


def consume_code(db: Database, code: str, user_id, vendor_type: Optional[str] = None) -> dict:
    now = datetime.utcnow()
    query = {"code": code, **_usable(now)}
    if vendor_type is not None:
        query["vendorType"] = vendor_type
    used = db["vendorcode"].find_one_and_update(
        query,
        {"$set": {"used": True, "usedBy": parse_object_id(user_id, "User"), "usedAt": now, "updatedAt": now}},
        return_document=ReturnDocument.AFTER,
    )
    if used is None:
        raise NotFoundError("Invalid or expired code")
    logger.info("Vendor code %s consumed by %s", used["_id"], user_id)
    return used


def code_stats(db: Database) -> dict:
    now = datetime.utcnow()
    codes = db["vendorcode"]
    return {
        "total": codes.count_documents({}),
        "active": codes.count_documents(_usable(now)),
        "used": codes.count_documents({"used": True}),
        "expired": codes.count_documents({"expiresAt": {"$lt": now}}),
    }


@router.post("/generate", status_code=status.HTTP_201_CREATED)
def generate(payload: VendorCodeGenerate, admin: dict = Depends(get_current_admin), db: Database = Depends(get_db)):
    doc = issue_code(db, admin, payload.vendorType)
    return {"success": True, "message": "Vendor code generated successfully", "data": serialize(doc)}


@router.get("/active")
def active_codes(_: dict = Depends(get_current_admin), db: Database = Depends(get_db)):
    codes = list(db["vendorcode"].find(_usable(datetime.utcnow())).sort("createdAt", DESCENDING))
    return {"success": True, "count": len(codes), "data": serialize(_with_users(db, codes))}


@router.get("/all")
def all_codes(
    used: Optional[bool] = None,
    vendorType: Optional[str] = None,
    isActive: Optional[bool] = None,
    _: dict = Depends(get_current_admin),
    db: Database = Depends(get_db),
):
    query = {}
    if used is not None:
        query["used"] = used
    if vendorType:
        query["vendorType"] = vendorType
    if isActive is not None:
        query["isActive"] = isActive
    codes = list(db["vendorcode"].find(query).sort("createdAt", DESCENDING))
    return {"success": True, "count": len(codes), "data": serialize(_with_users(db, codes))}


@router.get("/stats")
def stats(_: dict = Depends(get_current_admin), db: Database = Depends(get_db)):
    return {"success": True, "data": code_stats(db)}


@router.post("/verify")
def verify(payload: VendorCodeVerify, db: Database = Depends(get_db)):
    found = check_code(db, payload.code, payload.vendorType)
    return {
        "success": True,
        "message": "Code is valid",
        "data": {"code": found["code"], "vendorType": found["vendorType"], "expiresAt": found["expiresAt"]},
    }


@router.post("/use")
def use(payload: VendorCodeUse, db: Database = Depends(get_db)):
    used = consume_code(db, payload.code, payload.userId)
    return {"success": True, "message": "Code marked as used", "data": serialize(used)}


@router.delete("/{code_id}")
def delete(code_id: str, _: dict = Depends(get_current_admin), db: Database = Depends(get_db)):
    result = db["vendorcode"].delete_one({"_id": parse_object_id(code_id, "Code")})
    if result.deleted_count == 0:
        raise NotFoundError("Code not found")
    return {"success": True, "message": "Code deleted successfully"}


@router.patch("/deactivate/{code_id}")
def deactivate(code_id: str, _: dict = Depends(get_current_admin), db: Database = Depends(get_db)):
    code = db["vendorcode"].find_one_and_update(
        {"_id": parse_object_id(code_id, "Code")},
        {"$set": {"isActive": False, "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if code is None:
        raise NotFoundError("Code not found")
    return {"success": True, "message": "Code deactivated successfully", "data": serialize(code)}
