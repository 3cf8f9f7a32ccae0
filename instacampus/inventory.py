"""
Inventory ledger.

Every product has one inventory row whose ``quantityAvailable`` never goes
below zero. Decrements are conditional updates (``quantityAvailable >= n``)
applied by the database in one step, so two requests racing for the last
units cannot both succeed. Restock and deduct both stamp ``lastRestockedAt``.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from . import config
from .database import get_db, lookup, parse_object_id, serialize
from .errors import InsufficientStock, NotFoundError, PermissionDenied
from .schemas import StockChange
from .security import get_inventory_vendor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def get_inventory_for_product(db: Database, product_id) -> dict:
    inventory = db["inventory"].find_one({"productId": product_id})
    if inventory is None:
        raise NotFoundError("Inventory not found for this product")
    return inventory


def list_inventory(db: Database) -> list[dict]:
    """All inventory rows with their product expanded and a low-stock flag."""
    rows = list(db["inventory"].find())
    products = lookup(db, "product", (row["productId"] for row in rows))
    for row in rows:
        product = products.get(row["productId"])
        row["productId"] = product
        threshold = product.get("lowStockThreshold", 10) if product else 0
        row["isLowStock"] = row["quantityAvailable"] <= threshold
    return rows


def _load_row(db: Database, inventory_id, vendor: dict) -> dict:
    row = db["inventory"].find_one({"_id": parse_object_id(inventory_id, "Inventory item")})
    if row is None:
        raise NotFoundError("Inventory item not found")
    if config.INVENTORY_OWNER_CHECK:
        product = db["product"].find_one({"_id": row["productId"]})
        if product is None or product["vendorId"] != vendor["_id"]:
            raise PermissionDenied("You can only manage inventory for your own products")
    return row


def restock(db: Database, inventory_id, quantity: int, vendor: dict) -> dict:
    row = _load_row(db, inventory_id, vendor)
    updated = db["inventory"].find_one_and_update(
        {"_id": row["_id"]},
        {
            "$inc": {"quantityAvailable": quantity},
            "$set": {"lastRestockedAt": datetime.utcnow(), "updatedAt": datetime.utcnow()},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFoundError("Inventory item not found")
    logger.info("Restocked inventory %s by %d (now %d)", row["_id"], quantity, updated["quantityAvailable"])
    return updated


def deduct(db: Database, inventory_id, quantity: int, vendor: dict) -> dict:
    row = _load_row(db, inventory_id, vendor)
    updated = db["inventory"].find_one_and_update(
        {"_id": row["_id"], "quantityAvailable": {"$gte": quantity}},
        {
            "$inc": {"quantityAvailable": -quantity},
            "$set": {"lastRestockedAt": datetime.utcnow(), "updatedAt": datetime.utcnow()},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InsufficientStock("Insufficient stock to deduct the requested quantity")
    logger.info("Deducted %d from inventory %s (now %d)", quantity, row["_id"], updated["quantityAvailable"])
    return updated


def take_stock(db: Database, product_id, quantity: int) -> dict | None:
    """Decrement a product's stock if enough is available; None otherwise."""
    return db["inventory"].find_one_and_update(
        {"productId": product_id, "quantityAvailable": {"$gte": quantity}},
        {"$inc": {"quantityAvailable": -quantity}, "$set": {"updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def return_stock(db: Database, product_id, quantity: int) -> bool:
    result = db["inventory"].update_one(
        {"productId": product_id},
        {"$inc": {"quantityAvailable": quantity}, "$set": {"updatedAt": datetime.utcnow()}},
    )
    return result.matched_count > 0


@router.get("")
def read_inventory(_: dict = Depends(get_inventory_vendor), db: Database = Depends(get_db)):
    return {"products": serialize(list_inventory(db))}


@router.patch("/{inventory_id}/restock")
def restock_inventory(
    inventory_id: str,
    payload: StockChange,
    vendor: dict = Depends(get_inventory_vendor),
    db: Database = Depends(get_db),
):
    item = restock(db, inventory_id, payload.quantity, vendor)
    return {"inventoryItem": serialize(item), "message": "Inventory updated successfully"}


@router.patch("/{inventory_id}/deduct")
def deduct_inventory(
    inventory_id: str,
    payload: StockChange,
    vendor: dict = Depends(get_inventory_vendor),
    db: Database = Depends(get_db),
):
    item = deduct(db, inventory_id, payload.quantity, vendor)
    return {"inventoryItem": serialize(item), "message": "Inventory updated successfully"}
