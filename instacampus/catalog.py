"""Product catalog: vendors publish products, everyone signed in can browse."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pymongo import ReturnDocument
from pymongo.database import Database

from .database import create_document, get_db, get_documents, parse_object_id, serialize
from .errors import NotFoundError, PermissionDenied, ValidationFailed
from .schemas import CATEGORIES, Inventory, Product, ProductCreate, ProductUpdate
from .security import get_catalog_vendor, get_current_user, vendor_category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/product", tags=["product"])


def check_category(category: str) -> str:
    if category not in CATEGORIES:
        raise ValidationFailed(f"{category} is not a valid category")
    return category


def get_product(db: Database, product_id) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")})
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _owned_product(db: Database, product_id, vendor: dict) -> dict:
    product = get_product(db, product_id)
    if product["vendorId"] != vendor["_id"]:
        raise PermissionDenied("You can only manage your own products")
    return product


def create_product(db: Database, vendor: dict, payload: ProductCreate) -> tuple[dict, dict]:
    """Create a product owned by ``vendor`` together with its inventory row."""
    category = vendor_category(vendor)
    if payload.category != category:
        raise PermissionDenied(f"{vendor['role']} can only add {category} products")
    data = payload.model_dump(exclude={"initialStock"})
    product = create_document(db, "product", Product(vendorId=vendor["_id"], **data))
    inventory = create_document(
        db, "inventory", Inventory(productId=product["_id"], quantityAvailable=payload.initialStock)
    )
    logger.info("Vendor %s added product %s", vendor["_id"], product["_id"])
    return product, inventory


def update_product(db: Database, vendor: dict, product_id, payload: ProductUpdate) -> dict:
    product = _owned_product(db, product_id, vendor)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "category" in changes and changes["category"] != vendor_category(vendor):
        raise PermissionDenied(f"{vendor['role']} can only sell {vendor_category(vendor)} products")
    changes["updatedAt"] = datetime.utcnow()
    return db["product"].find_one_and_update(
        {"_id": product["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )


def delete_product(db: Database, vendor: dict, product_id):
    product = _owned_product(db, product_id, vendor)
    db["product"].delete_one({"_id": product["_id"]})
    db["inventory"].delete_many({"productId": product["_id"]})
    logger.info("Vendor %s deleted product %s", vendor["_id"], product["_id"])


@router.post("", status_code=status.HTTP_201_CREATED)
def add_product(payload: ProductCreate, vendor: dict = Depends(get_catalog_vendor), db: Database = Depends(get_db)):
    product, inventory = create_product(db, vendor, payload)
    return {
        "product": serialize(product),
        "inventoryItem": serialize(inventory),
        "message": "Product added successfully",
    }


@router.get("")
def list_products(_: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"products": serialize(get_documents(db, "product", sort=[("createdAt", -1)]))}


@router.get("/category/{category}")
def list_products_by_category(category: str, _: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    check_category(category)
    products = get_documents(db, "product", {"category": category}, sort=[("createdAt", -1)])
    return {"products": serialize(products)}


@router.get("/{product_id}")
def read_product(product_id: str, _: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"product": serialize(get_product(db, product_id))}


@router.patch("/{product_id}")
def edit_product(
    product_id: str,
    payload: ProductUpdate,
    vendor: dict = Depends(get_catalog_vendor),
    db: Database = Depends(get_db),
):
    product = update_product(db, vendor, product_id, payload)
    return {"product": serialize(product), "message": "Product updated successfully"}


@router.delete("/{product_id}")
def remove_product(product_id: str, vendor: dict = Depends(get_catalog_vendor), db: Database = Depends(get_db)):
    delete_product(db, vendor, product_id)
    return {"message": "Product deleted successfully"}
