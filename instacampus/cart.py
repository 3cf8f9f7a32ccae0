"""
Cart manager.

A user holds at most one cart per category, and every item in a cart comes
from a single vendor: the first item binds ``vendorId`` and it is released
again once the cart is empty. Quantities are checked against live stock but
nothing is reserved; stock only moves when an order is placed.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from .catalog import check_category, get_product
from .database import create_document, get_db, lookup, parse_object_id, serialize
from .errors import InsufficientStock, NotFoundError, ValidationFailed
from .inventory import get_inventory_for_product
from .schemas import Cart, CartAddRequest, CartRemoveRequest, CartUpdateRequest
from .security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

PRODUCT_FIELDS = {"name": 1, "price": 1, "imgUrl": 1, "vendorId": 1, "category": 1}
VENDOR_FIELDS = {"name": 1, "email": 1, "role": 1}


def find_cart(db: Database, user_id, category: str) -> dict | None:
    return db["cart"].find_one(
        {"userId": user_id, "category": category}, sort=[("updatedAt", DESCENDING)]
    )


def _require_cart(db: Database, user_id, category: str) -> dict:
    cart = find_cart(db, user_id, check_category(category))
    if cart is None:
        raise NotFoundError("Cart not found")
    return cart


def _check_stock(db: Database, product: dict, quantity: int):
    inventory = get_inventory_for_product(db, product["_id"])
    if quantity > inventory["quantityAvailable"]:
        raise InsufficientStock(
            f"Only {inventory['quantityAvailable']} units of {product['name']} are available"
        )


def _save(db: Database, cart: dict, **changes) -> dict:
    changes["updatedAt"] = datetime.utcnow()
    return db["cart"].find_one_and_update(
        {"_id": cart["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )


def add_item(db: Database, user_id, product_id, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1")
    product = get_product(db, product_id)
    _check_stock(db, product, quantity)

    cart = find_cart(db, user_id, product["category"])
    if cart is None:
        cart = Cart(userId=user_id, category=product["category"]).model_dump()
    elif cart.get("vendorId") is not None and cart["vendorId"] != product["vendorId"]:
        raise ValidationFailed(
            "Your cart already has items from another vendor. Clear the cart before adding items from a different vendor."
        )

    items = cart["items"]
    for line in items:
        if line["productId"] == product["_id"]:
            _check_stock(db, product, line["quantity"] + quantity)
            line["quantity"] += quantity
            break
    else:
        items.append({"productId": product["_id"], "quantity": quantity})

    if "_id" not in cart:
        cart["vendorId"] = product["vendorId"]
        try:
            return create_document(db, "cart", cart)
        except DuplicateKeyError:
            # another request created this cart first, add to that one instead
            logger.info("Cart for user %s in %s already exists, retrying add", user_id, product["category"])
            return add_item(db, user_id, product_id, quantity)
    return _save(db, cart, items=items, vendorId=product["vendorId"])


def get_cart(db: Database, user_id, category: str) -> dict:
    """The user's cart for ``category`` with products and vendor expanded."""
    cart = find_cart(db, user_id, check_category(category))
    if cart is None or not cart["items"]:
        raise NotFoundError("Cart is empty")

    products = lookup(db, "product", (line["productId"] for line in cart["items"]), PRODUCT_FIELDS)
    vendors = lookup(
        db,
        "user",
        [cart.get("vendorId")] + [p["vendorId"] for p in products.values()],
        VENDOR_FIELDS,
    )
    total = 0
    for line in cart["items"]:
        product = products.get(line["productId"])
        if product is not None:
            total += product["price"] * line["quantity"]
            product = dict(product, vendorId=vendors.get(product["vendorId"], product["vendorId"]))
        line["productId"] = product
    if cart.get("vendorId") is not None:
        cart["vendorId"] = vendors.get(cart["vendorId"], cart["vendorId"])
    cart["totalAmount"] = total
    return cart


def update_item_quantity(db: Database, user_id, product_id, quantity: int, category: str) -> dict:
    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1")
    cart = _require_cart(db, user_id, category)
    product_id = parse_object_id(product_id, "Product")
    line = next((line for line in cart["items"] if line["productId"] == product_id), None)
    if line is None:
        raise NotFoundError("Item not found in cart")
    _check_stock(db, get_product(db, product_id), quantity)
    line["quantity"] = quantity
    return _save(db, cart, items=cart["items"])


def remove_item(db: Database, user_id, product_id, category: str) -> dict:
    cart = _require_cart(db, user_id, category)
    product_id = parse_object_id(product_id, "Product")
    items = [line for line in cart["items"] if line["productId"] != product_id]
    if len(items) == len(cart["items"]):
        raise NotFoundError("Item not found in cart")
    if not items:
        return _save(db, cart, items=items, vendorId=None)
    return _save(db, cart, items=items)


def clear_cart(db: Database, user_id, category: str) -> dict:
    cart = _require_cart(db, user_id, category)
    return _save(db, cart, items=[], vendorId=None)


@router.post("/add")
def add_to_cart(payload: CartAddRequest, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(add_item(db, current["_id"], payload.productId, payload.quantity))


@router.get("/{category}")
def read_cart(category: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(get_cart(db, current["_id"], category))


@router.post("/clear/{category}")
def empty_cart(category: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    clear_cart(db, current["_id"], category)
    return {"message": f"{category} cart cleared"}


@router.put("/update-item")
def change_quantity(
    payload: CartUpdateRequest, current: dict = Depends(get_current_user), db: Database = Depends(get_db)
):
    cart = update_item_quantity(db, current["_id"], payload.productId, payload.quantity, payload.category)
    return serialize(cart)


@router.delete("/remove-item")
def drop_item(payload: CartRemoveRequest, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(remove_item(db, current["_id"], payload.productId, payload.category))
