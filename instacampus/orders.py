"""
Order workflow.

Orders are placed from a cart: prices are frozen into the order at creation
time and stock is taken per line. Customers may cancel their own orders until
the order is ready; vendors move orders through the status list below for
orders that only contain products of their category.

    pending -> confirmed -> preparing -> ready -> completed
       any non-terminal status -> cancelled
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from . import inventory
from .cart import find_cart
from .catalog import check_category
from .database import create_document, get_db, lookup, parse_object_id, serialize
from .errors import InsufficientStock, NotFoundError, PermissionDenied, ValidationFailed
from .schemas import ORDER_STATUSES, Order, OrderItem
from .security import get_current_user, get_order_vendor, has_capability, vendor_category, UPDATE_ORDERS

logger = logging.getLogger(__name__)

order_router = APIRouter(prefix="/order", tags=["order"])
vendor_router = APIRouter(prefix="/vendor", tags=["vendor"])

ACTIVE_STATUSES = ("pending", "confirmed", "preparing", "ready")
TERMINAL_STATUSES = ("completed", "cancelled")
NOT_CANCELLABLE = ("ready", "completed")

PRODUCT_FIELDS = {"name": 1, "price": 1, "imgUrl": 1, "category": 1, "vendorId": 1}
USER_FIELDS = {"name": 1, "email": 1}


def get_order(db: Database, order_id) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "Order")})
    if order is None:
        raise NotFoundError("Order not found")
    return order


def expand_orders(db: Database, orders: list[dict]) -> list[dict]:
    """Replace product and user ids with the documents they point at."""
    products = lookup(
        db, "product", (item["productId"] for order in orders for item in order["items"]), PRODUCT_FIELDS
    )
    users = lookup(db, "user", (order["userId"] for order in orders), USER_FIELDS)
    for order in orders:
        for item in order["items"]:
            item["productId"] = products.get(item["productId"])
        order["userId"] = users.get(order["userId"], order["userId"])
    return orders


def _release(db: Database, items: list[dict]):
    for item in items:
        if not inventory.return_stock(db, item["productId"], item["quantity"]):
            logger.warning("No inventory row for product %s; %d units not restored", item["productId"], item["quantity"])


def create_from_cart(db: Database, user_id, category: str) -> dict:
    cart = find_cart(db, user_id, check_category(category))
    if cart is None or not cart["items"]:
        raise ValidationFailed(f"{category} cart is empty")

    products = lookup(db, "product", (line["productId"] for line in cart["items"]))
    items = []
    for line in cart["items"]:
        product = products.get(line["productId"])
        if product is None:
            raise NotFoundError("A product in your cart is no longer available")
        items.append(OrderItem(productId=product["_id"], quantity=line["quantity"], price=product["price"]))
    total = sum(item.price * item.quantity for item in items)

    taken = []
    for item in items:
        if inventory.take_stock(db, item.productId, item.quantity) is None:
            _release(db, taken)
            logger.warning("Checkout for user %s failed on product %s; released %d lines", user_id, item.productId, len(taken))
            # distinguish a missing row from a short one
            inventory.get_inventory_for_product(db, item.productId)
            name = products[item.productId]["name"]
            raise InsufficientStock(f"Insufficient stock for {name}")
        taken.append({"productId": item.productId, "quantity": item.quantity})

    order = create_document(
        db, "order", Order(userId=user_id, category=category, items=items, totalAmount=total)
    )
    db["cart"].update_one(
        {"_id": cart["_id"]}, {"$set": {"items": [], "vendorId": None, "updatedAt": datetime.utcnow()}}
    )
    logger.info("User %s placed order %s for %s", user_id, order["_id"], total)
    return order


def list_for_user(db: Database, user_id) -> list[dict]:
    orders = list(db["order"].find({"userId": user_id}).sort("createdAt", DESCENDING))
    return expand_orders(db, orders)


def _vendor_owns_item(db: Database, order: dict, vendor_id) -> bool:
    products = lookup(db, "product", (item["productId"] for item in order["items"]), {"vendorId": 1})
    return any(product["vendorId"] == vendor_id for product in products.values())


def _trim_to_vendor(order: dict, product_ids) -> dict:
    mine = set(product_ids)
    order["items"] = [item for item in order["items"] if item["productId"] in mine]
    order["vendorAmount"] = sum(item["price"] * item["quantity"] for item in order["items"])
    return order


def _vendor_product_ids(db: Database, vendor_id) -> list:
    return [p["_id"] for p in db["product"].find({"vendorId": vendor_id}, {"_id": 1})]


def read_order(db: Database, order_id, user: dict) -> dict:
    order = get_order(db, order_id)
    if order["userId"] == user["_id"] or user.get("role") == "admin":
        return expand_orders(db, [order])[0]
    if not (has_capability(user, UPDATE_ORDERS) and _vendor_owns_item(db, order, user["_id"])):
        raise PermissionDenied("You can only view your own orders")
    # vendors see only their own lines
    _trim_to_vendor(order, _vendor_product_ids(db, user["_id"]))
    return expand_orders(db, [order])[0]


def cancel(db: Database, order_id, user_id) -> dict:
    order = get_order(db, order_id)
    if order["userId"] != user_id:
        raise PermissionDenied("You can only cancel your own orders")
    if order["orderStatus"] in NOT_CANCELLABLE:
        raise ValidationFailed(f"Orders that are {order['orderStatus']} can not be cancelled")
    if order["orderStatus"] == "cancelled":
        raise ValidationFailed("Order is already cancelled")

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "orderStatus": order["orderStatus"]},
        {"$set": {"orderStatus": "cancelled", "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ValidationFailed("Order status changed while cancelling, try again")
    _release(db, updated["items"])
    logger.info("User %s cancelled order %s", user_id, order["_id"])
    return updated


def vendor_update_status(db: Database, order_id, new_status: str, vendor: dict) -> dict:
    order = get_order(db, order_id)
    category = vendor_category(vendor)
    products = lookup(db, "product", (item["productId"] for item in order["items"]), {"category": 1})
    for item in order["items"]:
        product = products.get(item["productId"])
        if product is None or product["category"] != category:
            raise PermissionDenied(f"This order contains items outside the {category} category")
    if new_status not in ORDER_STATUSES:
        raise ValidationFailed(f"{new_status} is not a valid order status")
    if order["orderStatus"] in TERMINAL_STATUSES:
        raise ValidationFailed(f"Order is already {order['orderStatus']}")

    # only moves the order if nobody else changed its status since it was read
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "orderStatus": order["orderStatus"]},
        {"$set": {"orderStatus": new_status, "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ValidationFailed("Order status changed while updating, try again")
    if new_status == "cancelled":
        _release(db, updated["items"])
    logger.info("Vendor %s moved order %s from %s to %s", vendor["_id"], order["_id"], order["orderStatus"], new_status)
    return updated


def list_for_vendor(db: Database, vendor_id, active_only: bool = False) -> list[dict]:
    """Orders holding this vendor's products, trimmed to those items."""
    product_ids = _vendor_product_ids(db, vendor_id)
    query = {"items.productId": {"$in": product_ids}}
    if active_only:
        query["orderStatus"] = {"$in": list(ACTIVE_STATUSES)}
    orders = list(db["order"].find(query).sort("createdAt", DESCENDING))

    for order in orders:
        _trim_to_vendor(order, product_ids)
    return expand_orders(db, [order for order in orders if order["items"]])


@order_router.post("/from-cart/{category}", status_code=status.HTTP_201_CREATED)
def place_order(category: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(create_from_cart(db, current["_id"], category))


@order_router.get("")
def my_orders(current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(list_for_user(db, current["_id"]))


@order_router.get("/{order_id}")
def order_detail(order_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(read_order(db, order_id, current))


@order_router.patch("/cancel/{order_id}")
def cancel_order(order_id: str, current: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = cancel(db, order_id, current["_id"])
    return {"order": serialize(order), "message": "Order cancelled successfully"}


@vendor_router.get("/orders")
def vendor_orders(vendor: dict = Depends(get_order_vendor), db: Database = Depends(get_db)):
    return {"orders": serialize(list_for_vendor(db, vendor["_id"]))}


@vendor_router.get("/recent/orders")
def recent_vendor_orders(vendor: dict = Depends(get_order_vendor), db: Database = Depends(get_db)):
    return {"orders": serialize(list_for_vendor(db, vendor["_id"], active_only=True))}


@vendor_router.patch("/order/{new_status}/{order_id}")
def update_order_status(
    new_status: str, order_id: str, vendor: dict = Depends(get_order_vendor), db: Database = Depends(get_db)
):
    order = vendor_update_status(db, order_id, new_status, vendor)
    return {"order": serialize(order), "message": f"Order status updated to {new_status}"}
