import pytest
from bson import ObjectId

from instacampus import cart, orders
from instacampus.errors import InsufficientStock, NotFoundError, PermissionDenied, ValidationFailed


@pytest.fixture
def student_id(db, student):
    return ObjectId(student.user["_id"])


@pytest.fixture
def placed(db, student, student_id, canteen_vendor, make_product):
    """A pending order of two samosas at 50 each, from a stock of 5."""
    samosa = make_product(canteen_vendor, "Samosa", price=50, stock=5)
    cart.add_item(db, student_id, samosa["_id"], 2)
    rv = student.post("/order/from-cart/canteen")
    assert rv.status_code == 201, rv.text
    return rv.json(), samosa


def set_status(db, order, status):
    db["order"].update_one({"_id": ObjectId(order["_id"])}, {"$set": {"orderStatus": status}})


def test_order_from_cart(db, placed, stock, student_id):
    order, samosa = placed
    assert order["totalAmount"] == 100
    assert order["orderStatus"] == "pending"
    assert order["paymentStatus"] == "pending"
    assert order["items"] == [{"productId": str(samosa["_id"]), "quantity": 2, "price": 50}]
    assert stock(samosa) == 3

    emptied = cart.find_cart(db, student_id, "canteen")
    assert emptied["items"] == []
    assert emptied["vendorId"] is None


def test_price_is_frozen(db, placed):
    order, samosa = placed
    db["product"].update_one({"_id": samosa["_id"]}, {"$set": {"price": 80}})
    stored = orders.get_order(db, order["_id"])
    assert stored["totalAmount"] == sum(item["price"] * item["quantity"] for item in stored["items"]) == 100


def test_total_over_several_lines(db, student_id, canteen_vendor, make_product):
    tea = make_product(canteen_vendor, "Tea", price=10, stock=10)
    bun = make_product(canteen_vendor, "Bun", price=25, stock=10)
    cart.add_item(db, student_id, tea["_id"], 3)
    cart.add_item(db, student_id, bun["_id"], 2)
    order = orders.create_from_cart(db, student_id, "canteen")
    assert order["totalAmount"] == 80


def test_empty_cart_cannot_be_ordered(student):
    rv = student.post("/order/from-cart/canteen")
    assert rv.status_code == 400
    assert rv.json()["message"] == "canteen cart is empty"


def test_short_stock_rolls_back_earlier_lines(db, student_id, canteen_vendor, make_product, stock):
    tea = make_product(canteen_vendor, "Tea", stock=5)
    bun = make_product(canteen_vendor, "Bun", stock=5)
    cart.add_item(db, student_id, tea["_id"], 2)
    cart.add_item(db, student_id, bun["_id"], 4)
    db["inventory"].update_one({"productId": bun["_id"]}, {"$set": {"quantityAvailable": 1}})

    with pytest.raises(InsufficientStock, match="Bun"):
        orders.create_from_cart(db, student_id, "canteen")

    assert stock(tea) == 5
    assert stock(bun) == 1
    assert db["order"].count_documents({}) == 0
    assert len(cart.find_cart(db, student_id, "canteen")["items"]) == 2


def test_missing_inventory_row_fails_checkout(db, student_id, canteen_vendor, make_product):
    tea = make_product(canteen_vendor, "Tea", stock=5)
    cart.add_item(db, student_id, tea["_id"], 1)
    db["inventory"].delete_many({})
    with pytest.raises(NotFoundError):
        orders.create_from_cart(db, student_id, "canteen")


def test_list_and_read_own_orders(student, other_student, placed):
    order, _ = placed
    listed = student.get("/order").json()
    assert [o["_id"] for o in listed] == [order["_id"]]
    assert listed[0]["items"][0]["productId"]["name"] == "Samosa"
    assert listed[0]["userId"]["email"] == "asha@campus.edu"

    assert student.get(f"/order/{order['_id']}").status_code == 200
    assert other_student.get("/order").json() == []
    assert other_student.get(f"/order/{order['_id']}").status_code == 403
    assert student.get(f"/order/{ObjectId()}").status_code == 404


def test_vendor_can_read_order_with_their_items(canteen_vendor, stationary_vendor, placed):
    order, _ = placed
    assert canteen_vendor.get(f"/order/{order['_id']}").status_code == 200
    assert stationary_vendor.get(f"/order/{order['_id']}").status_code == 403


@pytest.mark.parametrize("status", ["pending", "confirmed", "preparing"])
def test_cancel_restores_stock(db, student, placed, stock, status):
    order, samosa = placed
    set_status(db, order, status)
    rv = student.patch(f"/order/cancel/{order['_id']}")
    assert rv.status_code == 200
    assert rv.json()["order"]["orderStatus"] == "cancelled"
    assert rv.json()["message"] == "Order cancelled successfully"
    assert stock(samosa) == 5


@pytest.mark.parametrize("status", ["ready", "completed"])
def test_cannot_cancel_fulfilled_order(db, student, placed, stock, status):
    order, samosa = placed
    set_status(db, order, status)
    rv = student.patch(f"/order/cancel/{order['_id']}")
    assert rv.status_code == 400
    assert orders.get_order(db, order["_id"])["orderStatus"] == status
    assert stock(samosa) == 3


def test_cancel_twice_restores_once(db, student, placed, stock):
    order, samosa = placed
    assert student.patch(f"/order/cancel/{order['_id']}").status_code == 200
    assert student.patch(f"/order/cancel/{order['_id']}").status_code == 400
    assert stock(samosa) == 5


def test_only_the_customer_can_cancel(db, other_student, canteen_vendor, placed):
    order, _ = placed
    assert other_student.patch(f"/order/cancel/{order['_id']}").status_code == 403
    assert canteen_vendor.patch(f"/order/cancel/{order['_id']}").status_code == 403
    assert orders.get_order(db, order["_id"])["orderStatus"] == "pending"


def test_cancel_skips_missing_inventory_rows(db, student_id, placed):
    order, _ = placed
    db["inventory"].delete_many({})
    cancelled = orders.cancel(db, order["_id"], student_id)
    assert cancelled["orderStatus"] == "cancelled"


def test_cancel_unknown_order(student):
    assert student.patch(f"/order/cancel/{ObjectId()}").status_code == 404


def test_vendor_moves_order_through_statuses(db, canteen_vendor, placed):
    order, _ = placed
    for status in ("confirmed", "preparing", "ready", "completed"):
        rv = canteen_vendor.patch(f"/vendor/order/{status}/{order['_id']}")
        assert rv.status_code == 200, rv.text
        assert rv.json()["order"]["orderStatus"] == status
    assert orders.get_order(db, order["_id"])["orderStatus"] == "completed"


def test_vendor_may_skip_ahead(canteen_vendor, placed):
    order, _ = placed
    rv = canteen_vendor.patch(f"/vendor/order/ready/{order['_id']}")
    assert rv.status_code == 200


def test_terminal_orders_are_frozen(db, canteen_vendor, placed):
    order, _ = placed
    set_status(db, order, "completed")
    rv = canteen_vendor.patch(f"/vendor/order/preparing/{order['_id']}")
    assert rv.status_code == 400
    assert orders.get_order(db, order["_id"])["orderStatus"] == "completed"


def test_invalid_status_rejected(db, canteen_vendor, placed):
    order, _ = placed
    rv = canteen_vendor.patch(f"/vendor/order/delivered/{order['_id']}")
    assert rv.status_code == 400
    assert orders.get_order(db, order["_id"])["orderStatus"] == "pending"


def test_vendor_category_isolation(db, stationary_vendor, placed):
    order, _ = placed
    rv = stationary_vendor.patch(f"/vendor/order/ready/{order['_id']}")
    assert rv.status_code == 403
    assert orders.get_order(db, order["_id"])["orderStatus"] == "pending"


def test_category_check_covers_every_item(db, student_id, canteen_vendor, stationary_vendor, make_product):
    tea = make_product(canteen_vendor, "Tea", stock=5)
    pen = make_product(stationary_vendor, "Pen", stock=5)
    cart.add_item(db, student_id, tea["_id"], 1)
    order = orders.create_from_cart(db, student_id, "canteen")
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$push": {"items": {"productId": pen["_id"], "quantity": 1, "price": pen["price"]}}},
    )
    vendor = db["user"].find_one({"_id": tea["vendorId"]})
    with pytest.raises(PermissionDenied):
        orders.vendor_update_status(db, order["_id"], "ready", vendor)


def test_vendor_order_listing(db, student, student_id, canteen_vendor, other_canteen_vendor, make_product):
    mine = make_product(canteen_vendor, "Thali", price=60, stock=10)
    theirs = make_product(other_canteen_vendor, "Juice", price=30, stock=10)
    cart.add_item(db, student_id, mine["_id"], 1)
    first = orders.create_from_cart(db, student_id, "canteen")
    cart.add_item(db, student_id, theirs["_id"], 2)
    second = orders.create_from_cart(db, student_id, "canteen")
    # a mixed order can only come from older data; listing trims it to the vendor's lines
    db["order"].update_one(
        {"_id": second["_id"]},
        {"$push": {"items": {"productId": mine["_id"], "quantity": 3, "price": 60}}},
    )

    listed = canteen_vendor.get("/vendor/orders").json()["orders"]
    assert {o["_id"] for o in listed} == {str(first["_id"]), str(second["_id"])}
    for order in listed:
        assert all(item["productId"]["name"] == "Thali" for item in order["items"])
        assert order["userId"]["name"] == "Asha"
    trimmed = next(o for o in listed if o["_id"] == str(second["_id"]))
    assert trimmed["vendorAmount"] == 180

    other = other_canteen_vendor.get("/vendor/orders").json()["orders"]
    assert [o["_id"] for o in other] == [str(second["_id"])]


def test_recent_orders_skip_finished(db, student_id, canteen_vendor, make_product):
    thali = make_product(canteen_vendor, "Thali", stock=10)
    placed_ids = []
    for _ in range(3):
        cart.add_item(db, student_id, thali["_id"], 1)
        placed_ids.append(str(orders.create_from_cart(db, student_id, "canteen")["_id"]))
    db["order"].update_one({"_id": ObjectId(placed_ids[0])}, {"$set": {"orderStatus": "completed"}})
    db["order"].update_one({"_id": ObjectId(placed_ids[1])}, {"$set": {"orderStatus": "cancelled"}})

    recent = canteen_vendor.get("/vendor/recent/orders").json()["orders"]
    assert [o["_id"] for o in recent] == [placed_ids[2]]
    assert len(canteen_vendor.get("/vendor/orders").json()["orders"]) == 3


def test_vendor_without_orders(canteen_vendor):
    assert canteen_vendor.get("/vendor/orders").json() == {"orders": []}


def test_stock_never_negative_across_workflow(db, student_id, canteen_vendor, make_product, stock):
    dosa = make_product(canteen_vendor, "Dosa", stock=3)
    cart.add_item(db, student_id, dosa["_id"], 3)
    first = orders.create_from_cart(db, student_id, "canteen")
    assert stock(dosa) == 0
    with pytest.raises(InsufficientStock):
        cart.add_item(db, student_id, dosa["_id"], 1)
    orders.cancel(db, first["_id"], student_id)
    assert stock(dosa) == 3
    with pytest.raises(ValidationFailed):
        orders.cancel(db, first["_id"], student_id)
    assert stock(dosa) == 3


def test_vendor_cancel_restores_stock_once(db, student, canteen_vendor, placed, stock):
    order, samosa = placed
    rv = canteen_vendor.patch(f"/vendor/order/cancelled/{order['_id']}")
    assert rv.status_code == 200
    assert rv.json()["order"]["orderStatus"] == "cancelled"
    assert stock(samosa) == 5

    assert student.patch(f"/order/cancel/{order['_id']}").status_code == 400
    assert stock(samosa) == 5


def test_vendor_update_loses_to_concurrent_cancel(db, monkeypatch, student_id, placed, stock):
    order, samosa = placed
    stale = orders.get_order(db, order["_id"])
    orders.cancel(db, order["_id"], student_id)
    monkeypatch.setattr(orders, "get_order", lambda db, order_id: dict(stale))
    vendor = db["user"].find_one({"_id": samosa["vendorId"]})

    with pytest.raises(ValidationFailed, match="changed"):
        orders.vendor_update_status(db, order["_id"], "completed", vendor)

    assert db["order"].find_one({"_id": stale["_id"]})["orderStatus"] == "cancelled"
    assert stock(samosa) == 5


def test_vendor_reads_only_their_lines(db, student, canteen_vendor, other_canteen_vendor, placed, make_product):
    order, _ = placed
    juice = make_product(other_canteen_vendor, "Juice", price=30, stock=10)
    db["order"].update_one(
        {"_id": ObjectId(order["_id"])},
        {"$push": {"items": {"productId": juice["_id"], "quantity": 2, "price": 30}}},
    )

    mine = canteen_vendor.get(f"/order/{order['_id']}").json()
    assert [item["productId"]["name"] for item in mine["items"]] == ["Samosa"]
    assert mine["vendorAmount"] == 100

    theirs = other_canteen_vendor.get(f"/order/{order['_id']}").json()
    assert [item["productId"]["name"] for item in theirs["items"]] == ["Juice"]
    assert theirs["vendorAmount"] == 60

    full = student.get(f"/order/{order['_id']}").json()
    assert len(full["items"]) == 2
    assert "vendorAmount" not in full
