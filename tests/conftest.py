import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ALLOW_ADMIN_SIGNUP", "true")

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from instacampus.database import create_document, get_db, init_indexes
from instacampus.main import app
from instacampus.schemas import VENDOR_ROLES, Inventory, Product
from instacampus.vendor_codes import issue_code

PASSWORD = "Passw0rd!"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["instacampus_test"]
    init_indexes(database)
    app.dependency_overrides[get_db] = lambda: database
    yield database
    app.dependency_overrides.clear()


def login_client(db, name, email, role, password=PASSWORD):
    client = TestClient(app)
    body = {"name": name, "email": email, "password": password, "role": role}
    if role in VENDOR_ROLES:
        body["vendorCode"] = issue_code(db, {"_id": ObjectId()}, role)["code"]
    r = client.post("/auth/signup", json=body)
    assert r.status_code == 201, r.text
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    client.user = r.json()["user"]
    return client


@pytest.fixture
def student(db):
    return login_client(db, "Asha", "asha@campus.edu", "student")


@pytest.fixture
def other_student(db):
    return login_client(db, "Ravi", "ravi@campus.edu", "student")


@pytest.fixture
def canteen_vendor(db):
    return login_client(db, "Canteen One", "canteen1@campus.edu", "canteen-vendor")


@pytest.fixture
def other_canteen_vendor(db):
    return login_client(db, "Canteen Two", "canteen2@campus.edu", "canteen-vendor")


@pytest.fixture
def stationary_vendor(db):
    return login_client(db, "Paper Mart", "paper@campus.edu", "stationary-vendor")


@pytest.fixture
def admin(db):
    return login_client(db, "Admin", "admin@campus.edu", "admin")


@pytest.fixture
def make_product(db):
    """Insert a product and its inventory row straight into the store."""

    def _make(vendor_client, name="Samosa", price=50, stock=5, category=None):
        vendor = db["user"].find_one({"email": vendor_client.user["email"]})
        category = category or {"canteen-vendor": "canteen", "stationary-vendor": "stationary"}[vendor["role"]]
        product = create_document(
            db, "product", Product(name=name, vendorId=vendor["_id"], category=category, price=price)
        )
        create_document(db, "inventory", Inventory(productId=product["_id"], quantityAvailable=stock))
        return product

    return _make


@pytest.fixture
def stock(db):
    def _stock(product):
        return db["inventory"].find_one({"productId": product["_id"]})["quantityAvailable"]

    return _stock
