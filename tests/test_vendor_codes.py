from datetime import datetime, timedelta

from bson import ObjectId
from fastapi.testclient import TestClient

from instacampus.main import app
from instacampus.vendor_codes import generate_code


def issue(admin, vendor_type="canteen-vendor"):
    rv = admin.post("/vendor-code/generate", json={"vendorType": vendor_type})
    assert rv.status_code == 201, rv.text
    return rv.json()["data"]


def test_generate_code_shape():
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()


def test_admin_generates_code(admin):
    data = issue(admin)
    assert data["vendorType"] == "canteen-vendor"
    assert data["used"] is False
    assert data["isActive"] is True
    assert data["createdBy"] == admin.user["_id"]


def test_only_admin_can_generate(student, canteen_vendor):
    for client in (student, canteen_vendor):
        rv = client.post("/vendor-code/generate", json={"vendorType": "canteen-vendor"})
        assert rv.status_code == 403


def test_invalid_vendor_type(admin):
    assert admin.post("/vendor-code/generate", json={"vendorType": "student"}).status_code == 400


def test_verify_then_use_once(db, admin):
    code = issue(admin)["code"]
    public = TestClient(app)
    rv = public.post("/vendor-code/verify", json={"code": code, "vendorType": "canteen-vendor"})
    assert rv.status_code == 200
    assert rv.json()["data"]["code"] == code
    wrong_type = public.post("/vendor-code/verify", json={"code": code, "vendorType": "stationary-vendor"})
    assert wrong_type.status_code == 404

    user_id = str(ObjectId())
    used = public.post("/vendor-code/use", json={"code": code, "userId": user_id})
    assert used.status_code == 200
    assert used.json()["data"]["used"] is True
    assert used.json()["data"]["usedBy"] == user_id

    assert public.post("/vendor-code/use", json={"code": code, "userId": user_id}).status_code == 404
    assert public.post("/vendor-code/verify", json={"code": code, "vendorType": "canteen-vendor"}).status_code == 404


def test_expired_code_is_rejected(db, admin):
    code = issue(admin)["code"]
    db["vendorcode"].update_one({"code": code}, {"$set": {"expiresAt": datetime.utcnow() - timedelta(minutes=1)}})
    rv = TestClient(app).post("/vendor-code/verify", json={"code": code, "vendorType": "canteen-vendor"})
    assert rv.status_code == 404


def test_listing_and_stats(db, admin):
    first = issue(admin)
    issue(admin, "stationary-vendor")
    TestClient(app).post("/vendor-code/use", json={"code": first["code"], "userId": str(ObjectId())})

    active = admin.get("/vendor-code/active").json()
    assert active["count"] == 1
    assert active["data"][0]["createdBy"]["email"] == "admin@campus.edu"

    assert admin.get("/vendor-code/all").json()["count"] == 2
    assert admin.get("/vendor-code/all", params={"used": "true"}).json()["count"] == 1
    assert admin.get("/vendor-code/all", params={"vendorType": "stationary-vendor"}).json()["count"] == 1

    stats = admin.get("/vendor-code/stats").json()["data"]
    assert stats == {"total": 2, "active": 1, "used": 1, "expired": 0}


def test_deactivate_and_delete(admin):
    data = issue(admin)
    rv = admin.patch(f"/vendor-code/deactivate/{data['_id']}")
    assert rv.status_code == 200
    assert rv.json()["data"]["isActive"] is False
    rv = TestClient(app).post("/vendor-code/verify", json={"code": data["code"], "vendorType": "canteen-vendor"})
    assert rv.status_code == 404

    assert admin.delete(f"/vendor-code/{data['_id']}").status_code == 200
    assert admin.delete(f"/vendor-code/{data['_id']}").status_code == 404
    assert admin.patch(f"/vendor-code/deactivate/{ObjectId()}").status_code == 404
