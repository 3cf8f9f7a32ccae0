from fastapi.testclient import TestClient

from instacampus.main import app


def test_root(db):
    assert TestClient(app).get("/").json() == {"name": "InstaCampus API", "status": "ok"}


def test_database_health(db):
    info = TestClient(app).get("/test").json()
    assert info["backend"] == "running"
    assert info["database"] == "connected"


def test_malformed_body_is_a_400(student):
    rv = student.post("/cart/add", json={"quantity": 1})
    assert rv.status_code == 400
    assert "productId" in rv.json()["message"]
