from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


def make_client() -> TestClient:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def test_settings_round_trip_and_validation() -> None:
    client = make_client()

    resp = client.put(
        "/api/settings", json={"cycle_length_days": 14, "anchor_date": "2025-01-06"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["cycle_length_days"] == 14
    assert body["anchor_date"] == "2025-01-06"

    resp = client.put(
        "/api/settings", json={"cycle_length_days": 0, "anchor_date": "2025-01-06"}
    )
    assert resp.status_code == 400
    assert "at least 1 day" in resp.json()["detail"]
    assert client.get("/api/settings").json()["cycle_length_days"] == 14


def test_manual_history_flow() -> None:
    client = make_client()
    client.put("/api/settings", json={"cycle_length_days": 30, "anchor_date": "2025-01-01"})
    food = client.post("/api/categories", json={"name": "Food", "rollover_mode": "both"})
    assert food.status_code == 201
    food_id = food.json()["id"]

    resp = client.post(
        "/api/history/manual",
        json={"period_start": "2025-01-01", "entries": [{"category_id": food_id, "spent": 40}]},
    )
    assert resp.status_code == 201
    assert resp.json()["category_count"] == 1
    assert resp.json()["period_end"] == "2025-01-31"

    page = client.get("/api/history/cycles").json()
    assert [item["period_start"] for item in page["items"]] == ["2025-01-01"]
    assert page["next_cursor"] is None

    detail = client.get("/api/history/cycles/2025-01-01").json()
    assert detail["categories"][0]["spent"] == 40
    assert detail["categories"][0]["carryover_running_total"] == -40

    missing = client.get("/api/history/cycles/2025-01-31").json()
    assert missing["cycle"] is None

    resp = client.post(
        "/api/history/manual", json={"period_start": "2025-01-31", "entries": []}
    )
    assert resp.status_code == 400
    assert "All expense categories" in resp.json()["detail"]
