from fastapi.testclient import TestClient

from novel2epub.main import app

client = TestClient(app)


def test_health_ok():
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["service"] == "api"
    assert "version" in data
