from __future__ import annotations


def _assert_error_shape(res, *, error: str | None = None):
    data = res.json()
    assert isinstance(data, dict)
    assert isinstance(data.get("error"), str) and data["error"]
    assert isinstance(data.get("message"), str) and data["message"]
    if error is not None:
        assert data["error"] == error


def test_error_shape_401_missing_bearer(client):
    res = client.get("/api/users/me")
    assert res.status_code == 401
    _assert_error_shape(res, error="UNAUTHORIZED")


def test_error_shape_400_webhook_without_headers(client):
    res = client.post("/webhook", content=b"{}")
    assert res.status_code == 400
    _assert_error_shape(res, error="VALIDATION_ERROR")
    assert res.json()["details"]["check"] == "missing_headers"


def test_health_is_public(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
