import pytest
from fastapi.testclient import TestClient

from fg_dispatch import auth as auth_utils
from fg_dispatch import models


@pytest.fixture()
def tester(db, monkeypatch: pytest.MonkeyPatch) -> models.User:
    def fake_verify_password(password: str, password_hash: str) -> bool:
        return password == "s3cret" and password_hash == "hashed-password"

    monkeypatch.setattr(auth_utils, "verify_password", fake_verify_password)
    return db.add(models.User(username="tester", name="Tester", password_hash="hashed-password", role="admin"))


def test_login_with_form_data(client: TestClient, tester) -> None:
    response = client.post(
        "/auth/login",
        data={"username": "tester", "password": "s3cret"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["token_type"] == "bearer"
    assert isinstance(payload["access_token"], str)
    assert payload["access_token"]


def test_login_with_json_body(client: TestClient, tester) -> None:
    response = client.post(
        "/auth/login",
        json={"username": "tester", "password": "s3cret"},
    )
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "tester"
    assert me.json()["role"] == "admin"


def test_wrong_password_is_rejected_and_audited(client: TestClient, db, tester) -> None:
    response = client.post("/auth/login", json={"username": "tester", "password": "nope"})

    assert response.status_code == 401
    assert response.json()["code"] == "auth.invalid_credentials"
    (attempt,) = db.all(models.Audit, models.Audit.action == "login_failed")
    assert attempt.entity_id == "tester"


def test_inactive_user_cannot_log_in(client: TestClient, db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth_utils, "verify_password", lambda password, password_hash: True)
    db.add(models.User(username="gone", name="Gone", password_hash="x", role="manager", active=False))

    response = client.post("/auth/login", json={"username": "gone", "password": "whatever"})

    assert response.status_code == 403


def test_garbage_token_is_rejected(client: TestClient, db) -> None:
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_stock_socket_requires_a_token(client: TestClient, db) -> None:
    from starlette.websockets import WebSocketDisconnect

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/stock?token=bad") as websocket:
            websocket.receive_text()
    assert excinfo.value.code == 1008


def test_stock_socket_refuses_inactive_and_unknown_users(client: TestClient, db, bearer) -> None:
    from starlette.websockets import WebSocketDisconnect

    inactive = db.add(models.User(username="left", name="Left", password_hash="x", role="manager", active=False))
    unknown = models.User(id=9999, role="admin")

    for user in (inactive, unknown):
        token = bearer(user)["Authorization"].split()[1]
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect(f"/ws/stock?token={token}") as websocket:
                websocket.receive_text()
        assert excinfo.value.code == 1008
