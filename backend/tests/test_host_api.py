import sys
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from profilevault.config import StorageConfig
from profilevault.main import create_app

DATA = {"connections": [{"id": "a", "username": "root"}], "settings": {}, "timestamp": 42}


def make_client(tmp_path: Path) -> TestClient:
    return TestClient(create_app(StorageConfig(data_dir=tmp_path, kdf_iterations=1_000)))


def test_health_check(tmp_path):
    client = make_client(tmp_path)
    assert client.get("/").status_code == 200


def test_plain_round_trip(tmp_path):
    client = make_client(tmp_path)
    assert client.get("/api/storage/has-data").json() == {"has_data": False}
    assert client.get("/api/storage/data").json() is None

    r = client.post("/api/storage/data", json={"data": DATA, "use_password": False})
    assert r.status_code == 200
    assert client.get("/api/storage/has-data").json() == {"has_data": True}
    assert client.get("/api/storage/encrypted").json() == {"encrypted": False}
    assert client.get("/api/storage/data").json() == DATA


def test_encrypted_save_requires_password(tmp_path):
    client = make_client(tmp_path)
    r = client.post("/api/storage/data", json={"data": DATA, "use_password": True})
    assert r.status_code == 423
    assert r.json()["detail"]["code"] == "password_required"


def test_wrong_password_is_401(tmp_path):
    client = make_client(tmp_path)
    assert client.post("/api/storage/password", json={"password": "pw1"}).json() == {"status": "unlocked"}
    assert client.post("/api/storage/data", json={"data": DATA, "use_password": True}).status_code == 200
    assert client.get("/api/storage/encrypted").json() == {"encrypted": True}

    assert client.post("/api/storage/password", json={"password": None}).json() == {"status": "locked"}
    assert client.get("/api/storage/data").status_code == 423

    client.post("/api/storage/password", json={"password": "pw2"})
    r = client.get("/api/storage/data")
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "invalid_password"


def test_clear_storage(tmp_path):
    client = make_client(tmp_path)
    client.post("/api/storage/data", json={"data": DATA, "use_password": False})
    assert client.delete("/api/storage/data").json() == {"status": "ok"}
    assert client.get("/api/storage/has-data").json() == {"has_data": False}


def test_corrupted_store_is_409(tmp_path):
    (tmp_path / "store.json").write_text("not json at all")
    client = make_client(tmp_path)
    r = client.get("/api/storage/encrypted")
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "corrupted_data"
