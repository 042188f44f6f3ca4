"""Integration tests for the Files API routes."""

from fastapi.testclient import TestClient
from sqlmodel import Session

from api.files.models import GlobalFile
from tests.fixtures.files import OTHER_USER_ID, SHARED_FILE_LIST, USER_ID


def _create(client: TestClient, **overrides) -> dict:
    payload = {
        "name": "test-file.txt",
        "url": "https://example.com/test-file.txt",
        "size": 100,
        "mime_type": "text/plain",
        **overrides,
    }
    response = client.post("/api/v1/files", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_missing_user_header(client: TestClient):
    """Test requests without X-User-Id are rejected"""
    response = client.get("/api/v1/files", headers={"X-User-Id": ""})
    assert response.status_code == 401


def test_create_and_get_file(client: TestClient):
    """Test creating a file and reading it back"""
    data = _create(client)
    assert data["user_id"] == USER_ID
    assert data["file_hash"] is None

    response = client.get(f"/api/v1/files/{data['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "test-file.txt"


def test_create_file_rejects_user_id(client: TestClient):
    """Test the owner cannot be chosen in the request body"""
    response = client.post(
        "/api/v1/files",
        json={
            "name": "a.txt", "url": "u", "size": 1, "mime_type": "text/plain",
            "user_id": OTHER_USER_ID,
        },
    )
    assert response.status_code == 422


def test_create_file_unknown_hash(client: TestClient):
    """Test a dangling hash returns 409"""
    response = client.post(
        "/api/v1/files",
        json={"name": "a.txt", "url": "u", "size": 1, "mime_type": "text/plain",
              "file_hash": "missing"},
    )
    assert response.status_code == 409


def test_get_file_not_found(client: TestClient):
    """Test another user's file is reported as not found"""
    data = _create(client)

    response = client.get(
        f"/api/v1/files/{data['id']}", headers={"X-User-Id": OTHER_USER_ID}
    )
    assert response.status_code == 404
    assert "not found" in response.json()["detail"].lower()


def test_update_file(client: TestClient):
    """Test patching file metadata"""
    data = _create(client)

    response = client.patch(
        f"/api/v1/files/{data['id']}", json={"name": "renamed.txt", "size": 200}
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["name"] == "renamed.txt"
    assert updated["size"] == 200
    assert updated["url"] == data["url"]


def test_update_file_null_name(client: TestClient):
    """Test patching a null name keeps the stored name"""
    data = _create(client)

    response = client.patch(f"/api/v1/files/{data['id']}", json={"name": None})
    assert response.status_code == 200
    assert response.json()["name"] == "test-file.txt"


def test_update_file_not_found(client: TestClient):
    """Test patching a missing file returns 404"""
    response = client.patch("/api/v1/files/missing", json={"name": "x"})
    assert response.status_code == 404


def test_global_file_lifecycle(client: TestClient, session: Session):
    """Test hash check, reference count, and removal on last delete"""
    response = client.post(
        "/api/v1/files/global",
        json={
            "hash_id": "abc",
            "mime_type": "text/plain",
            "size": 100,
            "url": "https://example.com/abc.txt",
            "file_metadata": {"key": "value"},
        },
    )
    assert response.status_code == 201
    assert response.json()["hash_id"] == "abc"

    response = client.get("/api/v1/files/hash/abc")
    assert response.json() == {
        "exists": True,
        "mime_type": "text/plain",
        "size": 100,
        "url": "https://example.com/abc.txt",
        "file_metadata": {"key": "value"},
    }

    data = _create(client, file_hash="abc")
    response = client.get("/api/v1/files/hash/abc/count")
    assert response.json() == {"hash_id": "abc", "count": 1}

    response = client.delete(f"/api/v1/files/{data['id']}")
    assert response.status_code == 204

    response = client.get("/api/v1/files/hash/abc")
    assert response.json() == {"exists": False}
    session.expire_all()
    assert session.get(GlobalFile, "abc") is None


def test_global_file_retained_when_disabled(client: TestClient, monkeypatch):
    """Test DISABLE_REMOVE_GLOBAL_FILE keeps the blob after the last delete"""
    monkeypatch.setenv("DISABLE_REMOVE_GLOBAL_FILE", "true")
    client.post(
        "/api/v1/files/global",
        json={"hash_id": "keep", "mime_type": "text/plain", "size": 1, "url": "u"},
    )
    data = _create(client, file_hash="keep")

    client.delete(f"/api/v1/files/{data['id']}")

    assert client.get("/api/v1/files/hash/keep").json()["exists"] is True


def test_delete_missing_file(client: TestClient):
    """Test deleting a missing file succeeds"""
    response = client.delete("/api/v1/files/missing")
    assert response.status_code == 204


def test_bulk_delete_and_clear(client: TestClient):
    """Test bulk delete by ids and clearing the rest"""
    first = _create(client, name="one.txt")
    second = _create(client, name="two.txt")
    _create(client, name="three.txt")

    response = client.post(
        "/api/v1/files/delete", json={"ids": [first["id"], second["id"]]}
    )
    assert response.status_code == 204
    assert [f["name"] for f in client.get("/api/v1/files").json()] == ["three.txt"]

    response = client.delete("/api/v1/files")
    assert response.status_code == 204
    assert client.get("/api/v1/files").json() == []


def test_query_files(client: TestClient):
    """Test listing with filters and an unknown sorter"""
    for file_in in SHARED_FILE_LIST:
        _create(client, **file_in)

    response = client.get("/api/v1/files", params={"q": "DOC"})
    assert [f["name"] for f in response.json()] == ["document.pdf"]

    response = client.get("/api/v1/files", params={"category": "images"})
    assert [f["name"] for f in response.json()] == ["image.jpg"]

    response = client.get(
        "/api/v1/files", params={"sorter": "size", "sort_type": "asc"}
    )
    assert [f["size"] for f in response.json()] == [500, 1000, 2000]

    response = client.get(
        "/api/v1/files", params={"sorter": "invalidField", "sort_type": "asc"}
    )
    assert response.status_code == 200
    assert len(response.json()) == 3


def test_query_knowledge_base(client: TestClient):
    """Test knowledge base filters over HTTP"""
    linked = _create(client, name="linked.txt", knowledge_base_id="kb1")
    unlinked = _create(client, name="unlinked.txt")

    response = client.get("/api/v1/files", params={"knowledge_base_id": "kb1"})
    assert [f["id"] for f in response.json()] == [linked["id"]]

    response = client.get(
        "/api/v1/files", params={"show_files_in_knowledge_base": "false"}
    )
    assert [f["id"] for f in response.json()] == [unlinked["id"]]


def test_usage(client: TestClient):
    """Test usage totals the caller's file sizes"""
    for file_in in SHARED_FILE_LIST:
        _create(client, **file_in)

    response = client.get("/api/v1/files/usage")
    assert response.json() == {"user_id": USER_ID, "total_size": 3500}

    response = client.get("/api/v1/files/usage", headers={"X-User-Id": OTHER_USER_ID})
    assert response.json()["total_size"] == 0


def test_health(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
