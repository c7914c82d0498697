"""API-level tests for uploads, splits, crops, signed downloads and versions."""

import pytest
from fastapi.testclient import TestClient

from layout_foundry.api import app
from layout_foundry.config import Settings, get_settings
from layout_foundry.db.base import get_db
from layout_foundry.routes import get_blob_store, get_signer
from layout_foundry.storage.signing import SignedAccessService


@pytest.fixture
def settings() -> Settings:
    return Settings(
        signing_secret="api-test-secret",
        environment="test",
        recent_splits_cap=3,
        version_keep_count=1,
    )


@pytest.fixture
def client(session_factory, blob_store, settings):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_signer] = lambda: SignedAccessService.from_settings(settings)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def upload_id(client, png_800x600) -> str:
    response = client.post(
        "/uploads",
        files={"file": ("home.png", png_800x600, "image/png")},
        data={"user_id": "user-1"},
    )
    assert response.status_code == 201
    return response.json()["upload"]["id"]


@pytest.fixture
def split_id(client, upload_id) -> str:
    response = client.post(f"/uploads/{upload_id}/splits", json={})
    assert response.status_code == 201
    return response.json()["split"]["id"]


def version_payload(files, **meta):
    body = {"module_name": "Hero", "created_by": "builder"}
    body.update(meta)
    return {"package_id": "pkg-1", "files": files, "meta": body}


class TestSystem:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert isinstance(response.json()["version"], str)


class TestUploads:
    def test_upload_roundtrip(self, client, upload_id):
        response = client.get(f"/uploads/{upload_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["filename"] == "home.png"
        assert body["user_id"] == "user-1"
        assert body["storage_key"].endswith(".png")

    def test_empty_upload_rejected(self, client):
        response = client.post("/uploads", files={"file": ("a.png", b"", "image/png")})
        assert response.status_code == 400

    def test_missing_upload(self, client):
        assert client.get("/uploads/nope").status_code == 404

    def test_cascade_delete(self, client, upload_id, split_id, blob_store):
        key = client.get(f"/uploads/{upload_id}").json()["storage_key"]

        response = client.delete(f"/uploads/{upload_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["splits_deleted"] == 1
        assert body["blobs_deleted"] == 1
        assert not blob_store.exists(key)
        assert client.get(f"/splits/{split_id}").status_code == 404
        assert client.delete(f"/uploads/{upload_id}").status_code == 404


class TestSplits:
    def test_split_for_missing_upload(self, client):
        response = client.post("/uploads/nope/splits", json={})
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_status_and_metrics(self, client, split_id):
        response = client.patch(f"/splits/{split_id}/status", json={"status": "completed"})
        assert response.json()["split"]["status"] == "completed"

        client.patch(f"/splits/{split_id}/metrics", json={"metrics": {"sections": 2}})
        response = client.patch(f"/splits/{split_id}/metrics", json={"metrics": {"ms": 40}})
        assert response.json()["split"]["metrics"] == {"sections": 2, "ms": 40}

    def test_list_upload_splits(self, client, upload_id, split_id):
        response = client.get(f"/uploads/{upload_id}/splits")
        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == [split_id]
        assert client.get("/uploads/nope/splits").status_code == 404

    def test_invalid_status(self, client, split_id):
        response = client.patch(f"/splits/{split_id}/status", json={"status": "bogus"})
        assert response.status_code == 422

    def test_recent_is_capped(self, client, upload_id):
        for _ in range(5):
            client.post(f"/uploads/{upload_id}/splits", json={})
        response = client.get("/splits/recent", params={"limit": 50})
        assert len(response.json()) == 3

    def test_crops_and_assets(self, client, split_id):
        response = client.post(
            f"/splits/{split_id}/crops",
            json={
                "sections": [
                    {"index": 0, "bounds": {"x": 0, "y": 0, "width": 100, "height": 20}, "unit": "percent"},
                    {"index": 1, "bounds": {"x": 0, "y": 20, "width": 100, "height": 80}, "unit": "percent"},
                ]
            },
        )
        assert response.status_code == 200
        crops = response.json()["crops"]
        assert [c["bounds"] for c in crops] == [
            {"x": 0, "y": 0, "width": 800, "height": 120},
            {"x": 0, "y": 120, "width": 800, "height": 480},
        ]

        assets = client.get(f"/splits/{split_id}/assets", params={"kind": "image-crop"}).json()
        assert [a["order"] for a in assets] == [0, 1]

    def test_crops_require_sections(self, client, split_id):
        response = client.post(f"/splits/{split_id}/crops", json={"sections": []})
        assert response.status_code == 422


class TestSignedDownloads:
    def test_sign_and_download(self, client, upload_id, png_800x600):
        key = client.get(f"/uploads/{upload_id}").json()["storage_key"]

        grant = client.post("/files/sign", json={"key": key}).json()
        response = client.get(grant["url"])

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content == png_800x600

    def test_tampered_signature(self, client, upload_id):
        key = client.get(f"/uploads/{upload_id}").json()["storage_key"]
        grant = client.post("/files/sign", json={"key": key}).json()

        response = client.get(
            "/files/download",
            params={"key": key, "exp": grant["exp"], "sig": "0" * 64},
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "invalid or expired"}

    def test_non_ascii_signature(self, client, upload_id):
        key = client.get(f"/uploads/{upload_id}").json()["storage_key"]
        grant = client.post("/files/sign", json={"key": key}).json()

        response = client.get(
            "/files/download",
            params={"key": key, "exp": grant["exp"], "sig": "é" + grant["sig"][1:]},
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "invalid or expired"}

    def test_expired_grant(self, client, upload_id, settings):
        key = client.get(f"/uploads/{upload_id}").json()["storage_key"]
        signer = SignedAccessService.from_settings(settings)
        exp = signer.clock() - 1000

        response = client.get(
            "/files/download",
            params={"key": key, "exp": exp, "sig": signer.sign(key, exp)},
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "invalid or expired"}

    def test_sign_unknown_key(self, client):
        assert client.post("/files/sign", json={"key": "missing.png"}).status_code == 404


class TestVersions:
    def test_version_lifecycle(self, client):
        v1 = client.post("/modules/mod-1/versions", json=version_payload({"a.html": "X"}))
        assert v1.status_code == 201
        v1 = v1.json()["version"]
        v2 = client.post(
            "/modules/mod-1/versions",
            json=version_payload({"a.html": "Y", "b.css": "Z"}),
        ).json()["version"]
        assert (v1["version_number"], v2["version_number"]) == ("1.0.0", "1.0.1")

        compare = client.get(
            "/versions/compare", params={"a": v1["version_id"], "b": v2["version_id"]}
        ).json()
        assert compare["differences"]["files_added"] == ["b.css"]
        assert compare["compatibility_score"] == 0

        client.patch(f"/versions/{v1['version_id']}/status", json={"status": "active"})
        client.patch(f"/versions/{v2['version_id']}/status", json={"status": "active"})
        assert client.get(f"/versions/{v1['version_id']}").json()["status"] == "deployed"

        rollback = client.post(
            f"/versions/{v2['version_id']}/rollback",
            json={
                "target_version_id": v1["version_id"],
                "reason": "regression",
                "performed_by": "alice",
            },
        )
        assert rollback.status_code == 201
        assert rollback.json()["version"]["files"] == {"a.html": "X"}

        index = client.get("/modules/mod-1/versions").json()["versions"]
        assert len(index) == 3
        assert "files" not in index[0]

        history = client.get("/modules/mod-1/history").json()
        assert history["version_stats"]["rollbacks"] == 1

        stats = client.get("/versions/stats").json()
        assert stats["total_versions"] == 3

        verify = client.get(f"/versions/{v1['version_id']}/verify").json()
        assert verify["checksum_valid"] is True

    def test_archive_and_purge(self, client):
        for i in range(3):
            client.post("/modules/mod-1/versions", json=version_payload({"a.html": str(i)}))

        archived = client.post("/modules/mod-1/archive").json()
        assert archived["archived"] == 2

        deleted = client.delete("/modules/mod-1/archived").json()
        assert deleted["deleted"] == 2
        assert len(client.get("/modules/mod-1/versions").json()["versions"]) == 1

    def test_missing_version(self, client):
        assert client.get("/versions/v_missing").status_code == 404
        response = client.patch("/versions/v_missing/status", json={"status": "active"})
        assert response.status_code == 404

    def test_cross_module_rollback(self, client):
        a = client.post("/modules/mod-a/versions", json=version_payload({})).json()["version"]
        b = client.post("/modules/mod-b/versions", json=version_payload({})).json()["version"]

        response = client.post(
            f"/versions/{a['version_id']}/rollback",
            json={"target_version_id": b["version_id"], "reason": "x", "performed_by": "y"},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "VERSION_LINEAGE_MISMATCH"
