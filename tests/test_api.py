import io

from PIL import Image

from qrtrack import config
from qrtrack.qr_scanner.qr_engine import process_qr_image
from qrtrack.qr_scanner.render import render, to_data_url

from conftest import EMAIL, PASSWORD, UUID


class TestAuthRoutes:
    def test_register_returns_token(self, client):
        response = client.post("/auth/register", json={"email": EMAIL, "password": PASSWORD})
        assert response.status_code == 201
        assert response.json()["token"]

    def test_duplicate_registration(self, client, token):
        response = client.post("/auth/register", json={"email": EMAIL, "password": PASSWORD})
        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_login(self, client, token):
        response = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        assert response.status_code == 200
        assert response.json()["token"]

    def test_login_wrong_password(self, client, token):
        response = client.post("/auth/login", json={"email": EMAIL, "password": "wrong-password"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password.", "code": "invalid_credentials"}
        assert "token" not in response.json()

    def test_short_password_is_a_validation_error(self, client):
        response = client.post("/auth/register", json={"email": EMAIL, "password": "short"})
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_me(self, client, auth_headers):
        response = client.get("/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["email"] == EMAIL


class TestAuthRequired:
    def test_missing_token(self, client):
        response = client.get("/qrcodes")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token(self, client):
        response = client.post("/scan", json={"scannedUrl": UUID}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.json() == {"status": "ok", "storage": "memory"}
        assert response.headers["X-Request-ID"]


class TestQRCodes:
    def test_create_batch(self, client, auth_headers):
        batch = [
            {"id": UUID, "imageData": to_data_url(render(UUID)), "status": "inactive"},
            {"id": "plain-token-123"},
        ]
        response = client.post("/qrcodes", json=batch, headers=auth_headers)
        assert response.status_code == 201
        body = response.json()
        assert [r["id"] for r in body] == [UUID, "plain-token-123"]
        assert body[1]["imageData"].startswith("data:image/png;base64,")
        assert body[1]["status"] == "inactive"
        assert body[0]["createdAt"]

    def test_create_single(self, client, auth_headers):
        response = client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        assert response.status_code == 201
        assert response.json()[0]["id"] == UUID

    def test_empty_batch(self, client, auth_headers):
        response = client.post("/qrcodes", json=[], headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_conflicting_batch_changes_nothing(self, client, auth_headers):
        client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        response = client.post("/qrcodes", json=[{"id": "fresh"}, {"id": UUID}], headers=auth_headers)
        assert response.status_code == 409
        listing = client.get("/qrcodes", headers=auth_headers).json()
        assert [r["id"] for r in listing["qrs"]] == [UUID]

    def test_generate(self, client, auth_headers):
        response = client.post("/qrcodes/generate", json={"count": 3}, headers=auth_headers)
        assert response.status_code == 201
        qrs = response.json()["qrs"]
        assert len({qr["id"] for qr in qrs}) == 3
        listing = client.get("/qrcodes", headers=auth_headers).json()
        assert [r["id"] for r in listing["qrs"]] == [qr["id"] for qr in qrs]

    def test_generate_url_mode_decodes_to_scan_url(self, client, auth_headers):
        qr = client.post("/qrcodes/generate", json={"count": 1, "encodeUrl": True}, headers=auth_headers).json()["qrs"][0]
        png = client.get(f"/qrcodes/{qr['id']}/image", headers=auth_headers).content
        assert process_qr_image(png)["items"][0]["data"] == f"https://app/scan/{qr['id']}"

    def test_generate_rejects_bad_count(self, client, auth_headers):
        assert client.post("/qrcodes/generate", json={"count": 0}, headers=auth_headers).status_code == 400
        assert client.post("/qrcodes/generate", json={"count": 100_000}, headers=auth_headers).status_code == 400

    def test_list_paginated(self, client, auth_headers):
        client.post("/qrcodes", json=[{"id": f"code-{i}"} for i in range(5)], headers=auth_headers)
        first = client.get("/qrcodes?page=1&pageSize=2", headers=auth_headers).json()
        last = client.get("/qrcodes?page=3&pageSize=2", headers=auth_headers).json()
        assert [r["id"] for r in first["qrs"]] == ["code-0", "code-1"]
        assert first["hasMore"] is True
        assert [r["id"] for r in last["qrs"]] == ["code-4"]
        assert last["hasMore"] is False

    def test_update_status(self, client, auth_headers):
        client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        response = client.patch(f"/qrcodes/{UUID}/status", json={"status": "deactivate"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "deactivated"
        assert client.get(f"/qrcodes/{UUID}", headers=auth_headers).json()["status"] == "deactivated"

    def test_update_unknown(self, client, auth_headers):
        response = client.patch("/qrcodes/missing/status", json={"status": "active"}, headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_delete_all(self, client, auth_headers):
        client.post("/qrcodes", json=[{"id": "a"}, {"id": "b"}], headers=auth_headers)
        response = client.delete("/qrcodes", headers=auth_headers)
        assert response.json() == {"deletedCount": 2}
        assert client.get("/qrcodes", headers=auth_headers).json() == {"qrs": [], "hasMore": False}
        assert client.post("/qrcodes", json={"data": "a"}, headers=auth_headers).status_code == 409

    def test_image_and_label(self, client, auth_headers):
        client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        stored = client.get(f"/qrcodes/{UUID}/image", headers=auth_headers)
        assert stored.headers["content-type"] == "image/png"
        bare = client.get(f"/qrcodes/{UUID}/image?label=", headers=auth_headers)
        assert Image.open(io.BytesIO(bare.content)).height < Image.open(io.BytesIO(stored.content)).height

    def test_share_link(self, client, auth_headers):
        client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        share = client.post(f"/qrcodes/{UUID}/share", headers=auth_headers).json()
        assert share["shareUrl"].startswith("https://app/shared/")
        token = share["shareUrl"].rsplit("/", 1)[1]
        response = client.get(f"/shared/{token}")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert client.get("/shared/forged-token").status_code == 404

    def test_print_sheet(self, client, auth_headers):
        assert client.get("/qrcodes/print", headers=auth_headers).status_code == 404
        client.post("/qrcodes", json=[{"id": "a"}, {"id": "b"}], headers=auth_headers)
        response = client.get("/qrcodes/print", headers=auth_headers)
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")


class TestScan:
    def test_scan_url_payload(self, client, auth_headers):
        client.post("/qrcodes", json=[{"id": UUID, "targetUrl": "https://shop.example/1"}], headers=auth_headers)
        response = client.post(
            "/scan",
            json={"scannedUrl": f"https://app/scan/{UUID}", "action": "activate"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["id"] == UUID
        assert body["status"] == "active"
        assert body["destinationUrl"] == "https://shop.example/1"
        events = client.get("/scans", headers=auth_headers).json()["events"]
        assert len(events) == 1
        assert events[0]["qrId"] == UUID
        assert events[0]["action"] == "activate"

    def test_scan_unknown_code_logs_nothing(self, client, auth_headers):
        response = client.post("/scan", json={"scannedUrl": "plain-token-123"}, headers=auth_headers)
        assert response.status_code == 404
        assert client.get("/scans", headers=auth_headers).json() == {"events": []}

    def test_scan_uploaded_photo(self, client, auth_headers):
        client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        response = client.post(
            "/scan/image?action=deactivate",
            files={"file": ("photo.png", render(UUID, label=UUID), "image/png")},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "deactivated"

    def test_scan_photo_without_code(self, client, auth_headers):
        blank = io.BytesIO()
        Image.new("RGB", (64, 64), "white").save(blank, format="PNG")
        response = client.post(
            "/scan/image",
            files={"file": ("blank.png", blank.getvalue(), "image/png")},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_scan_photo_over_size_limit(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 1024)
        client.post("/qrcodes", json={"data": UUID}, headers=auth_headers)
        response = client.post(
            "/scan/image",
            files={"file": ("photo.png", render(UUID, label=UUID), "image/png")},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert client.get("/qrcodes/" + UUID, headers=auth_headers).json()["status"] == "inactive"

    def test_scan_events_filter(self, client, auth_headers):
        client.post("/qrcodes", json=[{"id": "a"}, {"id": "b"}], headers=auth_headers)
        client.post("/scan", json={"scannedUrl": "a"}, headers=auth_headers)
        client.post("/scan", json={"scannedUrl": "b"}, headers=auth_headers)
        events = client.get("/scans?qrId=b", headers=auth_headers).json()["events"]
        assert [e["qrId"] for e in events] == ["b"]
