import io
import uuid

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from reliefphotos.photo_retrieval import IMMUTABLE_CACHE_CONTROL, PRIVATE_CACHE_CONTROL
from tests.helpers import FakeObjectStore


def _upload(client: TestClient, data: bytes, filename: str = "scene.jpg", content_type: str = "image/jpeg"):
    return client.post("/photos", files={"file": (filename, data, content_type)})


class TestUpload:
    def test_upload_returns_created(self, client: TestClient, store: FakeObjectStore, jpeg_1000x500: bytes):
        response = _upload(client, jpeg_1000x500)

        assert response.status_code == 201
        body = response.json()
        photo_id = uuid.UUID(body["id"])
        assert photo_id.version == 7
        assert body["path"] == f"/photos/{photo_id}"
        assert body["content_type"] == "image/jpeg"
        assert body["size"] == len(jpeg_1000x500)
        assert f"photos/{photo_id}.jpg" in store.objects

    def test_uploaded_photo_is_retrievable(self, client: TestClient, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]

        response = client.get(path, params={"thumbnail": "original"})

        assert response.status_code == 200
        assert response.content == jpeg_1000x500
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["cache-control"] == IMMUTABLE_CACHE_CONTROL

    def test_non_image_rejected(self, client: TestClient, store: FakeObjectStore):
        response = _upload(client, b"%PDF-1.4\nnot an image", filename="report.pdf", content_type="application/pdf")

        assert response.status_code == 400
        assert response.json() == {"error": "only image uploads are allowed"}
        assert store.objects == {}

    def test_svg_rejected(self, client: TestClient):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script></svg>'

        response = _upload(client, svg, filename="x.svg", content_type="image/svg+xml")

        assert response.status_code == 400

    def test_too_large(self, client: TestClient, store: FakeObjectStore, jpeg_1000x500: bytes):
        store.max_bytes = 100

        response = _upload(client, jpeg_1000x500)

        assert response.status_code == 413
        assert response.json() == {"error": "file too large"}
        assert store.calls["put"] == 0

    def test_not_multipart(self, client: TestClient, store: FakeObjectStore):
        response = client.post("/photos", json={"file": "abc"})

        assert response.status_code == 400
        assert "error" in response.json()
        assert store.total_calls == 0

    def test_missing_file_field(self, client: TestClient, jpeg_1000x500: bytes):
        response = client.post("/photos", files={"image": ("a.jpg", jpeg_1000x500, "image/jpeg")})

        assert response.status_code == 400
        assert "error" in response.json()

    def test_store_failure(self, client: TestClient, store: FakeObjectStore, jpeg_1000x500: bytes):
        store.fail_put = True

        response = _upload(client, jpeg_1000x500)

        assert response.status_code == 500
        assert response.json() == {"error": "upload failed"}

    def test_no_store_configured(self, client: TestClient, jpeg_1000x500: bytes):
        from reliefphotos.dependencies import get_s3_client
        from reliefphotos.main import app

        app.dependency_overrides[get_s3_client] = lambda: None

        response = _upload(client, jpeg_1000x500)

        assert response.status_code == 503
        assert response.json() == {"error": "upload unavailable"}


class TestRetrieve:
    def test_unknown_photo(self, client: TestClient):
        response = client.get(f"/photos/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"error": "not found"}

    def test_malformed_id_is_not_found(self, client: TestClient):
        assert client.get("/photos/not-a-uuid").status_code == 404

    def test_preset_thumbnail(self, client: TestClient, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]

        response = client.get(path, params={"thumbnail": "small"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        with Image.open(io.BytesIO(response.content)) as img:
            assert img.size == (100, 50)

    def test_unknown_preset_uses_medium(self, client: TestClient, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]

        response = client.get(path, params={"thumbnail": "gigantic"})

        with Image.open(io.BytesIO(response.content)) as img:
            assert img.width == 300

    def test_original_preset(self, client: TestClient, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]

        response = client.get(path, params={"thumbnail": "original"})

        assert response.content == jpeg_1000x500
        assert response.headers["cache-control"] == IMMUTABLE_CACHE_CONTROL

    def test_no_preset_serves_medium(self, client: TestClient, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]

        response = client.get(path)

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        with Image.open(io.BytesIO(response.content)) as img:
            assert img.size == (300, 150)

    def test_explicit_width_thumbnail(self, client: TestClient, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]

        first = client.get(f"{path}/thumb/w250")
        second = client.get(f"{path}/thumb/w250")

        assert first.status_code == 200
        assert first.headers["cache-control"] == IMMUTABLE_CACHE_CONTROL
        assert second.content == first.content
        with Image.open(io.BytesIO(first.content)) as img:
            assert img.size == (250, 125)

    @pytest.mark.parametrize("spec", ["w0", "w4097", "200", "h100", "wabc"])
    def test_invalid_spec_never_touches_store(self, client: TestClient, store: FakeObjectStore, spec: str):
        response = client.get(f"/photos/{uuid.uuid4()}/thumb/{spec}")

        assert response.status_code == 400
        assert "error" in response.json()
        assert store.total_calls == 0

    def test_store_down_redirects(self, client: TestClient, store: FakeObjectStore, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]
        store.fail_get = True

        response = client.get(f"{path}/thumb/w100")

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://store.test/bucket/photos/")
        assert response.headers["cache-control"] == PRIVATE_CACHE_CONTROL

    def test_every_tier_down(self, client: TestClient, store: FakeObjectStore, jpeg_1000x500: bytes):
        path = _upload(client, jpeg_1000x500).json()["path"]
        store.fail_get = True
        store.fail_presign = True

        response = client.get(path)

        assert response.status_code == 503
        assert response.json() == {"error": "source unavailable"}


class TestService:
    def test_healthz(self, client: TestClient):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
