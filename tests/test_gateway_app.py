from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from s3gate.common.settings import GatewaySettings
from s3gate.gateway.app import create_app

from tests.utils.fake_s3 import BUCKET, FakeS3Client, client_error


def test_upload_then_download_roundtrip(client: TestClient, fake_s3: FakeS3Client) -> None:
    payload = b"compiled artifact bytes" * 100
    resp = client.put("/builds/app.tar", content=payload, headers={"Content-Type": "application/x-tar"})
    assert resp.status_code == 201
    assert resp.content == b""

    stored = fake_s3.objects["ci/builds/app.tar"]
    assert stored["Body"] == payload
    assert stored["ContentType"] == "application/x-tar"

    resp = client.get("/builds/app.tar")
    assert resp.status_code == 200
    assert resp.content == payload
    assert resp.headers["content-type"] == "application/x-tar"
    assert resp.headers["content-length"] == str(len(payload))
    assert ("get_object", BUCKET, "ci/builds/app.tar") in fake_s3.calls


def test_post_behaves_like_put(client: TestClient, fake_s3: FakeS3Client) -> None:
    resp = client.post("/entry", content=b"first")
    assert resp.status_code == 201
    resp = client.post("/entry", content=b"second")
    assert resp.status_code == 201
    assert fake_s3.objects["ci/entry"]["Body"] == b"second"


def test_upload_without_content_type_stores_empty_type(client: TestClient, fake_s3: FakeS3Client) -> None:
    resp = client.put("/raw", content=b"")
    assert resp.status_code == 201
    assert fake_s3.objects["ci/raw"]["ContentType"] == ""
    assert fake_s3.objects["ci/raw"]["Body"] == b""


def test_head_reports_missing_then_present(client: TestClient, fake_s3: FakeS3Client) -> None:
    resp = client.head("/never-uploaded")
    assert resp.status_code == 404
    assert resp.content == b""

    assert client.put("/now-uploaded", content=b"12345").status_code == 201
    resp = client.head("/now-uploaded")
    assert resp.status_code == 200
    assert resp.headers["content-length"] == "5"
    assert resp.content == b""


def test_head_collapses_backend_errors_to_not_found(client: TestClient, fake_s3: FakeS3Client) -> None:
    fake_s3.put("ci/present", b"data")
    fake_s3.fail_with = client_error("AccessDenied", "HeadObject", "Access Denied")
    resp = client.head("/present")
    assert resp.status_code == 404


def test_mapped_headers_become_metadata(client: TestClient, fake_s3: FakeS3Client) -> None:
    resp = client.put(
        "/with-meta",
        content=b"body",
        headers={"X-Meta-Foo": "bar", "X-Build-Id": "1234", "X-Unmapped": "nope"},
    )
    assert resp.status_code == 201

    head = fake_s3.head_object(Bucket=BUCKET, Key="ci/with-meta")
    assert head["Metadata"] == {"foo": "bar", "build": "1234"}
    assert "x-unmapped" not in head["Metadata"]


def test_upload_failure_returns_400_with_error(client: TestClient, fake_s3: FakeS3Client) -> None:
    fake_s3.fail_with = client_error("AccessDenied", "PutObject", "Access Denied")
    resp = client.put("/denied", content=b"payload")
    assert resp.status_code == 400
    assert "Failed to write object body" in resp.text
    assert "AccessDenied" in resp.text
    assert "ci/denied" not in fake_s3.objects


def test_download_missing_object_is_404(client: TestClient) -> None:
    resp = client.get("/missing")
    assert resp.status_code == 404
    assert "missing" in resp.text


def test_download_backend_failure_is_502(client: TestClient, fake_s3: FakeS3Client) -> None:
    fake_s3.put("ci/present", b"data")
    fake_s3.fail_with = client_error("SlowDown", "GetObject", "Please reduce your request rate.")
    resp = client.get("/present")
    assert resp.status_code == 502
    assert "SlowDown" in resp.text


def test_download_closes_backend_stream(client: TestClient, fake_s3: FakeS3Client) -> None:
    fake_s3.put("ci/blob", b"x" * 10000)
    resp = client.get("/blob")
    assert resp.status_code == 200
    assert len(fake_s3.bodies) == 1
    body = fake_s3.bodies[0]
    assert body.closed
    assert body.reads == sorted(body.reads)


def test_unsupported_methods_get_405(client: TestClient, fake_s3: FakeS3Client) -> None:
    for method in ("DELETE", "PATCH", "OPTIONS"):
        resp = client.request(method, "/anything")
        assert resp.status_code == 405
        assert "GET" in resp.headers["allow"]
    assert fake_s3.calls == []


def test_request_path_maps_verbatim_to_key(client: TestClient, fake_s3: FakeS3Client) -> None:
    assert client.put("/nested/dir/file%20name.bin", content=b"1").status_code == 201
    assert "ci/nested/dir/file name.bin" in fake_s3.objects


def test_healthz_and_status(client: TestClient) -> None:
    resp = client.get("/_gateway/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}

    resp = client.get("/_gateway/status")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["backend"] == "s3"
    assert payload["bucket"] == BUCKET
    assert payload["key_prefix"] == "ci/"
    assert payload["mapped_headers"] == {"x-meta-foo": "foo", "x-build-id": "build"}


def test_metrics_requires_token(client: TestClient) -> None:
    assert client.get("/_gateway/metrics").status_code == 401

    client.put("/counted", content=b"abc")
    resp = client.get("/_gateway/metrics", headers={"Authorization": "Bearer metrics-secret"})
    assert resp.status_code == 200
    assert "s3gate_requests_total" in resp.text
    assert "s3gate_bytes_uploaded_total" in resp.text


def test_admin_endpoints_can_be_disabled(fake_s3: FakeS3Client) -> None:
    settings = GatewaySettings(bucket=BUCKET, admin_path_prefix="")
    with TestClient(create_app(settings)) as client:
        fake_s3.put("_gateway/healthz", b"an object, not a probe")
        resp = client.get("/_gateway/healthz")
        assert resp.status_code == 200
        assert resp.content == b"an object, not a probe"


def test_request_id_is_echoed_or_generated(client: TestClient) -> None:
    resp = client.head("/whatever", headers={"X-Request-Id": "build-42"})
    assert resp.headers["x-request-id"] == "build-42"

    generated = client.head("/whatever").headers["x-request-id"]
    assert len(generated) == 32


def test_upload_to_operational_path_is_rejected(client: TestClient, fake_s3: FakeS3Client) -> None:
    resp = client.put("/_gateway/status", content=b"my artifact")
    assert resp.status_code == 409
    assert "/_gateway/status" in resp.text
    assert "ci/_gateway/status" not in fake_s3.objects
    assert fake_s3.calls == []

    status_resp = client.get("/_gateway/status")
    assert status_resp.json()["backend"] == "s3"


def test_other_keys_under_admin_prefix_roundtrip(client: TestClient, fake_s3: FakeS3Client) -> None:
    assert client.put("/_gateway/notes.txt", content=b"my artifact").status_code == 201
    resp = client.get("/_gateway/notes.txt")
    assert resp.status_code == 200
    assert resp.content == b"my artifact"


def test_download_outcome_counted_after_body_is_sent(client: TestClient, fake_s3: FakeS3Client) -> None:
    labels = {"operation": "download", "outcome": "ok"}
    before = REGISTRY.get_sample_value("s3gate_requests_total", labels) or 0.0
    fake_s3.put("ci/counted.bin", b"z" * 10000)

    resp = client.get("/counted.bin")

    assert resp.content == b"z" * 10000
    assert REGISTRY.get_sample_value("s3gate_requests_total", labels) == before + 1
