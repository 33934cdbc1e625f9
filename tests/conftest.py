from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from s3gate.common.settings import GatewaySettings
from s3gate.gateway.app import create_app
from tests.utils.fake_s3 import BUCKET, FakeS3Client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_s3(monkeypatch: pytest.MonkeyPatch) -> FakeS3Client:
    client = FakeS3Client()

    class DummySession:
        def __init__(self) -> None:
            self.client_kwargs: dict[str, Any] = {}

        def client(self, *_args, **kwargs):  # noqa: D401 - mimic boto3 session
            self.client_kwargs = kwargs
            return client

    session = DummySession()
    client.session = session
    monkeypatch.setattr("s3gate.gateway.backend.boto3.session.Session", lambda: session)
    return client


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        bucket=BUCKET,
        key_prefix="ci/",
        header_mapping="X-Meta-Foo=foo,x-build-id=build,broken",
        download_chunk_bytes=4096,
        metrics_token="metrics-secret",
    )


@pytest.fixture
def app(settings: GatewaySettings, fake_s3: FakeS3Client):
    return create_app(settings)


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
