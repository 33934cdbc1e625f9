"""HTTP gateway translating GET/HEAD/POST/PUT on a path into object-storage calls."""

from __future__ import annotations

import asyncio
import time
from typing import AsyncGenerator, Awaitable, Callable, Optional
from uuid import uuid4

import structlog
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from opentelemetry import trace
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import ClientDisconnect

from ..common.http_security import require_metrics_access
from ..common.observability import (
    REQUEST_ID_HEADER,
    bind_request_context,
    configure_logging,
    configure_tracing,
    instrument_fastapi_app,
)
from ..common.settings import GatewaySettings
from .backend import ObjectBackend, ObjectNotFound, StorageError, build_backend
from .mapping import ProxyConfig
from .transfer import AsyncBodyReader, iter_object_chunks


SERVICE_NAME = "s3gate.gateway"
LOGGER = structlog.get_logger(SERVICE_NAME)
TRACER = trace.get_tracer(SERVICE_NAME)

REQUEST_COUNTER = Counter(
    "s3gate_requests_total",
    "Gateway object requests by operation and outcome",
    labelnames=["operation", "outcome"],
)
BYTES_READ_COUNTER = Counter("s3gate_bytes_downloaded_total", "Object bytes streamed to clients")
BYTES_WRITTEN_COUNTER = Counter("s3gate_bytes_uploaded_total", "Object bytes accepted from clients")
REQUEST_LATENCY_HISTOGRAM = Histogram(
    "s3gate_request_latency_seconds",
    "Gateway request latency",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)


class GatewayState:
    def __init__(self, settings: GatewaySettings, config: ProxyConfig, backend: ObjectBackend):
        self.settings = settings
        self.config = config
        self.backend = backend
        self.logger = LOGGER.bind(bucket=config.bucket)
        # request paths answered by operational GET routes instead of the object store
        self.reserved_paths: frozenset[str] = frozenset()


def get_state(request: Request) -> GatewayState:
    return request.app.state.gateway_state  # type: ignore[attr-defined]


async def download_object(state: GatewayState, request: Request, key: str) -> Response:
    with TRACER.start_as_current_span("gateway.download", attributes={"s3gate.key": key}) as span:
        try:
            stored = await state.backend.open(key)
        except ObjectNotFound as exc:
            REQUEST_COUNTER.labels("download", "not_found").inc()
            state.logger.info("object_download_failed", key=key, error=str(exc.cause or exc), status=404)
            return PlainTextResponse(f"Object not found: {key}", status_code=status.HTTP_404_NOT_FOUND)
        except StorageError as exc:
            REQUEST_COUNTER.labels("download", "error").inc()
            state.logger.error("object_download_failed", key=key, error=str(exc.cause or exc), status=502)
            return PlainTextResponse(
                f"Failed to read object body: {exc.cause or exc}",
                status_code=status.HTTP_502_BAD_GATEWAY,
            )

        info = stored.info
        span.set_attribute("s3gate.bytes", info.content_length)
        headers = {
            "Content-Type": info.content_type or "application/octet-stream",
            "Content-Length": str(info.content_length),
        }
        if info.etag:
            headers["ETag"] = info.etag
        state.logger.debug("object_download_started", key=key, bytes=info.content_length)
        chunks = iter_object_chunks(stored, state.settings.download_chunk_bytes, on_chunk=BYTES_READ_COUNTER.inc)
        return StreamingResponse(count_download_outcome(chunks), headers=headers)


async def count_download_outcome(chunks: AsyncGenerator[bytes, None]) -> AsyncGenerator[bytes, None]:
    """Record the download outcome once the body has been fully sent, has failed, or was abandoned."""
    outcome = "aborted"
    try:
        async for chunk in chunks:
            yield chunk
        outcome = "ok"
    except StorageError:
        outcome = "error"
        raise
    finally:
        await chunks.aclose()
        REQUEST_COUNTER.labels("download", outcome).inc()


async def check_object_exists(state: GatewayState, request: Request, key: str) -> Response:
    with TRACER.start_as_current_span("gateway.exists", attributes={"s3gate.key": key}) as span:
        try:
            info = await state.backend.head(key)
        except StorageError as exc:
            # every failure cause is reported as a miss
            REQUEST_COUNTER.labels("exists", "not_found").inc()
            state.logger.info("object_head_failed", key=key, error=str(exc.cause or exc))
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        REQUEST_COUNTER.labels("exists", "ok").inc()
        span.set_attribute("s3gate.bytes", info.content_length)
        response = Response(status_code=status.HTTP_200_OK)
        response.headers["Content-Length"] = str(info.content_length)
        if info.content_type:
            response.headers["Content-Type"] = info.content_type
        return response


async def upload_object(state: GatewayState, request: Request, key: str) -> Response:
    if request.url.path in state.reserved_paths:
        REQUEST_COUNTER.labels("upload", "conflict").inc()
        state.logger.warning("object_upload_rejected", key=key, reason="reserved_path")
        return PlainTextResponse(
            f"Path {request.url.path} is reserved for gateway endpoints",
            status_code=status.HTTP_409_CONFLICT,
        )
    content_type = request.headers.get("content-type", "")
    metadata = state.config.to_metadata(request.headers.items())
    with TRACER.start_as_current_span("gateway.upload", attributes={"s3gate.key": key}) as span:
        reader = AsyncBodyReader(request.stream(), asyncio.get_running_loop())
        try:
            await state.backend.store(key, reader, content_type, metadata)
        except (StorageError, ClientDisconnect) as exc:
            cause = exc.cause if isinstance(exc, StorageError) and exc.cause else exc
            error = str(cause) or type(cause).__name__
            REQUEST_COUNTER.labels("upload", "error").inc()
            state.logger.warning(
                "object_upload_failed",
                key=key,
                error=error,
                bytes_read=reader.bytes_read,
            )
            return PlainTextResponse(
                f"Failed to write object body: {error}",
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        REQUEST_COUNTER.labels("upload", "ok").inc()
        BYTES_WRITTEN_COUNTER.inc(reader.bytes_read)
        span.set_attribute("s3gate.bytes", reader.bytes_read)
        state.logger.info("object_uploaded", key=key, bytes=reader.bytes_read, metadata_keys=sorted(metadata))
        return Response(status_code=status.HTTP_201_CREATED)


Handler = Callable[[GatewayState, Request, str], Awaitable[Response]]

# POST and PUT share one upload path; create and replace are not distinguished
DISPATCH: dict[str, Handler] = {
    "GET": download_object,
    "HEAD": check_object_exists,
    "POST": upload_object,
    "PUT": upload_object,
}


def create_app(settings: Optional[GatewaySettings] = None, backend: Optional[ObjectBackend] = None) -> FastAPI:
    settings = settings or GatewaySettings()
    configure_logging(SERVICE_NAME, settings.log_level, settings.log_format)
    configure_tracing(
        service_name=SERVICE_NAME,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    config = ProxyConfig.from_settings(settings)
    state = GatewayState(settings, config, backend or build_backend(settings))
    admin_prefix = settings.admin_path_prefix
    app = FastAPI()
    instrument_fastapi_app(
        app,
        excluded_urls=f"{admin_prefix}/healthz,{admin_prefix}/metrics" if admin_prefix else None,
    )
    app.state.gateway_state = state

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        state = request.app.state.gateway_state  # type: ignore[attr-defined]
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        bind_request_context(SERVICE_NAME, request_id, request.method, request.url.path)
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            state.logger.exception("http_request_error", duration_ms=round(duration * 1000, 2))
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        response.headers[REQUEST_ID_HEADER] = request_id

        # duration covers the handler only; streamed bodies continue afterwards
        log_kwargs = {"status": response.status_code, "duration_ms": round(duration * 1000, 2)}
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)
        return response

    if admin_prefix:
        state.reserved_paths = frozenset(f"{admin_prefix}/{name}" for name in ("healthz", "status", "metrics"))

        @app.get(f"{admin_prefix}/healthz", status_code=status.HTTP_200_OK)
        async def health_check() -> dict:
            """Liveness probe; does not touch the bucket."""
            return {"status": "healthy"}

        @app.get(f"{admin_prefix}/status")
        async def status_probe(state: GatewayState = Depends(get_state)) -> JSONResponse:
            payload = state.backend.status()
            payload.update(
                {
                    "key_prefix": state.config.key_prefix,
                    "mapped_headers": dict(state.config.header_map),
                }
            )
            return JSONResponse(payload)

        @app.get(f"{admin_prefix}/metrics")
        async def metrics_endpoint(request: Request, state: GatewayState = Depends(get_state)) -> Response:
            token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
            require_metrics_access(request, token)
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.api_route("/{object_path:path}", methods=list(DISPATCH))
    async def handle_object(
        object_path: str,
        request: Request,
        state: GatewayState = Depends(get_state),
    ) -> Response:
        key = state.config.object_key(request.url.path)
        return await DISPATCH[request.method](state, request, key)

    return app
