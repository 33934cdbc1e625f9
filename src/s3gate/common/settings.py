"""Application configuration models for the gateway service."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class GatewaySettings(BaseSettings):
    """Runtime settings for the HTTP-to-object-storage gateway."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    bucket: str = env_field(..., "S3GATE_BUCKET")
    key_prefix: str = env_field("", "S3GATE_KEY_PREFIX")
    header_mapping: str = env_field("", "S3GATE_HEADER_MAPPING")
    host: str = env_field("0.0.0.0", "S3GATE_HOST")
    port: int = env_field(8080, "S3GATE_PORT")
    s3_endpoint_url: Optional[str] = env_field(None, "S3GATE_S3_ENDPOINT")
    s3_region: Optional[str] = env_field(None, "S3GATE_S3_REGION")
    download_chunk_bytes: int = env_field(64 * 1024, "S3GATE_DOWNLOAD_CHUNK_BYTES")
    multipart_threshold_bytes: int = env_field(8 * 1024 * 1024, "S3GATE_MULTIPART_THRESHOLD_BYTES")
    multipart_chunk_bytes: int = env_field(8 * 1024 * 1024, "S3GATE_MULTIPART_CHUNK_BYTES")
    upload_max_concurrency: int = env_field(4, "S3GATE_UPLOAD_MAX_CONCURRENCY")
    admin_path_prefix: str = env_field("/_gateway", "S3GATE_ADMIN_PATH_PREFIX")
    metrics_token: Optional[SecretStr] = env_field(None, "S3GATE_METRICS_TOKEN")
    log_level: str = env_field("INFO", "S3GATE_LOG_LEVEL")
    log_format: str = env_field("json", "S3GATE_LOG_FORMAT")
    otel_exporter_endpoint: Optional[str] = env_field(None, "S3GATE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "S3GATE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "S3GATE_OTEL_SAMPLER_RATIO")

    @field_validator("bucket")
    @classmethod
    def _require_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("bucket must not be empty")
        return value

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator(
        "download_chunk_bytes",
        "multipart_threshold_bytes",
        "multipart_chunk_bytes",
        "upload_max_concurrency",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be positive")
        return value

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @field_validator("admin_path_prefix", mode="before")
    @classmethod
    def _normalize_admin_prefix(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            value = value.strip().strip("/")
            return f"/{value}" if value else ""
        return value
