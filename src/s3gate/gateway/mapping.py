"""Translation of request paths and headers into object keys and metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple

from ..common.settings import GatewaySettings


def parse_header_mapping(raw: str | None) -> dict[str, str]:
    """Parse ``header1=meta1,header2=meta2`` into an ordered header-to-metadata map.

    Pairs that do not split into exactly two non-empty parts are dropped. Header
    names are lower-cased so lookups match case-insensitively.
    """
    mapping: dict[str, str] = {}
    if not raw:
        return mapping
    for item in raw.split(","):
        parts = item.split("=")
        if len(parts) != 2:
            continue
        header, meta = parts[0].strip().lower(), parts[1].strip()
        if header and meta:
            mapping[header] = meta
    return mapping


def strip_leading_slash(path: str) -> str:
    if path.startswith("/"):
        return path[1:]
    return path


@dataclass(frozen=True)
class ProxyConfig:
    """Process-wide gateway configuration, built once at startup."""

    bucket: str
    key_prefix: str = ""
    header_map: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "header_map", MappingProxyType(dict(self.header_map)))

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "ProxyConfig":
        return cls(
            bucket=settings.bucket,
            key_prefix=settings.key_prefix,
            header_map=parse_header_mapping(settings.header_mapping),
        )

    def object_key(self, path: str) -> str:
        # plain concatenation; ".." and encoded segments pass through untouched
        return self.key_prefix + strip_leading_slash(path)

    def to_metadata(self, headers: Iterable[Tuple[str, str]]) -> dict[str, str]:
        """Copy mapped headers into object metadata, keeping the first value of repeated headers."""
        metadata: dict[str, str] = {}
        seen: set[str] = set()
        for name, value in headers:
            lowered = name.lower()
            if lowered in seen:
                continue
            target = self.header_map.get(lowered)
            if target is None:
                continue
            seen.add(lowered)
            metadata[target] = value
        return metadata
