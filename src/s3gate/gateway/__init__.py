"""HTTP gateway in front of an object-storage bucket."""

from .app import create_app
from .mapping import ProxyConfig, parse_header_mapping

__all__ = ["create_app", "ProxyConfig", "parse_header_mapping"]
