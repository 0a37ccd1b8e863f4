"""
Helper Utility Module

This module provides small helper functions shared by the ingestion,
mapping and rendering services.
"""

import base64
import re
from datetime import datetime
from typing import Optional, Dict, Any, Tuple
from urllib.parse import urljoin, urlparse, unquote_to_bytes

DATA_URL_PATTERN = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<b64>;base64)?,(?P<data>.*)$', re.DOTALL)


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is valid.

    Args:
        url: The URL to validate

    Returns:
        bool: True if the URL is valid, False otherwise
    """
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def resolve_url(base_url: str, candidate: Optional[str]) -> Optional[str]:
    """
    Resolve a possibly relative URL against a page URL.

    Args:
        base_url: URL of the page the candidate was found on.
        candidate: href/src value as written in the markup.

    Returns:
        Optional[str]: Absolute URL, the data URL unchanged, or None for empty input.
    """
    if not candidate:
        return None
    candidate = candidate.strip()
    if not candidate:
        return None
    if candidate.startswith("data:"):
        return candidate
    return urljoin(base_url, candidate)


def same_host(url: str, other: str) -> bool:
    """Return True when both URLs point at the same host, ignoring a leading www."""
    def _host(value: str) -> str:
        host = urlparse(value).netloc.lower()
        return host[4:] if host.startswith("www.") else host
    return _host(url) == _host(other)


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    truncated = text[:max_length].rstrip()
    if add_ellipsis:
        truncated += "..."

    return truncated


def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse runs of whitespace into single spaces and strip the ends."""
    if not text:
        return ""
    return re.sub(r'\s+', ' ', text).strip()


def slugify(text: str, max_length: int = 80) -> str:
    """Lowercase, hyphen-separated slug used for sanitized titles."""
    slug = re.sub(r'[^a-z0-9]+', '-', (text or "").lower()).strip('-')
    return slug[:max_length].rstrip('-')


def format_long_date(value: Optional[datetime] = None) -> str:
    """
    Format a date the way cards display it, e.g. "Monday, January 5, 2026".

    Args:
        value: The date to format, defaults to now.
    """
    value = value or datetime.now()
    return f"{value.strftime('%A')}, {value.strftime('%B')} {value.day}, {value.year}"


def safe_get(data: Dict[str, Any], *keys, default: Any = None) -> Any:
    """
    Safely get a value from a nested dictionary.

    Args:
        data: The dictionary to search
        *keys: The keys to follow
        default: Default value if key doesn't exist

    Returns:
        The value at the specified keys or the default value
    """
    for key in keys:
        try:
            data = data[key]
        except (KeyError, TypeError, IndexError):
            return default
    return data


def get_path(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Look up a dot-separated path such as "meta.author.name" in nested dicts."""
    if not path:
        return default
    return safe_get(data, *path.split('.'), default=default)


def encode_data_url(content: bytes, mime_type: str = "image/png") -> str:
    """Encode raw bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Decode a data URL into its MIME type and raw bytes.

    Raises:
        ValueError: If the string is not a well-formed data URL.
    """
    match = DATA_URL_PATTERN.match(data_url or "")
    if not match:
        raise ValueError("Not a data URL")
    mime_type = match.group('mime') or "text/plain"
    payload = match.group('data')
    if match.group('b64'):
        return mime_type, base64.b64decode(payload, validate=False)
    return mime_type, unquote_to_bytes(payload)
