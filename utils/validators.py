# utils/validators.py - Input validation utilities
from typing import Optional
from urllib.parse import urlparse

from config import MAX_URL_LENGTH

BLOCKED_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0", "::1")
DEFAULT_PORTS = {"http": 80, "https": 443}


class URLValidationError(Exception):
    """Custom exception for URL validation errors."""
    pass


def validate_url(url: str) -> str:
    """
    Validate an outbound http(s) URL (knowledge pages, webhooks).

    Args:
        url: The URL string to validate

    Returns:
        The stripped URL, fragment removed

    Raises:
        URLValidationError: If URL is invalid
    """
    if not url or not isinstance(url, str):
        raise URLValidationError("URL is required and must be a string")

    url = url.strip()

    if not url:
        raise URLValidationError("URL cannot be empty")

    # Check for maximum length (prevent DoS)
    if len(url) > MAX_URL_LENGTH:
        raise URLValidationError(f"URL exceeds maximum allowed length ({MAX_URL_LENGTH} characters)")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLValidationError(f"Failed to parse URL: {str(e)}")

    if not parsed.scheme:
        raise URLValidationError("URL must include a scheme (http:// or https://)")

    if parsed.scheme.lower() not in ("http", "https"):
        raise URLValidationError(f"Invalid URL scheme '{parsed.scheme}'. Only http and https are supported")

    if not parsed.hostname:
        raise URLValidationError("URL must include a valid domain")

    # No fetching from the server's own network
    host = parsed.hostname.lower()
    if host in BLOCKED_HOSTS or host.endswith(".localhost"):
        raise URLValidationError("Local/internal URLs are not allowed")

    return parsed._replace(fragment="").geturl()


def normalize_origin(origin: str) -> Optional[str]:
    """
    Reduce an origin-like string to scheme://host[:port].

    Default ports are dropped so "https://a.com:443/x" and "https://a.com"
    compare equal. Returns None for anything that is not an http(s) origin.
    """
    if not isinstance(origin, str):
        return None

    origin = origin.strip()
    if not origin or len(origin) > MAX_URL_LENGTH:
        return None

    try:
        parsed = urlparse(origin)
        port = parsed.port
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port and port != DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def validate_bot_id(bot_id: str) -> str:
    """
    Validate bot identifier format.

    Raises:
        ValueError: If the identifier is invalid
    """
    if not bot_id or not isinstance(bot_id, str):
        raise ValueError("botId is required")

    bot_id = bot_id.strip()

    if not bot_id:
        raise ValueError("botId cannot be empty")

    return bot_id
