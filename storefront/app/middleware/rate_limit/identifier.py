"""Client identification for rate limiting.

Priority: API key > client IP combined with a user agent hash. The hash
only partitions clients sharing an address (NAT, proxies); it is not a
security boundary, so a cheap non-cryptographic hash is enough.
"""

from collections.abc import Mapping
from typing import Any, Optional

API_KEY_HEADER = "x-api-key"
FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"
USER_AGENT_HEADER = "user-agent"

UNKNOWN = "unknown"

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def simple_hash(value: str) -> str:
    """31-multiplier string hash with signed 32-bit wraparound, in base 36.

    Iterates UTF-16 code units so the result matches the JavaScript
    charCodeAt() based hash used by the web storefront.
    """
    h = 0
    encoded = value.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def get_header(request: Any, name: str) -> Optional[str]:
    """Case-insensitive header lookup that never raises.

    Starlette Headers are already case-insensitive; plain mappings used by
    other callers are scanned.
    """
    headers = getattr(request, "headers", None)
    if headers is None:
        return None
    value = headers.get(name)
    if value is None and isinstance(headers, Mapping):
        lowered = name.lower()
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def get_client_ip(request: Any) -> str:
    forwarded_for = get_header(request, FORWARDED_FOR_HEADER)
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return get_header(request, REAL_IP_HEADER) or UNKNOWN


def get_request_identifier(request: Any) -> str:
    """Derive a stable rate limit key for the client behind request.

    Args:
        request: Object exposing ``headers`` (Starlette request, mock, ...)

    Returns:
        ``api_<key>`` when an API key is sent, else ``ip_<ip>_<ua hash>``
    """
    api_key = get_header(request, API_KEY_HEADER)
    if api_key:
        return f"api_{api_key}"

    ip = get_client_ip(request)
    user_agent = get_header(request, USER_AGENT_HEADER) or UNKNOWN
    return f"ip_{ip}_{simple_hash(user_agent)}"


def is_api_key_identifier(identifier: str) -> bool:
    return identifier.startswith("api_")


def redact_identifier(identifier: str) -> str:
    """Hide all but the first characters of an API key for logging."""
    if is_api_key_identifier(identifier):
        return f"api_{identifier[4:8]}***"
    return identifier
