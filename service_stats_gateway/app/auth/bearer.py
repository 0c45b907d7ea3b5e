"""
Bearer token extraction for Stats API requests.
"""

from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

BEARER_PREFIX = "Bearer "

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _authorization_values(headers: Any) -> List[str]:
    """Collect every Authorization header value in arrival order."""
    if headers is None:
        return []

    # Starlette/FastAPI Headers keep repeated headers and match names case-insensitively
    getlist = getattr(headers, "getlist", None)
    if callable(getlist):
        return list(getlist("authorization"))

    items = headers.items() if isinstance(headers, Mapping) else headers
    values = []
    for name, value in items:
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        if name.lower() == "authorization":
            values.append(value)
    return values


def extract_bearer_token(headers: HeaderSource) -> Optional[str]:
    """
    Return the bearer token from the first Authorization header.

    Only the literal ``"Bearer "`` scheme is accepted. The remainder is
    returned with surrounding whitespace trimmed. ``None`` means no usable
    header was sent; this function never raises for malformed input.
    """
    values = _authorization_values(headers)
    if not values:
        return None

    first = values[0]
    if not isinstance(first, str) or not first.startswith(BEARER_PREFIX):
        return None

    return first[len(BEARER_PREFIX):].strip()
