"""Rate limiting singleton using slowapi."""

from fastapi import Request
from slowapi import Limiter


def _client_key(request: Request) -> str:
    """Limit per acting user when the gateway forwards one, else per client IP."""
    actor = request.headers.get("X-Actor-Id")
    if actor:
        return f"actor:{actor}"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_client_key)
