from typing import Optional

from fastapi import Request


def get_client_ip(request: Request) -> str:
    """Client IP for rate limiting.

    Forwarding headers (cloudflared/nginx) are client-controlled, so they are
    read only when ``server.trusted_proxy`` is set; otherwise the socket peer
    is the key.
    """
    config = getattr(request.app.state, "config", None)
    if config is not None and config.server.trusted_proxy:
        cf_ip = request.headers.get("CF-Connecting-IP")
        if cf_ip:
            return cf_ip.strip()
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def declared_length(request: Request) -> Optional[int]:
    """The request's Content-Length, or None if absent or unparsable."""
    raw = request.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def resource_url(base: str, kind: str, token: str) -> str:
    """Link a recipient opens for a share or an upload."""
    return f"{base.rstrip('/')}/{kind}/{token}"
