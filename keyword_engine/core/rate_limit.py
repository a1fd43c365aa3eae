"""Inbound HTTP throttling using slowapi."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def tenant_or_address(request: Request) -> str:
    """Throttle per tenant; requests without a tenant header fall back to the client address."""
    tenant_id = request.headers.get("X-Tenant-ID", "").strip()
    if tenant_id:
        return f"tenant:{tenant_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=tenant_or_address)
