from fastapi import Header, Request

from keyword_engine.core.exceptions import BadRequestError, ServiceUnavailableError
from keyword_engine.services.engine import KeywordEngine


async def get_current_tenant_id(
    x_tenant_id: str = Header(..., alias="X-Tenant-ID", description="Calling tenant (authorized upstream)"),
) -> str:
    tenant_id = x_tenant_id.strip()
    if not tenant_id or len(tenant_id) > 64:
        raise BadRequestError("Invalid X-Tenant-ID header")
    return tenant_id


async def get_engine(request: Request) -> KeywordEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ServiceUnavailableError("Engine not initialized")
    return engine
