"""FastAPI dependencies: catalog token, catalog client, orchestrator and command context.

SECURITY: The catalog bearer token is taken from:
1. Authorization header (per-user tokens from API clients)
2. CATALOG_API_TOKEN (single-shop deployments)
The token is forwarded to the catalog service, never logged.
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.agent.orchestrator import Orchestrator, get_orchestrator, load_command_context
from app.core.config import settings
from app.core.exceptions import BusinessError, CatalogAPIError
from app.schemas.command import CommandContext
from app.services.catalog_client import CatalogClient, get_catalog_client

security = HTTPBearer(auto_error=False)


def get_catalog_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Bearer token for the catalog service. Header takes precedence over config."""
    if credentials and credentials.credentials:
        return credentials.credentials
    if settings.CATALOG_API_TOKEN:
        return settings.CATALOG_API_TOKEN
    raise BusinessError.unauthorized("no catalog token in request or config")


def get_catalog() -> CatalogClient:
    return get_catalog_client()


def get_agent() -> Orchestrator:
    return get_orchestrator()


def build_context(
    shop_id: Optional[str],
    shop_name: Optional[str],
    token: str,
    catalog: CatalogClient,
) -> CommandContext:
    """
    Fresh catalog snapshot for one request.

    Catalog failures become safe HTTP errors: 401 for rejected tokens,
    502 for everything else.
    """
    shop_id = shop_id or settings.SHOP_ID
    if not shop_id:
        raise BusinessError.bad_request("shop_id is required")

    try:
        return load_command_context(shop_id, shop_name or settings.SHOP_NAME, token, catalog=catalog)
    except CatalogAPIError as e:
        if e.status_class in ("auth", "forbidden"):
            raise BusinessError.unauthorized(f"catalog rejected token for shop {shop_id}")
        raise BusinessError.upstream_unavailable(e)
