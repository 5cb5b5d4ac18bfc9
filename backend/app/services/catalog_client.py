"""
Catalog REST client — the only writer of product data.

Every call is synchronous request/response with a bearer token passed per call.
Requests go out in camelCase, responses are parsed into Product models.
Failures raise CatalogAPIError carrying the HTTP status class; response bodies
are logged, never shown to users.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from app.core.config import settings
from app.core.exceptions import CatalogAPIError
from app.schemas.catalog import Product

logger = logging.getLogger(__name__)

# snake_case attribute -> wire field
WIRE_FIELDS = {
    "name": "name",
    "price": "price",
    "stock_quantity": "stockQuantity",
    "discount_percentage": "discountPercentage",
    "discount_expires_at": "discountExpiresAt",
    "original_price": "originalPrice",
    "currency": "currency",
    "shop_id": "shopId",
}


def to_wire(attrs: Dict[str, Any]) -> Dict[str, Any]:
    payload = {}
    for key, value in attrs.items():
        payload[WIRE_FIELDS.get(key, key)] = value
    return payload


class CatalogClient:
    """Thin wrapper over the catalog service HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.CATALOG_API_URL).rstrip("/")
        self.timeout = timeout or settings.CATALOG_API_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, token: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.warning(f"[CatalogClient] Timeout on {method} {path}: {e}")
            raise CatalogAPIError("Catalog service timed out") from e
        except requests.RequestException as e:
            logger.warning(f"[CatalogClient] Network error on {method} {path}: {e}")
            raise CatalogAPIError("Catalog service unreachable") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text[:200]}
            if not isinstance(body, dict):
                body = {"raw": body}
            message = body.get("error") or body.get("message") or response.reason or "Catalog request failed"
            logger.error(
                f"[CatalogClient] {method} {path} -> {response.status_code}: {body}"
            )
            raise CatalogAPIError(str(message), status_code=response.status_code, payload=body)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise CatalogAPIError("Catalog service returned invalid JSON", status_code=response.status_code) from e

        # Service wraps payloads as {"data": ...}
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def list_products(self, shop_id: str, token: str) -> List[Product]:
        data = self._request("GET", "/api/products", token, params={"shopId": shop_id})
        items = data if isinstance(data, list) else data.get("products", [])
        return [Product.model_validate(item) for item in items]

    def create_product(self, attrs: Dict[str, Any], token: str) -> Product:
        data = self._request("POST", "/api/products", token, json=to_wire(attrs))
        return Product.model_validate(data)

    def update_product(self, product_id: int, attrs: Dict[str, Any], token: str) -> Product:
        data = self._request("PUT", f"/api/products/{product_id}", token, json=to_wire(attrs))
        return Product.model_validate(data)

    def delete_product(self, product_id: int, token: str) -> None:
        self._request("DELETE", f"/api/products/{product_id}", token)

    def bulk_delete_all(self, shop_id: str, token: str) -> int:
        data = self._request("POST", "/api/products/bulk-delete-all", token, json={"shopId": shop_id})
        return int(data.get("deletedCount", 0))

    def bulk_delete_by_ids(self, shop_id: str, product_ids: List[int], token: str) -> int:
        data = self._request(
            "POST", "/api/products/bulk-delete", token,
            json={"shopId": shop_id, "productIds": product_ids},
        )
        return int(data.get("deletedCount", len(product_ids)))

    def apply_bulk_discount(
        self,
        shop_id: str,
        token: str,
        percentage: float,
        operation: str,
        discount_type: str,
        duration_ms: Optional[int],
        excluded_product_ids: List[int],
    ) -> Dict[str, Any]:
        """Returns {"productsUpdated": int, "products": [...]} as reported by the service."""
        data = self._request(
            "POST", f"/api/shops/{shop_id}/bulk-discount", token,
            json={
                "percentage": percentage,
                "operation": operation,
                "type": discount_type,
                "duration": duration_ms,
                "excludedProductIds": excluded_product_ids,
            },
        )
        return data if isinstance(data, dict) else {}


# Singleton instance
_catalog_client: Optional[CatalogClient] = None


def get_catalog_client() -> CatalogClient:
    """Get or create singleton catalog client instance."""
    global _catalog_client
    if _catalog_client is None:
        _catalog_client = CatalogClient()
    return _catalog_client
