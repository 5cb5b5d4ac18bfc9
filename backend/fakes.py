"""
In-process stand-ins for the catalog service and the LLM provider.

Used by the test modules; nothing here touches the network.
"""
from typing import Any, Dict, List, Optional, Union

from ai.groq_client import ChatResponse, ToolCall
from ai.retry_policy import LLMProviderError
from app.core.exceptions import CatalogAPIError
from app.schemas.catalog import Product
from app.schemas.command import CommandContext
from app.services.pricing import apply_multiplier, price_multiplier


class FakeCatalog:
    """Dict-backed catalog with the CatalogClient surface. Records every write."""

    def __init__(self, products: Optional[List[Product]] = None):
        self.products: Dict[int, Product] = {p.id: p for p in products or []}
        self.next_id = max(self.products, default=0) + 1
        self.calls: List[tuple] = []
        # method name -> exception raised on the next call
        self.failures: Dict[str, Exception] = {}

    def _maybe_fail(self, method: str) -> None:
        error = self.failures.pop(method, None)
        if error is not None:
            raise error

    def fail_next(self, method: str, status_code: Optional[int] = 500) -> None:
        self.failures[method] = CatalogAPIError("Catalog request failed", status_code=status_code)

    def context(self, shop_id: str = "shop-1", shop_name: str = "Test Shop", **overrides) -> CommandContext:
        return CommandContext(
            shop_id=shop_id,
            shop_name=shop_name,
            token="token",
            products=list(self.products.values()),
            **overrides,
        )

    def list_products(self, shop_id: str, token: str) -> List[Product]:
        self._maybe_fail("list_products")
        return list(self.products.values())

    def create_product(self, attrs: Dict[str, Any], token: str) -> Product:
        self.calls.append(("create_product", attrs))
        self._maybe_fail("create_product")
        product = Product(
            id=self.next_id,
            name=attrs["name"],
            price=attrs["price"],
            stock_quantity=attrs.get("stock_quantity", 0),
        )
        self.products[product.id] = product
        self.next_id += 1
        return product

    def update_product(self, product_id: int, attrs: Dict[str, Any], token: str) -> Product:
        self.calls.append(("update_product", product_id, attrs))
        self._maybe_fail("update_product")
        current = self.products[product_id]
        updated = Product.model_validate({**current.model_dump(), **attrs})
        self.products[product_id] = updated
        return updated

    def delete_product(self, product_id: int, token: str) -> None:
        self.calls.append(("delete_product", product_id))
        self._maybe_fail("delete_product")
        self.products.pop(product_id, None)

    def bulk_delete_all(self, shop_id: str, token: str) -> int:
        self.calls.append(("bulk_delete_all", shop_id))
        self._maybe_fail("bulk_delete_all")
        count = len(self.products)
        self.products.clear()
        return count

    def bulk_delete_by_ids(self, shop_id: str, product_ids: List[int], token: str) -> int:
        self.calls.append(("bulk_delete_by_ids", sorted(product_ids)))
        self._maybe_fail("bulk_delete_by_ids")
        for product_id in product_ids:
            self.products.pop(product_id, None)
        return len(product_ids)

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
        self.calls.append(("apply_bulk_discount", percentage, operation, discount_type, duration_ms, sorted(excluded_product_ids)))
        self._maybe_fail("apply_bulk_discount")
        multiplier = price_multiplier(percentage, operation)
        updated = []
        for product_id, product in list(self.products.items()):
            if product_id in excluded_product_ids:
                continue
            changed = product.model_copy(update={"price": apply_multiplier(product.price, multiplier)})
            self.products[product_id] = changed
            updated.append(changed.model_dump(mode="json"))
        return {"productsUpdated": len(updated), "products": updated}

    def writes(self) -> List[tuple]:
        return list(self.calls)


Scripted = Union[ChatResponse, LLMProviderError]


def text_reply(text: str) -> ChatResponse:
    return ChatResponse(finish_reason="stop", content=text)


def tool_reply(name: str, arguments: str, call_id: str = "call_1", content: Optional[str] = None) -> ChatResponse:
    return ChatResponse(
        finish_reason="tool_calls",
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
    )


class FakeLLM:
    """
    Scripted GroqClient stand-in.

    Each chat/chat_streaming call pops the next scripted item: a ChatResponse
    is returned (text streamed word by word when streaming), an
    LLMProviderError is raised.
    """

    def __init__(self, script: Optional[List[Scripted]] = None, available: bool = True):
        self.script = list(script or [])
        self.available = available
        self.requests: List[dict] = []

    def is_available(self) -> bool:
        return self.available

    def _next(self, kind: str, system_prompt: str, messages: List[dict], tools) -> ChatResponse:
        self.requests.append({"kind": kind, "system": system_prompt, "messages": messages, "tools": tools})
        if not self.script:
            raise AssertionError("FakeLLM called more times than scripted")
        item = self.script.pop(0)
        if isinstance(item, LLMProviderError):
            raise item
        return item

    def chat(self, system_prompt, messages, tools=None, temperature=None, max_tokens=None) -> ChatResponse:
        return self._next("chat", system_prompt, messages, tools)

    def chat_streaming(self, system_prompt, messages, on_chunk, tools=None, temperature=None, max_tokens=None) -> ChatResponse:
        response = self._next("stream", system_prompt, messages, tools)
        if response.content:
            for word in response.content.split(" "):
                on_chunk(word + " ")
        return response
