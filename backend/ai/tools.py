"""
Catalog tools offered to the model.

Each tool has:
- a ToolName (the only names the executor will dispatch)
- a pydantic argument model (validated before any handler runs)
- an OpenAI-compatible function definition sent to Groq

Names and descriptions here are seen by the model only; they are never shown to users.
"""
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ToolName(str, Enum):
    ADD_PRODUCT = "add_product"
    BULK_ADD_PRODUCTS = "bulk_add_products"
    UPDATE_PRODUCT = "update_product"
    BULK_UPDATE_PRODUCTS = "bulk_update_products"
    DELETE_PRODUCT = "delete_product"
    BULK_DELETE_BY_NAMES = "bulk_delete_by_names"
    BULK_DELETE_ALL = "bulk_delete_all"
    BULK_DELETE_EXCEPT = "bulk_delete_except"
    LIST_PRODUCTS = "list_products"
    SEARCH_PRODUCT = "search_product"
    GET_PRODUCT_INFO = "get_product_info"
    RECORD_SALE = "record_sale"
    BULK_UPDATE_PRICES = "bulk_update_prices"


# ==============================================================================
# ARGUMENT MODELS
# ==============================================================================

class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _product_name_field():
    return Field(default="", validation_alias=AliasChoices("product_name", "productName", "name"))


class AddProductArgs(ToolArgs):
    name: str = ""
    price: Optional[float] = None
    stock: Optional[int] = Field(default=None, validation_alias=AliasChoices("stock", "stock_quantity", "stockQuantity"))


class BulkAddProductsArgs(ToolArgs):
    products: List[AddProductArgs] = Field(default_factory=list)


class ProductUpdates(ToolArgs):
    name: Optional[str] = None
    price: Optional[float] = None
    stock_quantity: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("stock_quantity", "stockQuantity", "stock")
    )
    discount_percentage: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("discount_percentage", "discountPercentage")
    )
    discount_expires_at: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("discount_expires_at", "discountExpiresAt")
    )

    def is_empty(self) -> bool:
        return not self.name and all(
            value is None for value in (
                self.price, self.stock_quantity, self.discount_percentage, self.discount_expires_at
            )
        )


class UpdateProductArgs(ToolArgs):
    product_name: str = Field(default="", validation_alias=AliasChoices("product_name", "productName"))
    updates: Optional[ProductUpdates] = None


class BulkUpdateProductsArgs(ToolArgs):
    updates: List[UpdateProductArgs] = Field(default_factory=list)


class DeleteProductArgs(ToolArgs):
    product_name: str = _product_name_field()


class BulkDeleteByNamesArgs(ToolArgs):
    product_names: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("product_names", "productNames")
    )


class BulkDeleteAllArgs(ToolArgs):
    confirm: bool = False


class BulkDeleteExceptArgs(ToolArgs):
    keep_product_names: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("keep_product_names", "keepProductNames", "excluded_products"),
    )


class ListProductsArgs(ToolArgs):
    pass


class SearchProductArgs(ToolArgs):
    query: str = ""


class GetProductInfoArgs(ToolArgs):
    product_name: str = _product_name_field()


class RecordSaleArgs(ToolArgs):
    product_name: str = _product_name_field()
    quantity: int = 1


class BulkUpdatePricesArgs(ToolArgs):
    percentage: Optional[float] = None
    operation: Optional[str] = None
    duration: Optional[str] = None
    excluded_products: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("excluded_products", "excludedProducts")
    )
    discount_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("discount_type", "discountType")
    )


# ==============================================================================
# FUNCTION DEFINITIONS (sent to the model)
# ==============================================================================

def _function(name: ToolName, description: str, properties: dict, required: Optional[List[str]] = None) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name.value,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required or [],
            },
        },
    }


_UPDATES_SCHEMA = {
    "type": "object",
    "description": "Fields to change. Only include what the user asked to change.",
    "properties": {
        "name": {"type": "string", "description": "New product name"},
        "price": {"type": "number", "description": "New base price in USD"},
        "stock_quantity": {"type": "integer", "description": "New stock quantity"},
        "discount_percentage": {
            "type": "number",
            "description": "Discount 0-100. 0 removes the discount and restores the original price.",
        },
        "discount_expires_at": {
            "type": "string",
            "description": "Discount timer: duration like '6 часов', '3 дня' or ISO datetime. Requires discount_percentage.",
        },
    },
}

TOOL_DEFINITIONS = [
    _function(
        ToolName.ADD_PRODUCT,
        "Add one product to the catalog.",
        {
            "name": {"type": "string", "description": "Product name, at least 3 characters"},
            "price": {"type": "number", "description": "Price in USD"},
            "stock": {"type": "integer", "description": "Stock quantity, default 1"},
        },
        ["name", "price"],
    ),
    _function(
        ToolName.BULK_ADD_PRODUCTS,
        "Add two or more products at once.",
        {
            "products": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "price": {"type": "number"},
                        "stock": {"type": "integer"},
                    },
                    "required": ["name", "price"],
                },
            },
        },
        ["products"],
    ),
    _function(
        ToolName.UPDATE_PRODUCT,
        "Change name, price, stock or discount of one product.",
        {
            "product_name": {"type": "string", "description": "Product name as the user said it"},
            "updates": _UPDATES_SCHEMA,
        },
        ["product_name", "updates"],
    ),
    _function(
        ToolName.BULK_UPDATE_PRODUCTS,
        "Change several named products in one go (different changes per product).",
        {
            "updates": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "product_name": {"type": "string"},
                        "updates": _UPDATES_SCHEMA,
                    },
                    "required": ["product_name", "updates"],
                },
            },
        },
        ["updates"],
    ),
    _function(
        ToolName.DELETE_PRODUCT,
        "Delete one product.",
        {"product_name": {"type": "string"}},
        ["product_name"],
    ),
    _function(
        ToolName.BULK_DELETE_BY_NAMES,
        "Delete several named products.",
        {"product_names": {"type": "array", "items": {"type": "string"}}},
        ["product_names"],
    ),
    _function(
        ToolName.BULK_DELETE_ALL,
        "Delete ALL products. Call with confirm=false; the user confirms with a button.",
        {"confirm": {"type": "boolean", "description": "Always false unless the system confirmed"}},
    ),
    _function(
        ToolName.BULK_DELETE_EXCEPT,
        "Delete every product except the listed ones.",
        {"keep_product_names": {"type": "array", "items": {"type": "string"}}},
        ["keep_product_names"],
    ),
    _function(
        ToolName.LIST_PRODUCTS,
        "Show the current catalog.",
        {},
    ),
    _function(
        ToolName.SEARCH_PRODUCT,
        "Find products by part of the name.",
        {"query": {"type": "string"}},
        ["query"],
    ),
    _function(
        ToolName.GET_PRODUCT_INFO,
        "Price and stock of one product.",
        {"product_name": {"type": "string"}},
        ["product_name"],
    ),
    _function(
        ToolName.RECORD_SALE,
        "Record a sale: decrease stock of one product.",
        {
            "product_name": {"type": "string"},
            "quantity": {"type": "integer", "description": "Units sold, default 1"},
        },
        ["product_name"],
    ),
    _function(
        ToolName.BULK_UPDATE_PRICES,
        "Discount or mark up ALL products by a percentage, optionally excluding some.",
        {
            "percentage": {"type": "number", "description": "0.1-100"},
            "operation": {"type": "string", "enum": ["increase", "decrease"]},
            "duration": {"type": "string", "description": "Timer for a discount, e.g. '6 часов', '3 дня'"},
            "excluded_products": {"type": "array", "items": {"type": "string"}},
            "discount_type": {"type": "string", "enum": ["permanent", "timer"]},
        },
        ["percentage", "operation"],
    ),
]

TOOL_NAMES = {tool["function"]["name"] for tool in TOOL_DEFINITIONS}
