"""Catalog entities as returned by the catalog REST service."""
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Product(BaseModel):
    """One catalog row. Accepts snake_case and camelCase payloads."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: int
    name: str
    price: float = 0.0
    stock_quantity: int = Field(
        default=0, validation_alias=AliasChoices("stock_quantity", "stockQuantity", "stock")
    )
    discount_percentage: float = Field(
        default=0.0, validation_alias=AliasChoices("discount_percentage", "discountPercentage")
    )
    discount_expires_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("discount_expires_at", "discountExpiresAt")
    )
    original_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("original_price", "originalPrice")
    )

    def has_discount(self) -> bool:
        return bool(self.discount_percentage and self.discount_percentage > 0)

    def summary(self) -> dict:
        """Short form used in clarification lists and context snapshots."""
        return {"id": self.id, "name": self.name, "price": self.price}
