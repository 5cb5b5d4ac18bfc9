"""Orchestrator entry/exit types and HTTP request bodies."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.catalog import Product
from app.schemas.tool_result import CandidateMatch


class Command(BaseModel):
    """One incoming command: what the user typed and what survived sanitizing."""
    raw_text: str
    text: str
    session_id: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CommandContext(BaseModel):
    """Everything one command is decided against. products is a fresh snapshot."""
    shop_id: str
    shop_name: str
    token: str
    products: List[Product] = Field(default_factory=list)
    clarified_product_id: Optional[int] = None

    def find_product(self, product_id: int) -> Optional[Product]:
        for product in self.products:
            if product.id == product_id:
                return product
        return None


class CommandResult(BaseModel):
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    needs_clarification: bool = False
    needs_confirmation: bool = False
    retry: bool = False
    fallback_to_menu: bool = False
    operation: Optional[str] = None
    options: List[CandidateMatch] = Field(default_factory=list)
    # Set when the guarded entry rejected the command before it ran
    rejected: bool = False
    # Greeting/thanks that needs no answer
    ignored: bool = False
    # Text already shown through the stream transport
    streamed: bool = False
    # Seconds until the session may send again (rate-limited rejections)
    retry_after: Optional[int] = None


class CommandRequest(BaseModel):
    session_id: str
    text: str
    shop_id: Optional[str] = None
    shop_name: Optional[str] = None

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("text must not be empty")
        return v


class SelectRequest(BaseModel):
    session_id: str
    product_id: int
    shop_id: Optional[str] = None
    shop_name: Optional[str] = None


class SessionRequest(BaseModel):
    session_id: str
    shop_id: Optional[str] = None
    shop_name: Optional[str] = None
