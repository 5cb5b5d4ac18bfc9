"""
ToolCallResult — the contract every catalog operation handler returns.

Exactly one of these shapes:
- success=True, data={"action": ..., ...}
- success=False, error={code, message, field?}
- success=False, needs_clarification=True, data={"action": "multiple_matches_found", "matches": [...]}
- success=False, needs_confirmation=True, message=..., data={...preview...}
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    PRODUCTS_NOT_FOUND = "PRODUCTS_NOT_FOUND"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NO_PRODUCTS = "NO_PRODUCTS"
    API_ERROR = "API_ERROR"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    BULK_ADD_FAILED = "BULK_ADD_FAILED"


class ToolError(BaseModel):
    code: ErrorCode
    message: str
    field: Optional[str] = None
    hint: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class CandidateMatch(BaseModel):
    id: int
    name: str
    price: float


class ToolCallResult(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[ToolError] = None
    needs_clarification: bool = False
    needs_confirmation: bool = False
    message: Optional[str] = None

    @classmethod
    def ok(cls, action: str, **data) -> "ToolCallResult":
        return cls(success=True, data={"action": action, **data})

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        field: Optional[str] = None,
        hint: Optional[str] = None,
        **details,
    ) -> "ToolCallResult":
        return cls(
            success=False,
            error=ToolError(code=code, message=message, field=field, hint=hint, details=details),
        )

    @classmethod
    def clarify(cls, operation: str, query: str, matches: List[CandidateMatch]) -> "ToolCallResult":
        return cls(
            success=False,
            needs_clarification=True,
            data={
                "action": "multiple_matches_found",
                "operation": operation,
                "search_query": query,
                "matches": [m.model_dump() for m in matches],
            },
        )

    @classmethod
    def confirm(cls, message: str, kind: str, **data) -> "ToolCallResult":
        return cls(
            success=False,
            needs_confirmation=True,
            message=message,
            data={"action": "confirmation_required", "kind": kind, **data},
        )

    @property
    def action(self) -> Optional[str]:
        return (self.data or {}).get("action")

    @property
    def matches(self) -> List[CandidateMatch]:
        return [CandidateMatch(**m) for m in (self.data or {}).get("matches", [])]

    def to_tool_message(self) -> dict:
        """Compact payload handed back to the model as a tool-result message."""
        payload: Dict[str, Any] = {"success": self.success}
        if self.data:
            payload["data"] = self.data
        if self.error:
            payload["error"] = {"code": self.error.code.value, "message": self.error.message}
        if self.needs_clarification:
            payload["needs_clarification"] = True
        if self.needs_confirmation:
            payload["needs_confirmation"] = True
        return payload
