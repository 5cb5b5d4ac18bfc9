"""
Groq API Client — chat completions with tool calling.

================================================================================
LLM ROLE: PICK A TOOL OR ANSWER IN TEXT
================================================================================

The model receives the shop catalog, recent conversation and the operator's
command, then either:
- calls exactly one catalog tool (name + JSON arguments), or
- answers in plain text

THIS CLIENT DOES NOT:
- Execute tool calls (app.agent.executor does)
- Touch the catalog service
- Send messages to users (the streaming emitter does)

RETRIES:
Transient failures (429, 503, other 5xx, timeouts, network) are retried
according to ai.retry_policy.RetryPolicy. Authorization and malformed-request
failures stop immediately. After the policy gives up, LLMProviderError is
raised with the classified FailureKind.

================================================================================
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from groq import (
    Groq,
    APIError,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    PermissionDeniedError,
    RateLimitError,
)

from ai.retry_policy import FailureKind, LLMProviderError, RetryPolicy, classify_status
from app.core.config import settings

# Configure logging (NEVER log API keys)
logger = logging.getLogger(__name__)

TEMPERATURE_WITH_TOOLS = 0.2  # Deterministic tool selection
TEMPERATURE_TEXT_ONLY = 0.7  # Natural phrasing


class ToolArgumentsError(ValueError):
    """Model produced tool arguments that are not a JSON object."""


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> Dict[str, Any]:
        try:
            parsed = json.loads(self.arguments or "{}")
        except json.JSONDecodeError as e:
            raise ToolArgumentsError(f"Invalid JSON arguments for {self.name}: {e}") from e
        if not isinstance(parsed, dict):
            raise ToolArgumentsError(f"Arguments for {self.name} must be an object")
        return parsed

    def to_message(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ChatResponse:
    finish_reason: str
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def classify_exception(error: Exception) -> FailureKind:
    """Map a groq SDK exception to a FailureKind."""
    # APITimeoutError subclasses APIConnectionError: check it first
    if isinstance(error, APITimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(error, APIConnectionError):
        return FailureKind.NETWORK
    if isinstance(error, RateLimitError):
        return FailureKind.RATE_LIMITED
    if isinstance(error, (AuthenticationError, PermissionDeniedError)):
        return FailureKind.UNAUTHORIZED
    if isinstance(error, BadRequestError):
        return FailureKind.BAD_REQUEST
    if isinstance(error, APIStatusError):
        return classify_status(error.status_code)
    return FailureKind.UNKNOWN


class GroqClient:
    """
    Minimal wrapper for Groq chat completions.

    - Model: settings.GROQ_MODEL
    - Temperature: 0.2 when tools are offered, 0.7 for text-only calls
    - Max tokens: settings.LLM_MAX_TOKENS (500)
    - SDK retries disabled; RetryPolicy owns backoff
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        client: Any = None,
    ):
        self.model = model or settings.GROQ_MODEL
        self.max_tokens = settings.LLM_MAX_TOKENS
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=settings.LLM_MAX_RETRIES)
        self.sleep = sleep

        if client is not None:
            self.client = client
            return

        api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        if not api_key:
            logger.warning(
                "GROQ_API_KEY not found in environment. "
                "AI catalog commands will be DISABLED. "
                "Add your key to backend/.env file."
            )
            self.client = None
        else:
            self.client = Groq(api_key=api_key, timeout=settings.LLM_TIMEOUT_SECONDS, max_retries=0)
            logger.info("Groq client initialized")

    def is_available(self) -> bool:
        """Check if Groq client is ready to use."""
        return self.client is not None

    @staticmethod
    def build_messages(system_prompt: str, messages: List[dict]) -> List[dict]:
        return [{"role": "system", "content": system_prompt}, *messages]

    def _request_kwargs(
        self,
        system_prompt: str,
        messages: List[dict],
        tools: Optional[List[dict]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict:
        kwargs = {
            "model": self.model,
            "messages": self.build_messages(system_prompt, messages),
            "temperature": temperature if temperature is not None else (
                TEMPERATURE_WITH_TOOLS if tools else TEMPERATURE_TEXT_ONLY
            ),
            "max_tokens": max_tokens or self.max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _with_retries(self, label: str, call: Callable[[], ChatResponse], can_retry: Callable[[], bool] = lambda: True) -> ChatResponse:
        if not self.is_available():
            raise LLMProviderError(FailureKind.UNAUTHORIZED, "Groq client not configured")

        attempt = 0
        while True:
            try:
                response = call()
                if attempt:
                    logger.info(f"[Groq] {label} succeeded on attempt {attempt + 1}")
                return response
            except APIError as e:
                kind = classify_exception(e)
                status_code = getattr(e, "status_code", None)
                delay = self.retry_policy.next_delay(attempt, kind) if can_retry() else None
                if delay is None:
                    logger.error(f"[Groq] {label} failed ({kind.value}, status={status_code}), giving up after {attempt + 1} attempt(s)")
                    raise LLMProviderError(kind, str(e), status_code=status_code) from e
                logger.warning(
                    f"[Groq] {label} failed ({kind.value}), retry {attempt + 1}/"
                    f"{self.retry_policy.max_attempts - 1} after {delay}s"
                )
                self.sleep(delay)
                attempt += 1

    def chat(
        self,
        system_prompt: str,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        """Non-streaming completion. Returns a tool call or text."""
        kwargs = self._request_kwargs(system_prompt, messages, tools, temperature, max_tokens)

        def call() -> ChatResponse:
            response = self.client.chat.completions.create(**kwargs)
            if not response.choices:
                return ChatResponse(finish_reason="stop", content=None)
            choice = response.choices[0]
            tool_calls = [
                ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
                for tc in (choice.message.tool_calls or [])
            ]
            return ChatResponse(
                finish_reason=choice.finish_reason or ("tool_calls" if tool_calls else "stop"),
                content=choice.message.content,
                tool_calls=tool_calls,
            )

        return self._with_retries("chat", call)

    def chat_streaming(
        self,
        system_prompt: str,
        messages: List[dict],
        on_chunk: Callable[[str], None],
        tools: Optional[List[dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        """
        Streaming completion. Text deltas go to on_chunk as they arrive;
        tool-call deltas are accumulated and returned whole.

        A failure after text was already emitted is not retried (the
        partial text cannot be taken back mid-stream).
        """
        kwargs = self._request_kwargs(system_prompt, messages, tools, temperature, max_tokens)
        emitted = {"any": False}

        def call() -> ChatResponse:
            stream = self.client.chat.completions.create(stream=True, **kwargs)
            content_parts: List[str] = []
            partial_calls: Dict[int, Dict[str, str]] = {}
            finish_reason = None

            for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        content_parts.append(delta.content)
                        emitted["any"] = True
                        on_chunk(delta.content)
                    for tc in delta.tool_calls or []:
                        slot = partial_calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            slot["id"] = tc.id
                        if tc.function is not None:
                            if tc.function.name:
                                slot["name"] += tc.function.name
                            if tc.function.arguments:
                                slot["arguments"] += tc.function.arguments
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

            tool_calls = [
                ToolCall(id=slot["id"] or f"call_{index}", name=slot["name"], arguments=slot["arguments"] or "{}")
                for index, slot in sorted(partial_calls.items())
            ]
            return ChatResponse(
                finish_reason=finish_reason or ("tool_calls" if tool_calls else "stop"),
                content="".join(content_parts) or None,
                tool_calls=tool_calls,
            )

        return self._with_retries("chat_streaming", call, can_retry=lambda: not emitted["any"])


# Singleton instance
_groq_client: Optional[GroqClient] = None


def get_groq_client() -> GroqClient:
    """Get or create singleton Groq client instance.

    Returns:
        Shared GroqClient instance
    """
    global _groq_client
    if _groq_client is None:
        _groq_client = GroqClient()
    return _groq_client
