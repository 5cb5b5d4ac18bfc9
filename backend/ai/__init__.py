"""AI Module for Groq LLM Integration.

The model chooses catalog tools or answers in text. It never writes to the
catalog itself: tool calls are validated and executed by app.agent.executor.
"""

from .groq_client import GroqClient, get_groq_client
from .retry_policy import FailureKind, LLMProviderError, RetryPolicy

__all__ = ["GroqClient", "get_groq_client", "FailureKind", "LLMProviderError", "RetryPolicy"]
