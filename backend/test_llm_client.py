"""
LLM client checks without network: retry policy, failure classification,
Groq wrapper over a fake SDK object, streaming assembly and the throttled emitter.
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from groq import APIConnectionError, APIStatusError, AuthenticationError, RateLimitError

from ai.groq_client import GroqClient, ToolArgumentsError, ToolCall, classify_exception
from ai.retry_policy import FailureKind, LLMProviderError, RetryPolicy, classify_status
from ai.streaming import ThrottledEmitter

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"


def _response(status_code):
    return httpx.Response(status_code, request=httpx.Request("POST", GROQ_URL))


def rate_limited():
    return RateLimitError("rate limited", response=_response(429), body=None)


def status_error(status_code):
    return APIStatusError(f"status {status_code}", response=_response(status_code), body=None)


class FakeCompletions:
    """Pops one scripted outcome per create() call: an exception or a return value."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def fake_sdk(outcomes):
    completions = FakeCompletions(outcomes)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def text_completion(text):
    message = SimpleNamespace(content=text, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])


def tool_completion(name, arguments):
    tool_call = SimpleNamespace(id="call_1", function=SimpleNamespace(name=name, arguments=arguments))
    message = SimpleNamespace(content=None, tool_calls=[tool_call])
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="tool_calls")])


def chunk(content=None, tool_calls=None, finish_reason=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


# ==============================================================================
# RETRY POLICY
# ==============================================================================

def test_retry_policy_delays():
    print("\n" + "=" * 70)
    print("TEST 1: Retry policy")
    print("=" * 70)

    policy = RetryPolicy(max_attempts=3)
    assert policy.next_delay(0, FailureKind.RATE_LIMITED) == 2.0
    assert policy.next_delay(1, FailureKind.RATE_LIMITED) == 4.0
    assert policy.next_delay(2, FailureKind.RATE_LIMITED) is None
    assert policy.next_delay(0, FailureKind.OVERLOADED) == 1.0
    assert policy.next_delay(1, FailureKind.SERVER) == 2.0
    assert policy.next_delay(0, FailureKind.UNAUTHORIZED) is None
    assert policy.next_delay(0, FailureKind.BAD_REQUEST) is None
    print("  PASS: exponential backoff, permanent failures stop")


def test_failure_classification():
    assert classify_status(None) == FailureKind.NETWORK
    assert classify_status(429) == FailureKind.RATE_LIMITED
    assert classify_status(503) == FailureKind.OVERLOADED
    assert classify_status(401) == FailureKind.UNAUTHORIZED
    assert classify_status(400) == FailureKind.BAD_REQUEST
    assert classify_status(502) == FailureKind.SERVER

    assert classify_exception(rate_limited()) == FailureKind.RATE_LIMITED
    assert classify_exception(status_error(503)) == FailureKind.OVERLOADED
    auth = AuthenticationError("bad key", response=_response(401), body=None)
    assert classify_exception(auth) == FailureKind.UNAUTHORIZED
    network = APIConnectionError(request=httpx.Request("POST", GROQ_URL))
    assert classify_exception(network) == FailureKind.NETWORK
    print("  PASS: statuses and SDK exceptions classified")


# ==============================================================================
# GROQ CLIENT
# ==============================================================================

def test_chat_retries_then_succeeds():
    print("\n" + "=" * 70)
    print("TEST 2: Groq client retries")
    print("=" * 70)

    sdk, completions = fake_sdk([rate_limited(), rate_limited(), text_completion("Готово")])
    sleeps = []
    client = GroqClient(client=sdk, retry_policy=RetryPolicy(max_attempts=3), sleep=sleeps.append)

    response = client.chat("system", [{"role": "user", "content": "привет"}])
    assert response.content == "Готово"
    assert not response.has_tool_calls
    assert sleeps == [2.0, 4.0]
    assert completions.calls[0]["messages"][0] == {"role": "system", "content": "system"}
    assert completions.calls[0]["temperature"] == 0.7
    print("  PASS: two 429s retried with 2s and 4s")


def test_chat_gives_up():
    sdk, _ = fake_sdk([status_error(503), status_error(503), status_error(503)])
    sleeps = []
    client = GroqClient(client=sdk, retry_policy=RetryPolicy(max_attempts=3), sleep=sleeps.append)

    with pytest.raises(LLMProviderError) as excinfo:
        client.chat("system", [])
    assert excinfo.value.kind == FailureKind.OVERLOADED
    assert excinfo.value.is_transient
    assert sleeps == [1.0, 2.0]

    auth = AuthenticationError("bad key", response=_response(401), body=None)
    sdk, completions = fake_sdk([auth])
    client = GroqClient(client=sdk, sleep=sleeps.append)
    with pytest.raises(LLMProviderError) as excinfo:
        client.chat("system", [])
    assert excinfo.value.kind == FailureKind.UNAUTHORIZED
    assert len(completions.calls) == 1
    print("  PASS: exhaustion and permanent failures raise LLMProviderError")


def test_chat_tool_call():
    sdk, completions = fake_sdk([tool_completion("list_products", "{}")])
    client = GroqClient(client=sdk)

    response = client.chat("system", [], tools=[{"type": "function", "function": {"name": "list_products"}}])
    assert response.has_tool_calls
    assert response.tool_calls[0].name == "list_products"
    assert response.tool_calls[0].parse_arguments() == {}
    assert completions.calls[0]["tool_choice"] == "auto"
    assert completions.calls[0]["temperature"] == 0.2


def test_unconfigured_client():
    client = GroqClient(api_key="")
    assert not client.is_available()
    with pytest.raises(LLMProviderError) as excinfo:
        client.chat("system", [])
    assert excinfo.value.kind == FailureKind.UNAUTHORIZED


def test_tool_arguments_parsing():
    assert ToolCall(id="1", name="x", arguments='{"a": 1}').parse_arguments() == {"a": 1}
    assert ToolCall(id="1", name="x", arguments="").parse_arguments() == {}
    with pytest.raises(ToolArgumentsError):
        ToolCall(id="1", name="x", arguments="{broken").parse_arguments()
    with pytest.raises(ToolArgumentsError):
        ToolCall(id="1", name="x", arguments="[1, 2]").parse_arguments()
    print("  PASS: malformed arguments raise ToolArgumentsError")


def test_streaming_assembles_text_and_tool_calls():
    print("\n" + "=" * 70)
    print("TEST 3: Streaming")
    print("=" * 70)

    text_stream = iter([chunk("При"), chunk("вет"), chunk(finish_reason="stop")])
    sdk, _ = fake_sdk([text_stream])
    client = GroqClient(client=sdk)
    deltas = []
    response = client.chat_streaming("system", [], deltas.append)
    assert deltas == ["При", "вет"]
    assert response.content == "Привет"
    assert response.finish_reason == "stop"

    tool_stream = iter([
        chunk(tool_calls=[tool_delta(0, id="call_9", name="search_", arguments='{"qu')]),
        chunk(tool_calls=[tool_delta(0, name="product", arguments='ery": "чехол"}')]),
        chunk(finish_reason="tool_calls"),
    ])
    sdk, _ = fake_sdk([tool_stream])
    client = GroqClient(client=sdk)
    response = client.chat_streaming("system", [], deltas.append)
    assert response.tool_calls[0].id == "call_9"
    assert response.tool_calls[0].name == "search_product"
    assert response.tool_calls[0].parse_arguments() == {"query": "чехол"}
    print("  PASS: text deltas forwarded, tool-call deltas joined")


def test_streaming_not_retried_after_text():
    def broken_stream():
        yield chunk("Частичный ")
        raise status_error(500)

    sdk, completions = fake_sdk([broken_stream(), text_completion("unused")])
    sleeps = []
    client = GroqClient(client=sdk, sleep=sleeps.append)
    with pytest.raises(LLMProviderError) as excinfo:
        client.chat_streaming("system", [], lambda _: None)
    assert excinfo.value.kind == FailureKind.SERVER
    assert sleeps == []
    assert len(completions.calls) == 1
    print("  PASS: emitted text is never replayed")


# ==============================================================================
# THROTTLED EMITTER
# ==============================================================================

class RecordingTransport:
    def __init__(self):
        self.events = []
        self.next_id = 100

    def send(self, text):
        self.next_id += 1
        self.events.append(("send", self.next_id, text))
        return self.next_id

    def edit(self, handle, text):
        self.events.append(("edit", handle, text))

    def delete(self, handle):
        self.events.append(("delete", handle, None))


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_emitter_throttles_updates():
    print("\n" + "=" * 70)
    print("TEST 4: Throttled emitter")
    print("=" * 70)

    transport = RecordingTransport()
    clock = ManualClock()
    emitter = ThrottledEmitter(transport, throttle_ms=500, words_per_update=15, clock=clock, sleep=lambda _: None)

    emitter.feed("Первое ")
    assert transport.events == [("send", 101, "Первое ")]

    clock.now = 0.1
    emitter.feed("слово ")
    assert len(transport.events) == 1, "inside throttle window"

    clock.now = 0.7
    emitter.feed("ещё ")
    assert transport.events[-1] == ("edit", 101, "Первое слово ещё ")

    emitter.finish("Первое слово ещё одно.")
    assert transport.events[-1] == ("edit", 101, "Первое слово ещё одно.")
    assert emitter.has_message
    print("  PASS: first chunk sends, later chunks edit at most every 500ms")


def test_emitter_word_budget_and_withdraw():
    transport = RecordingTransport()
    clock = ManualClock()
    slept = []
    emitter = ThrottledEmitter(transport, throttle_ms=500, words_per_update=3, clock=clock, sleep=slept.append)

    emitter.feed("a ")
    emitter.feed("b c d ")
    assert [e[0] for e in transport.events] == ["send", "edit"], "word budget forces a flush"

    emitter.withdraw(0.1)
    assert transport.events[-1] == ("delete", 101, None)
    assert slept == [0.1]
    assert not emitter.has_message

    # Nothing streamed: withdraw is a no-op, finish sends once
    quiet = ThrottledEmitter(RecordingTransport(), clock=clock, sleep=slept.append)
    quiet.withdraw()
    quiet.finish("Ответ")
    assert quiet.transport.events == [("send", 101, "Ответ")]
    print("  PASS: word budget, withdraw after tool call")


def main():
    test_retry_policy_delays()
    test_failure_classification()
    test_chat_retries_then_succeeds()
    test_chat_gives_up()
    test_chat_tool_call()
    test_unconfigured_client()
    test_tool_arguments_parsing()
    test_streaming_assembles_text_and_tool_calls()
    test_streaming_not_retried_after_text()
    test_emitter_throttles_updates()
    test_emitter_word_budget_and_withdraw()
    print("\n✅ All LLM client tests passed!")


if __name__ == "__main__":
    main()
