"""
Throttled delivery of streamed model text to a chat transport.

The provider produces many tiny deltas; the transport (Telegram message edits)
tolerates only a few updates per second. ThrottledEmitter coalesces deltas and
flushes at most once per throttle interval or every N words, whichever comes
first. The first flush sends a new message, later flushes edit it.

If the model ends with a tool call, withdraw() deletes the partial message
after a short grace delay so a late edit cannot race the deletion.
"""
import logging
import time
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class StreamTransport(Protocol):
    """Message surface the emitter writes to."""

    def send(self, text: str) -> Any:
        """Send a new message, returning a handle for later edits."""

    def edit(self, handle: Any, text: str) -> None:
        ...

    def delete(self, handle: Any) -> None:
        ...


class ThrottledEmitter:

    def __init__(
        self,
        transport: StreamTransport,
        throttle_ms: int = 500,
        words_per_update: int = 15,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.throttle_ms = throttle_ms
        self.words_per_update = words_per_update
        self.clock = clock
        self.sleep = sleep

        self.text = ""
        self.handle: Any = None
        self.flush_count = 0
        self._sent_text = ""
        self._words_since_flush = 0
        self._last_flush: Optional[float] = None

    @property
    def has_message(self) -> bool:
        return self.handle is not None

    def feed(self, delta: str) -> None:
        """Accept one text delta; flush if the time or word budget is spent."""
        if not delta:
            return
        self.text += delta
        self._words_since_flush += len(delta.split()) or 1

        now = self.clock()
        elapsed_ms = None if self._last_flush is None else (now - self._last_flush) * 1000
        if (
            elapsed_ms is None
            or elapsed_ms >= self.throttle_ms
            or self._words_since_flush >= self.words_per_update
        ):
            self._flush(now)

    def finish(self, final_text: Optional[str] = None) -> Any:
        """Make sure the complete text is visible. Returns the message handle."""
        text = final_text if final_text is not None else self.text
        if not text:
            return self.handle
        if self.handle is None:
            self._deliver(text, send=True)
        elif text != self._sent_text:
            self._deliver(text, send=False)
        return self.handle

    def withdraw(self, grace_seconds: float = 0.1) -> None:
        """Remove the partial message once a tool result supersedes it."""
        if self.handle is None:
            return
        self.sleep(grace_seconds)
        try:
            self.transport.delete(self.handle)
        except Exception as e:
            # Message may already be gone
            logger.warning(f"[Streaming] Failed to delete streamed message: {e}")
        self.handle = None
        self._sent_text = ""

    def _flush(self, now: float) -> None:
        self._deliver(self.text, send=self.handle is None)
        self._last_flush = now
        self._words_since_flush = 0

    def _deliver(self, text: str, send: bool) -> None:
        try:
            if send:
                self.handle = self.transport.send(text)
            else:
                self.transport.edit(self.handle, text)
            self._sent_text = text
            self.flush_count += 1
        except Exception as e:
            # "message is not modified" and flood limits must not break the command
            logger.warning(f"[Streaming] Transport update failed: {e}")
