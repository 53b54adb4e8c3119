"""Fan-out of pushed messages plus one-shot waits for completion events.

Background work (copies, moves, deletions, the folder picker, git watches)
reports back by publishing a message. Callers that need the outcome register
a resolver *before* starting the work and then wait on it:

    pending = channel.expect("MOVE_BULK_COMPLETE", lambda m: m.request_id == rid)
    service.move_bulk(..., request_id=rid)
    message = await pending.wait(timeout=30)

Messages are handled in arrival order; each resolver fires at most once, on
the first message that matches it, and is then removed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable

from .errors import CompletionTimeout

logger = logging.getLogger(__name__)

Matcher = Callable[[Any], bool]
Subscriber = Callable[[Any], None]


class PendingCompletion:
    """Handle for a registered resolver."""

    def __init__(self, channel: NotificationChannel, key: str, kind: str, match: Matcher | None,
                 future: asyncio.Future):
        self._channel = channel
        self.key = key
        self.kind = kind
        self.match = match
        self.future = future

    def accepts(self, message: Any) -> bool:
        if getattr(message, "type", None) != self.kind or self.future.done():
            return False
        return self.match is None or bool(self.match(message))

    async def wait(self, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(self.future, timeout)
        except asyncio.TimeoutError:
            raise CompletionTimeout(self.kind, timeout) from None
        finally:
            self._channel._discard(self.key)

    def cancel(self) -> None:
        self._channel._discard(self.key)
        if not self.future.done():
            self.future.cancel()


class NotificationChannel:
    """Completion table keyed by correlation id, plus broadcast subscribers."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._pending: dict[str, PendingCompletion] = {}
        self._subscribers: list[Subscriber] = []

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Event loop that owns the channel; needed by publish_threadsafe()."""
        self._loop = loop

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def expect(self, kind: str, match: Matcher | None = None, key: str | None = None) -> PendingCompletion:
        loop = asyncio.get_running_loop()
        key = key or uuid.uuid4().hex
        if key in self._pending:
            raise ValueError(f"Completion {key!r} already registered")
        pending = PendingCompletion(self, key, kind, match, loop.create_future())
        self._pending[key] = pending
        return pending

    async def await_completion(self, kind: str, match: Matcher | None = None, timeout: float = 30.0) -> Any:
        return await self.expect(kind, match).wait(timeout)

    def publish(self, message: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception:
                logger.exception("Subscriber failed on %s", getattr(message, "type", message))
        for key, pending in list(self._pending.items()):
            if pending.accepts(message):
                pending.future.set_result(message)
                self._discard(key)

    def publish_threadsafe(self, message: Any) -> None:
        """publish() from a foreign thread (watchers, worker threads)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Dropping %s: channel has no running loop", getattr(message, "type", message))
            return
        try:
            loop.call_soon_threadsafe(self.publish, message)
        except RuntimeError:
            logger.debug("Dropping %s: loop is shutting down", getattr(message, "type", message))

    def _discard(self, key: str) -> None:
        self._pending.pop(key, None)


__all__ = ["NotificationChannel", "PendingCompletion"]
