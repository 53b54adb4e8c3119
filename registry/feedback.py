"""Auto-expiring toasts describing in-flight and finished operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .models import Toast, ToastsUpdated

logger = logging.getLogger(__name__)


class FeedbackBoard:
    """Ordered toasts; terminal ones expire after a fixed delay."""

    def __init__(self, publish: Callable[[ToastsUpdated], None] | None = None, *,
                 success_delay: float = 2.0, failure_delay: float = 3.0):
        self._publish = publish
        self.success_delay = success_delay
        self.failure_delay = failure_delay
        self._toasts: dict[str, Toast] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def toasts(self) -> list[Toast]:
        return list(self._toasts.values())

    def start(self, message: str) -> str:
        toast = Toast(message=message, kind="loading")
        self._toasts[toast.id] = toast
        self._changed()
        return toast.id

    def settle(self, toast_id: str | None, success: bool, message: str) -> str:
        """Turn a loading toast (or a new one) into success/error and schedule its removal."""
        kind = "success" if success else "error"
        if toast_id is None or toast_id not in self._toasts:
            toast = Toast(message=message, kind=kind)
        else:
            toast = self._toasts[toast_id].model_copy(update={"message": message, "kind": kind})
        self._toasts[toast.id] = toast
        if success:
            logger.info(message)
        else:
            logger.warning(message)
        self._schedule_expiry(toast.id, self.success_delay if success else self.failure_delay)
        self._changed()
        return toast.id

    def dismiss(self, toast_id: str) -> None:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        if self._toasts.pop(toast_id, None) is not None:
            self._changed()

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._toasts.clear()

    def _schedule_expiry(self, toast_id: str, delay: float) -> None:
        previous = self._timers.pop(toast_id, None)
        if previous is not None:
            previous.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop (sync callers in tests): the toast stays until dismissed
            return
        self._timers[toast_id] = loop.call_later(delay, self.dismiss, toast_id)

    def _changed(self) -> None:
        if self._publish is not None:
            self._publish(ToastsUpdated(toasts=self.toasts))


__all__ = ["FeedbackBoard"]
