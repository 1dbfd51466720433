"""Single-slot cancellable deferred action."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    token: Any
    due_ms: int
    callback: Callable[[], None]


class DeferredAction:
    """One pending action at most; scheduling a new one supersedes the old.

    Nothing runs on its own: the owner calls ``poll(now_ms)`` from its loop.
    """

    def __init__(self):
        self._pending: Optional[_Pending] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def token(self) -> Any:
        return self._pending.token if self._pending else None

    @property
    def due_ms(self) -> Optional[int]:
        return self._pending.due_ms if self._pending else None

    def schedule(self, token: Any, due_ms: int, callback: Callable[[], None]) -> None:
        if self._pending is not None:
            logger.debug(f"Deferred action {self._pending.token} superseded by {token}")
        self._pending = _Pending(token=token, due_ms=int(due_ms), callback=callback)

    def cancel(self) -> bool:
        """Drop the pending action. Returns True if one was pending."""
        had = self._pending is not None
        self._pending = None
        return had

    def poll(self, now_ms: int) -> bool:
        """Run the pending action if it is due. Fires at most once.

        Returns:
            True if the action ran
        """
        pending = self._pending
        if pending is None or now_ms < pending.due_ms:
            return False
        self._pending = None
        logger.debug(f"Running deferred action {pending.token}")
        pending.callback()
        return True
