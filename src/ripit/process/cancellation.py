"""Cooperative cancellation token shared between a task and the work it owns."""

import logging
from collections.abc import Callable

from ripit.error_handling import AbortedError

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag with listener subscription.

    A lane creates one token per task and passes it down through every stage.
    Work that can be interrupted (a spawned process) subscribes a listener and
    unsubscribes once it finishes so listeners do not accumulate.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel the token. Calling it again is a no-op."""
        if self._cancelled:
            return
        self._cancelled = True

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Cancellation listener failed")

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a listener called once on cancel. Returns an unsubscribe function.

        Subscribing to an already cancelled token calls the listener immediately.
        """
        if self._cancelled:
            listener()
            return lambda: None

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def raise_if_cancelled(self, message: str = "Operation aborted") -> None:
        if self._cancelled:
            raise AbortedError(message)
