"""
Cooperative cancellation.

A token is a one-way flag. Children created with ``child()`` are cancelled
when their parent is, but cancelling a child leaves the parent alone. That
is how a supervisor stops an in-flight sub-agent without the sub-agent
being able to stop the supervisor. A parent holds its children weakly, so
tokens of finished sub-runs do not pile up on a long-lived root token.
"""

import logging
import threading
import weakref

from taskpilot.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with parent-to-child propagation."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: weakref.WeakSet["CancellationToken"] = weakref.WeakSet()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by user.") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
        logger.debug(f"Cancellation requested: {reason}")
        for child in children:
            child.cancel(reason)

    def child(self) -> "CancellationToken":
        """Create a token that is cancelled whenever this one is."""
        token = CancellationToken()
        with self._lock:
            self._children.add(token)
            already = self._event.is_set()
        if already:
            token.cancel(self.reason or "Cancelled by parent.")
        return token

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancel. Returns the cancelled state."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "Cancelled")
