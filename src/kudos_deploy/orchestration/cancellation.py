"""Operator-initiated interruption of a run."""
import logging
import signal
import threading
from typing import Optional

from kudos_deploy.errors import RunCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag checked at phase boundaries and between poll attempts."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by operator") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.warning(f"⚠️ Cancellation requested: {reason}; stopping at the next phase boundary")
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled(self.reason or "cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))

    def install_signal_handler(self) -> None:
        """Turn the first SIGINT into a cancellation; a second one aborts."""
        def _handler(signum, frame):
            if self._event.is_set():
                raise KeyboardInterrupt
            self.cancel("interrupted (SIGINT)")

        signal.signal(signal.SIGINT, _handler)
