"""
Kooperativer Abbruch fuer lang laufende Operationen.
"""
import threading
from typing import Optional

from .errors import CancelledError


class Cancellable:
    """
    Abbruch-Signal, das an Request-Grenzen geprueft wird.

    Verwendung:
        cancellable = Cancellable()
        backend.get_changes(token, cancellable)
        # aus einem anderen Thread:
        cancellable.cancel()
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Setzt das Abbruch-Signal."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Wirft CancelledError wenn abgebrochen wurde."""
        if self._event.is_set():
            raise CancelledError("Operation was cancelled")


def check_cancelled(cancellable: Optional[Cancellable]) -> None:
    if cancellable is not None:
        cancellable.raise_if_cancelled()
