"""
Auth session

Holds the signed-in identity and notifies observers. A new observer receives
the current identity straight away; every observer is notified once more when
session restoration finishes, and on each later change, in the order they
subscribed.
"""

import logging
import threading
from typing import Callable, List, Optional

from schemas import User

logger = logging.getLogger(__name__)

Observer = Callable[[Optional[User]], None]


class AuthSession:
    def __init__(self):
        self._current: Optional[User] = None
        self._observers: List[Observer] = []
        self._lock = threading.RLock()
        self._ready = threading.Event()
        self._completed = False

    @property
    def current_user(self) -> Optional[User]:
        return self._current

    @property
    def initialized(self) -> bool:
        return self._ready.is_set()

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        with self._lock:
            self._observers.append(callback)
            current = self._current
        callback(current)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def set_user(self, user: Optional[User]) -> None:
        with self._lock:
            self._current = user
        self._emit()

    def complete_initialization(self, user: Optional[User] = None) -> None:
        with self._lock:
            if self._completed:
                return
            self._completed = True
            if user is not None:
                self._current = user
        try:
            self._emit()
        finally:
            self._ready.set()
        logger.debug("Session initialized for %s", user.email if user else "anonymous")

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def _emit(self) -> None:
        with self._lock:
            observers = list(self._observers)
            current = self._current
        for callback in observers:
            callback(current)
