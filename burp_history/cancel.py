"""Cooperative cancellation shared by the load pipeline and queries."""

import threading


class CancelToken:
    """Checked between entries, never in the middle of one."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
