"""Test doubles for injected clocks and push providers."""

import threading
from datetime import datetime, timedelta, timezone

START = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock passed wherever a ``clock`` is injected."""

    def __init__(self, start: datetime = START):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)
            return self.now


class FakePushProvider:
    """Scripted push provider.

    ``responses`` maps a raw token to the values returned (or exceptions
    raised) by successive calls; the last entry repeats. Unknown tokens are
    delivered.
    """

    def __init__(self, responses=None, on_send=None):
        self.responses = {token: list(values) for token, values in (responses or {}).items()}
        self.on_send = on_send
        self.calls = []
        self._lock = threading.Lock()

    def send(self, platform, token, payload, timeout):
        with self._lock:
            self.calls.append((platform, token, payload, timeout))
            queue = self.responses.get(token)
            if queue:
                response = queue.pop(0) if len(queue) > 1 else queue[0]
            else:
                response = "sent"
        if self.on_send is not None:
            self.on_send(platform, token)
        if isinstance(response, Exception):
            raise response
        return response

    def tokens_called(self):
        return [call[1] for call in self.calls]
