import time


class SlidingWindow:
    """Per-key timestamps pruned to the trailing `period` seconds."""

    def __init__(self, max_calls: int, period: float, clock=time.monotonic):
        self.max_calls = max_calls
        self.period = period
        self.clock = clock
        self.calls = {}

    def _prune(self, key, now):
        calls = [t for t in self.calls.get(key, []) if now - t < self.period]
        self.calls[key] = calls
        return calls

    def hit(self, key) -> bool:
        """Records an attempt and returns True when the limit is exceeded."""
        now = self.clock()
        calls = self._prune(key, now)
        calls.append(now)
        return len(calls) > self.max_calls

    def count(self, key) -> int:
        return len(self._prune(key, self.clock()))

    def reap(self) -> int:
        now = self.clock()
        idle = [key for key in list(self.calls) if not self._prune(key, now)]
        for key in idle:
            del self.calls[key]
        return len(idle)

    def clear(self):
        self.calls.clear()


class RateLimiter:
    """
    Best-effort abuse control: chat messages per identity and
    connection attempts per network origin, both over a sliding window.
    """

    def __init__(self, max_messages: int = 30, max_connections: int = 10, period: float = 60.0, clock=time.monotonic):
        self.messages = SlidingWindow(max_messages, period, clock)
        self.connections = SlidingWindow(max_connections, period, clock)

    def record_and_check_message(self, identity: str) -> bool:
        # Rejected attempts are recorded too, so a flood keeps the sender limited
        return self.messages.hit(identity)

    def check_and_record_connection(self, origin: str) -> bool:
        return self.connections.hit(origin)

    def reap(self) -> int:
        return self.messages.reap() + self.connections.reap()

    def clear(self):
        self.messages.clear()
        self.connections.clear()
