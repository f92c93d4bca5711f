"""
MODULE OVERVIEW:
The bounded, newest-first store of accepted stream events.

WHAT IS HAPPENING HERE:
A `deque` with `maxlen` does the truncation: `appendleft` pushes the newest event to the
front and silently drops the oldest one off the tail once the buffer is full.
`total_count` keeps counting past the cap, so it reflects every accepted event since the
last `clear()`.
"""
from collections import deque

from filter_stream.shared.models import StreamMessage


class EventBuffer:
    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._events: deque[StreamMessage] = deque(maxlen=max_size)
        self.total_count = 0

    def append(self, event: StreamMessage) -> None:
        self.total_count += 1
        self._events.appendleft(event)

    def clear(self) -> None:
        self._events.clear()
        self.total_count = 0

    def events(self) -> list[StreamMessage]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
