"""
MODULE OVERVIEW:
The client-side pause switch in front of the EventBuffer.

WHAT IS HAPPENING HERE:
Pausing does not talk to the server and does not touch the socket. Events keep arriving;
while paused they are simply dropped before they reach the buffer or its counter.
"""
from filter_stream.client.event_buffer import EventBuffer
from filter_stream.shared.models import StreamMessage


class PauseGate:
    def __init__(self, buffer: EventBuffer):
        self.buffer = buffer
        self.is_paused = False

    def toggle(self) -> bool:
        self.is_paused = not self.is_paused
        return self.is_paused

    def accept(self, event: StreamMessage) -> bool:
        """Forward `event` to the buffer unless paused. Returns whether it was stored."""
        if self.is_paused:
            return False
        self.buffer.append(event)
        return True
