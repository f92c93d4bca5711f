"""
MODULE OVERVIEW:
The subscription state machine. This file is the heart of the client.
It owns the single live WebSocket for the current filter key, decides when to reconnect,
and is the only writer of the connection status.

WHAT IS HAPPENING HERE:
Everything runs on one asyncio event loop. Transport callbacks (open/message/close/error)
and the reconnect timer fire one at a time, interleaved with user actions (new filter key,
pause, clear, disconnect). None of the transition methods here await anything, so each transition is
atomic with respect to the others. Only `aclose()` awaits, and only after the transition.

Two guards keep the state coherent:
  1. Every callback carries the transport that produced it. Callbacks from a transport we
     already let go of (filter changed, manual disconnect) are ignored, so an old socket
     closing late can never flip the status of the new one.
  2. The reconnect timer remembers the key it was scheduled for and re-checks it when it
     fires, so a retry can never resurrect a subscription the user has moved away from.
"""

import asyncio
from typing import Callable, Optional, Protocol, Union

from loguru import logger
from pydantic import ValidationError

from filter_stream.client.event_buffer import EventBuffer
from filter_stream.client.pause_gate import PauseGate
from filter_stream.client.reconnect_policy import ReconnectPolicy
from filter_stream.client.websocket_client import NORMAL_CLOSURE, WebSocketTransport
from filter_stream.shared.config import Settings
from filter_stream.shared.models import ConnectionState, StreamMessage, StreamSnapshot


class Transport(Protocol):
    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TransportFactory = Callable[[str, "ConnectionManager"], Transport]
Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_scheduler(delay_s: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay_s, callback)


class ConnectionManager:
    def __init__(
        self,
        settings: Settings,
        transport_factory: Optional[TransportFactory] = None,
        scheduler: Optional[Scheduler] = None,
        policy: Optional[ReconnectPolicy] = None,
    ):
        self.ws_base = settings.ws_base.rstrip("/")
        self.policy = policy or ReconnectPolicy(
            base_delay_ms=settings.RECONNECT_BASE_DELAY_MS,
            max_attempts=settings.MAX_RECONNECT_ATTEMPTS,
        )
        self.buffer = EventBuffer(max_size=settings.EVENT_BUFFER_SIZE)
        self.gate = PauseGate(self.buffer)

        if transport_factory is None:
            open_timeout_s = settings.WS_OPEN_TIMEOUT_S

            def transport_factory(url, listener):
                return WebSocketTransport(url, listener, open_timeout_s=open_timeout_s)

        self._transport_factory = transport_factory
        self._scheduler = scheduler or _loop_scheduler

        self._status = ConnectionState.DISCONNECTED
        self._filter_key = ""
        self._transport: Optional[Transport] = None
        self._transport_key = ""
        self._timer: Optional[TimerHandle] = None
        self.attempt = 0

        self.on_event_callback: Optional[Callable[[StreamMessage], None]] = None
        self.on_status_change_callback: Optional[Callable[[ConnectionState], None]] = None

    def set_callbacks(self, on_event=None, on_status_change=None):
        self.on_event_callback = on_event
        self.on_status_change_callback = on_status_change

    # ==========================
    # READ SURFACE
    # ==========================
    @property
    def connection_status(self) -> ConnectionState:
        return self._status

    @property
    def filter_key(self) -> str:
        return self._filter_key

    @property
    def events(self) -> list[StreamMessage]:
        return self.buffer.events()

    @property
    def total_count(self) -> int:
        return self.buffer.total_count

    @property
    def is_paused(self) -> bool:
        return self.gate.is_paused

    @property
    def has_transport(self) -> bool:
        return self._transport is not None

    @property
    def has_pending_retry(self) -> bool:
        return self._timer is not None

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(
            connection_status=self._status,
            events=self.buffer.events(),
            total_count=self.buffer.total_count,
            is_paused=self.gate.is_paused,
            filter_key=self._filter_key,
            attempt=self.attempt,
        )

    # ==========================
    # LIFECYCLE
    # ==========================
    def activate(self, filter_key: str) -> None:
        filter_key = filter_key or ""
        if filter_key != self._filter_key:
            logger.info(f"filter_key={filter_key or '-'} event=filter_changed previous={self._filter_key or '-'}")
            self.attempt = 0
        self._filter_key = filter_key

        self._cancel_timer()
        if not filter_key:
            self._release_transport("Filter cleared")
            self._set_status(ConnectionState.DISCONNECTED)
            return

        self._release_transport("Filter changed")
        self._set_status(ConnectionState.CONNECTING)

        url = f"{self.ws_base}/{filter_key}"
        logger.info(f"filter_key={filter_key} event=connect url={url}")
        self._transport_key = filter_key
        self._transport = self._transport_factory(url, self)

    def teardown(self, manual: bool = False) -> Optional[Transport]:
        """Close the live transport and cancel any retry. A manual teardown also drops buffered events."""
        reason = "Manual disconnect" if manual else "Component cleanup"
        self._cancel_timer()
        released = self._release_transport(reason)
        self._set_status(ConnectionState.DISCONNECTED)
        if manual:
            self.buffer.clear()
        return released

    def disconnect(self) -> None:
        logger.info(f"filter_key={self._filter_key or '-'} event=disconnect reason=manual")
        self.teardown(manual=True)

    def reconnect(self) -> None:
        """Start over for the current key with a fresh retry budget."""
        self.attempt = 0
        if self._filter_key:
            self.activate(self._filter_key)

    def close(self) -> Optional[Transport]:
        """Final teardown. The manager can still be reused by calling `activate` again."""
        released = self.teardown()
        self._filter_key = ""
        self.attempt = 0
        self.buffer.clear()
        return released

    async def aclose(self) -> None:
        """`close()`, then wait until the released socket has finished its closing handshake."""
        released = self.close()
        wait_closed = getattr(released, "wait_closed", None)
        if wait_closed is not None:
            await wait_closed()

    # ==========================
    # PRESENTATION ACTIONS
    # ==========================
    def clear_events(self) -> None:
        self.buffer.clear()

    def toggle_pause(self) -> bool:
        paused = self.gate.toggle()
        logger.info(f"filter_key={self._filter_key or '-'} event={'paused' if paused else 'resumed'}")
        return paused

    # ==========================
    # TRANSPORT CALLBACKS
    # ==========================
    def on_open(self, transport: Transport) -> None:
        if not self._is_current(transport):
            return
        logger.info(f"filter_key={self._transport_key} event=open")
        self.attempt = 0
        self._set_status(ConnectionState.CONNECTED)

    def on_message(self, transport: Transport, raw: Union[str, bytes]) -> None:
        if not self._is_current(transport):
            return
        try:
            message = StreamMessage.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"filter_key={self._transport_key} event=malformed_message error_count={e.error_count()} raw={raw!r:.200}")
            return

        if message.type == "event":
            if self.gate.accept(message):
                if self.on_event_callback:
                    try:
                        self.on_event_callback(message)
                    except Exception:
                        logger.exception(f"filter_key={self._transport_key} event=callback_error callback=on_event")
            else:
                logger.debug(f"filter_key={self._transport_key} event=dropped reason=paused")
        elif message.type == "connection":
            logger.info(f"filter_key={self._transport_key} event=server_notice data={message.data!r}")
        else:
            logger.debug(f"filter_key={self._transport_key} event=ignored type={message.type}")

    def on_error(self, transport: Transport, error: BaseException) -> None:
        if not self._is_current(transport):
            return
        logger.error(f"filter_key={self._transport_key} event=error reason='{error}'")
        self._set_status(ConnectionState.ERROR)

    def on_close(self, transport: Transport, code: int, reason: str) -> None:
        if not self._is_current(transport):
            return
        key = self._transport_key
        self._transport = None
        self._set_status(ConnectionState.DISCONNECTED)
        logger.info(f"filter_key={key} event=close code={code} reason='{reason}'")

        if code == NORMAL_CLOSURE:
            return

        if self.attempt >= self.policy.max_attempts or not key or key != self._filter_key:
            logger.warning(
                f"filter_key={key or '-'} event=giving_up attempt={self.attempt} "
                f"max_attempts={self.policy.max_attempts}"
            )
            return

        self.attempt += 1
        delay_s = self.policy.decide(self.attempt)
        if delay_s is None:
            return
        self._set_status(ConnectionState.RECONNECTING)
        logger.info(
            f"filter_key={key} event=reconnect_scheduled attempt={self.attempt}/{self.policy.max_attempts} "
            f"delay_s={delay_s:.1f}"
        )
        self._timer = self._scheduler(delay_s, lambda: self._fire_retry(key))

    # ==========================
    # INTERNALS
    # ==========================
    def _fire_retry(self, key: str) -> None:
        self._timer = None
        if not key or key != self._filter_key:
            logger.info(f"filter_key={key or '-'} event=reconnect_aborted reason=filter_changed")
            return
        self.activate(key)

    def _is_current(self, transport: Transport) -> bool:
        if transport is not self._transport:
            logger.debug("event=stale_callback reason=transport_released")
            return False
        return True

    def _release_transport(self, reason: str) -> Optional[Transport]:
        transport, self._transport = self._transport, None
        if transport is not None:
            logger.info(f"filter_key={self._transport_key} event=closing code={NORMAL_CLOSURE} reason='{reason}'")
            transport.close(NORMAL_CLOSURE, reason)
        return transport

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _set_status(self, status: ConnectionState) -> None:
        if status == self._status:
            return
        self._status = status
        if self.on_status_change_callback:
            try:
                self.on_status_change_callback(status)
            except Exception:
                logger.exception(f"filter_key={self._filter_key or '-'} event=callback_error callback=on_status_change")
