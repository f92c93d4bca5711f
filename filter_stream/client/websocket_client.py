"""
MODULE OVERVIEW:
The WebSocket transport used by the ConnectionManager.

WHAT IS HAPPENING HERE:
We use the `websockets` library. One transport object is one connection attempt: it runs
the handshake and the read loop inside its own asyncio task and reports what happens to a
listener through four callbacks (open, message, close, error), the same four a browser
WebSocket exposes. The transport never retries on its own; deciding whether to reconnect is
the listener's job.

A failed handshake or a dropped TCP connection is reported as an error followed by a close
with code 1006, so the listener always gets exactly one close per transport.
"""
import asyncio
from typing import Optional, Protocol, Union

import websockets
from loguru import logger

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class TransportListener(Protocol):
    def on_open(self, transport: "WebSocketTransport") -> None: ...

    def on_message(self, transport: "WebSocketTransport", raw: Union[str, bytes]) -> None: ...

    def on_close(self, transport: "WebSocketTransport", code: int, reason: str) -> None: ...

    def on_error(self, transport: "WebSocketTransport", error: BaseException) -> None: ...


class WebSocketTransport:
    def __init__(self, url: str, listener: TransportListener, open_timeout_s: float = 10.0):
        self.url = url
        self.listener = listener
        self.open_timeout_s = open_timeout_s

        self._ws: Optional[websockets.ClientConnection] = None
        self._closing = False
        self._close_task: Optional[asyncio.Task] = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Start closing. Does not wait; the close callback still fires from the read loop."""
        if self._closing:
            return
        self._closing = True
        if self._ws is None:
            # Still in the handshake, nothing to send a close frame on
            self._task.cancel()
            return
        self._close_task = asyncio.get_running_loop().create_task(self._ws.close(code, reason))

    async def wait_closed(self) -> None:
        pending = [t for t in (self._task, self._close_task) if t is not None]
        await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        try:
            async with websockets.connect(self.url, open_timeout=self.open_timeout_s) as ws:
                self._ws = ws
                logger.debug(f"url={self.url} protocol=websocket event=open")
                self.listener.on_open(self)

                try:
                    async for raw in ws:
                        self.listener.on_message(self, raw)
                except websockets.ConnectionClosed:
                    pass
        except asyncio.CancelledError:
            logger.debug(f"url={self.url} protocol=websocket event=cancelled")
            return
        except (ConnectionError, OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            logger.warning(f"url={self.url} protocol=websocket event=error reason='{e}'")
            self.listener.on_error(self, e)
            self.listener.on_close(self, ABNORMAL_CLOSURE, str(e))
            return
        except Exception as e:
            logger.exception(f"url={self.url} protocol=websocket event=listener_error")
            self.listener.on_error(self, e)
            self.listener.on_close(self, ABNORMAL_CLOSURE, f"listener error: {e}")
            return

        code = ws.close_code or ABNORMAL_CLOSURE
        reason = ws.close_reason or ""
        logger.debug(f"url={self.url} protocol=websocket event=close code={code} reason='{reason}'")
        self.listener.on_close(self, int(code), reason)
