"""Server-sent event transport for chat turns.

An ``EventStream`` sits between the turn controller, which writes JSON
payloads, and the HTTP layer, which drains SSE frames into a
``StreamingResponse``. The stream also carries the "closed by peer"
signal used for cancellation.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CloseListener = Callable[[], None]


def format_sse(payload: Dict[str, Any], event: str = "message") -> str:
    """Render one SSE frame."""
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"


class EventStream:
    """Response handle for one chat turn.

    Attributes:
        headers_sent: At least one event has been written
        finished: ``end()`` or ``json_error()`` was called
        closed: The peer went away
        events: Every payload written, in order
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._ready = asyncio.Event()
        self._close_listeners: List[CloseListener] = []
        self.headers_sent = False
        self.finished = False
        self.closed = False
        self.json_response: Optional[Tuple[int, Dict[str, Any]]] = None
        self.events: List[Dict[str, Any]] = []

    def write(self, payload: Dict[str, Any]) -> None:
        if self.finished:
            logger.debug("Dropping event written after stream end")
            return
        self.events.append(payload)
        self.headers_sent = True
        self._queue.put_nowait(format_sse(payload))
        self._ready.set()

    def end(self) -> None:
        if self.finished:
            return
        self.finished = True
        self._queue.put_nowait(None)
        self._ready.set()

    def json_error(self, status_code: int, body: Dict[str, Any]) -> None:
        """Answer with a plain JSON error instead of an event stream."""
        if self.headers_sent:
            raise RuntimeError("Cannot send a JSON error after events were streamed")
        self.json_response = (status_code, body)
        self.end()

    def on_close(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    def remove_close_listener(self, listener: CloseListener) -> None:
        if listener in self._close_listeners:
            self._close_listeners.remove(listener)

    def close_by_peer(self) -> None:
        """Signal that the client disconnected."""
        if self.closed:
            return
        self.closed = True
        logger.debug("Event stream closed by peer")
        for listener in list(self._close_listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Error in close listener: {e}", exc_info=True)

    async def wait_until_ready(self) -> None:
        """Wait for the first event, a JSON error or the end of the stream."""
        await self._ready.wait()

    async def iter_frames(self):
        """Yield SSE frames until the stream ends."""
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            if not self.finished:
                self.close_by_peer()


def send_event(stream: EventStream, payload: Dict[str, Any]) -> None:
    """Write one JSON payload to the stream."""
    stream.write(payload)


async def watch_disconnect(request, stream: EventStream, interval: float) -> None:
    """Poll ``request.is_disconnected()`` until the stream finishes."""
    while not stream.finished and not stream.closed:
        if await request.is_disconnected():
            stream.close_by_peer()
            return
        await asyncio.sleep(interval)
