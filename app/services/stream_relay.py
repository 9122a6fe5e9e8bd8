# services/stream_relay.py
"""
Single-writer relay onto a client's outbound stream.

Progress narration from the build session and log lines arriving from the
worker are produced concurrently, but only the relay's forwarding task ever
writes to the client. Producers enqueue into one bounded FIFO queue and the
forwarder writes one frame at a time in enqueue order.

A failed write means the client is gone: it is logged, `disconnected` is
set, and the forwarder keeps draining (and discarding) so producers never
block on a full queue.
"""

import asyncio
from typing import Optional, Protocol
from uuid import uuid4

from core.errors import RelayWriteError
from core.logger import logger
from schemas.request_models import BuildResponse, ErrorStatus
from schemas.sqs_models import JobResponse, ResponseKind
from utils.formatting import MessageStyle, PLAIN

# Only worker stdout/stderr reaches the client
RELAYED_KINDS = frozenset((ResponseKind.STDOUT.value, ResponseKind.STDERR.value))

_STOP = object()


class OutboundSink(Protocol):
    """Anything frames can be written to: a WebSocket, a test buffer, ..."""

    async def send(self, response: BuildResponse) -> None:
        ...


def new_message_id() -> str:
    return str(uuid4())


class StreamRelay:
    def __init__(
        self,
        sink: OutboundSink,
        *,
        maxsize: int = 1024,
        style: MessageStyle = PLAIN,
    ):
        self.sink = sink
        self.style = style
        self.disconnected = asyncio.Event()
        self.sent = 0
        self.discarded = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None

    @property
    def client_gone(self) -> bool:
        return self.disconnected.is_set()

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._forward(), name="stream-relay")

    async def _forward(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                if self.disconnected.is_set():
                    self.discarded += 1
                    continue
                await self._write(item)
            finally:
                self._queue.task_done()

    async def _write(self, response: BuildResponse) -> None:
        try:
            await self.sink.send(response)
            self.sent += 1
        except RelayWriteError as e:
            logger.error(f"Unable to write build message to client: {e}")
            self.mark_disconnected("write failed")
        except Exception as e:
            logger.error(f"Unexpected error writing build message to client: {e!r}")
            self.mark_disconnected("write failed")

    async def _put(self, response: BuildResponse) -> None:
        await self._queue.put(response)

    async def send_content(self, text: str) -> None:
        await self._put(BuildResponse(id=new_message_id(), content=text))

    async def send_progress(self, text: str) -> None:
        await self.send_content(self.style.progress(text))

    async def send_error(self, message: str) -> None:
        await self._put(BuildResponse(id=new_message_id(), error=ErrorStatus(message=message)))

    async def forward(self, response: JobResponse) -> bool:
        """
        Relay one worker message. Only relayed kinds with a non-blank body
        are enqueued, trimmed of surrounding whitespace.

        Returns:
            bool: True if a frame was enqueued
        """
        if response.kind not in RELAYED_KINDS:
            return False
        body = response.text.strip()
        if not body:
            return False
        await self.send_content(self.style.log_line(body))
        return True

    async def close(self) -> None:
        """Flush every queued frame, then stop the forwarder."""
        if self._task is None:
            return
        await self._queue.put(_STOP)
        await self._task
        self._task = None

    def mark_disconnected(self, reason: str) -> None:
        if not self.disconnected.is_set():
            logger.info(f"Client disconnected: {reason}")
            self.disconnected.set()

    def abort(self) -> None:
        """Stop the forwarder immediately, dropping queued frames."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
