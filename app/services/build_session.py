# services/build_session.py
"""
Build session orchestration.

One BuildSession serves one client request:

    DECODING -> UPLOADING -> PUBLISHING -> SUBSCRIBING -> RELAYING -> CLOSED

1. Decode the base64 build context and transcode it to tar.gz
2. Create the AWS session and upload the archive to S3
3. Build the job description and publish it to SQS (then disconnect)
4. Subscribe to the job's log channel in Redis
5. Relay worker stdout/stderr to the client until the channel ends

All client-bound frames go through a StreamRelay. Any failure ends the
session with exactly one error frame; every acquired resource is released
on every exit path.
"""

import asyncio
import base64
import binascii
import time
from contextlib import AsyncExitStack, aclosing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from redis.exceptions import RedisError

from core.aws_client import create_session, get_s3_client, get_sqs_client
from core.config import Settings, settings as default_settings
from core.errors import (
    BuildSessionError,
    DecodeError,
    PublishError,
    SubscribeError,
    TranscodeError,
    UploadError,
)
from core.logger import logger
from core.redis_client import create_redis_connection
from integrations.log_subscriber import LogChannelSubscriber, log_channel_name
from integrations.s3_store import ArtifactStore, upload_key
from integrations.sqs_client import SQSBroker
from schemas.request_models import BuildRequest
from services.archive_transcoder import transcode
from services.job_publisher import JobPublisher, build_job_request, build_specification
from services.stream_relay import OutboundSink, StreamRelay
from utils.formatting import MessageStyle
from utils.log_session import log_session


class SessionState(str, Enum):
    DECODING = "decoding"
    UPLOADING = "uploading"
    PUBLISHING = "publishing"
    SUBSCRIBING = "subscribing"
    RELAYING = "relaying"
    CLOSED = "closed"


def decode_content(content: str) -> bytes:
    """Strict base64 decode; line breaks are tolerated."""
    cleaned = content.replace("\r", "").replace("\n", "")
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"illegal base64 data in build context: {e}") from e


def _default_store_factory(aws_session, settings: Settings) -> ArtifactStore:
    return ArtifactStore(get_s3_client(aws_session), settings.UPLOAD_BUCKET_NAME)


def _default_broker_factory(aws_session, settings: Settings) -> SQSBroker:
    return SQSBroker(get_sqs_client(aws_session), settings.BROKER_QUEUE_NAME)


@dataclass
class SessionDependencies:
    """External collaborators of a session, replaceable in tests."""
    aws_session_factory: Callable[[str], Any] = create_session
    store_factory: Callable[[Any, Settings], Any] = _default_store_factory
    broker_factory: Callable[[Any, Settings], Any] = _default_broker_factory
    redis_factory: Callable[[], Any] = create_redis_connection
    id_factory: Callable[[], str] = lambda: str(uuid4())


@dataclass
class SessionOutcome:
    session_id: str
    state: SessionState
    error: Optional[str] = None
    upload_key: Optional[str] = None
    client_gone: bool = False
    messages_sent: int = 0
    duration_ms: int = 0
    last_state: Optional[SessionState] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _close_redis(conn) -> None:
    try:
        await conn.aclose()
    except (RedisError, OSError) as e:
        logger.warning(f"Failed to close Redis connection: {e}")


class BuildSession:
    """
    Drives one build request from upload to log relay.

    The session id is generated once and threads the STS session name,
    the S3 key, the queue message id and the log channel name.
    """

    def __init__(
        self,
        request: BuildRequest,
        sink: OutboundSink,
        *,
        settings: Settings = default_settings,
        style: Optional[MessageStyle] = None,
        dependencies: Optional[SessionDependencies] = None,
    ):
        self.request = request
        self.settings = settings
        self.deps = dependencies or SessionDependencies()
        self.style = style or MessageStyle(color=settings.COLOR_OUTPUT)
        self.session_id = self.deps.id_factory()
        self.state = SessionState.DECODING
        self.upload_key: Optional[str] = None
        self.relay = StreamRelay(
            sink,
            maxsize=settings.RELAY_QUEUE_MAXSIZE,
            style=self.style,
        )

    async def _progress(self, text: str) -> None:
        await self.relay.send_progress(text)

    async def _call(self, error_cls, func, *args, **kwargs):
        """Run blocking work in a thread, mapping stray failures to error_cls."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except BuildSessionError:
            raise
        except Exception as e:
            raise error_cls(str(e) or e.__class__.__name__) from e

    async def run(self) -> SessionOutcome:
        start_time = time.time()
        await self.relay.start()
        logger.info(f"Build session {self.session_id} started for request {self.request.id}")

        error: Optional[BuildSessionError] = None
        try:
            async with AsyncExitStack() as stack:
                await self._execute(stack)
        except BuildSessionError as e:
            error = e
        except Exception as e:
            logger.exception(f"Unexpected failure in build session {self.session_id}")
            error = BuildSessionError(str(e) or e.__class__.__name__)
        except asyncio.CancelledError:
            self.relay.abort()
            raise

        if error is not None:
            logger.error(
                f"Got error when handling build request {self.request.id} "
                f"(session {self.session_id}, step {error.step}): {error}"
            )
            await self.relay.send_error(str(error))

        last_state = self.state
        self.state = SessionState.CLOSED
        await self.relay.close()

        outcome = SessionOutcome(
            session_id=self.session_id,
            state=self.state,
            error=str(error) if error is not None else None,
            upload_key=self.upload_key,
            client_gone=self.relay.client_gone,
            messages_sent=self.relay.sent,
            duration_ms=int((time.time() - start_time) * 1000),
            last_state=last_state,
        )
        log_session(
            session_id=outcome.session_id,
            request_id=self.request.id,
            state=last_state.value,
            error=outcome.error,
            upload_key=outcome.upload_key,
            messages_sent=outcome.messages_sent,
            client_gone=outcome.client_gone,
            duration_ms=outcome.duration_ms,
        )
        return outcome

    async def _execute(self, stack: AsyncExitStack) -> None:
        s = self.settings

        # Step 1: decode and examine the build context
        self.state = SessionState.DECODING
        await self._progress("Submitting your docker build")
        await self._progress("Processing submitted files")
        raw = decode_content(self.request.content)

        await self._progress("Examining submitted files")
        archive = await self._call(TranscodeError, transcode, raw)

        # Step 2: storage session and upload
        self.state = SessionState.UPLOADING
        await self._progress("Creating docker build session")
        aws_session = await self._call(UploadError, self.deps.aws_session_factory, self.session_id)
        store = await self._call(UploadError, self.deps.store_factory, aws_session, s)
        stack.callback(store.close)

        await self._progress("Uploading docker build session")
        self.upload_key = await self._call(
            UploadError,
            store.upload,
            archive,
            upload_key(s.UPLOAD_DESTINATION_DIRECTORY, self.session_id),
            lifetime=timedelta(seconds=s.UPLOAD_LIFETIME_SECS),
            metadata={
                "id": self.request.id,
                "type": s.ARTIFACT_TYPE,
                "created_at": datetime.now(timezone.utc),
            },
            content_type=s.UPLOAD_CONTENT_TYPE,
        )

        # Step 3: publish the job, holding the broker only for the publish
        self.state = SessionState.PUBLISHING
        try:
            job = build_job_request(self.upload_key, build_specification(self.request, s))
        except ValueError as e:
            raise PublishError(f"unable to build job request: {e}") from e

        broker = await self._call(PublishError, self.deps.broker_factory, aws_session, s)
        try:
            publisher = JobPublisher(broker, s.BROKER_QUEUE_NAME)
            await self._call(PublishError, publisher.publish, self.session_id, self.upload_key, job)
        finally:
            broker.disconnect()

        await self._progress("Uploaded your docker build request")

        # Step 4: subscribe to the job's log channel
        self.state = SessionState.SUBSCRIBING
        try:
            conn = self.deps.redis_factory()
        except (RedisError, OSError) as e:
            raise SubscribeError(f"cannot create a redis connection: {e}") from e
        stack.push_async_callback(_close_redis, conn)

        subscriber = LogChannelSubscriber(
            conn,
            log_channel_name(s.BROKER_QUEUE_NAME, self.session_id),
            end_marker=s.LOG_END_MARKER,
            idle_timeout=s.LOG_IDLE_TIMEOUT_SECS,
        )
        stack.push_async_callback(subscriber.close)
        try:
            await subscriber.start()
        except SubscribeError as e:
            raise SubscribeError(f"cannot create redis subscriber: {e}") from e

        # Step 5: relay until the channel ends or the client goes away
        self.state = SessionState.RELAYING
        await self._relay_logs(subscriber)

    async def _drain(self, subscriber: LogChannelSubscriber) -> None:
        async with aclosing(subscriber.messages()) as messages:
            async for result in messages:
                if result.ok:
                    await self.relay.forward(result.response)

    async def _relay_logs(self, subscriber: LogChannelSubscriber) -> None:
        drain = asyncio.create_task(self._drain(subscriber), name=f"drain-{self.session_id}")
        gone = asyncio.create_task(self.relay.disconnected.wait())
        try:
            await asyncio.wait({drain, gone}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (drain, gone):
                if not task.done():
                    task.cancel()
            await asyncio.gather(drain, gone, return_exceptions=True)

        if drain.cancelled():
            logger.warning(f"Client left build session {self.session_id}, stopped relaying logs")
            return
        # re-raises LogIdleTimeoutError / SubscribeError from the drain
        drain.result()
