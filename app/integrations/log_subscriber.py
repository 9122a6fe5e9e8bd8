# app/integrations/log_subscriber.py
"""
Subscriber for the per-build log channel.

Workers publish serialized JobResponse records on
"{queue_name}/log-{session_id}" and finish with the end marker. Redis
pub/sub has no notion of closing a channel, so the marker (or a
JobResponse of kind "end") is what ends the sequence.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from pydantic import ValidationError
from redis.exceptions import RedisError

from core.errors import DeserializeError, LogIdleTimeoutError, SubscribeError
from core.logger import logger
from schemas.sqs_models import JobResponse, ResponseKind


def log_channel_name(queue_name: str, session_id: str) -> str:
    return f"{queue_name}/log-{session_id}"


@dataclass(frozen=True)
class DecodeResult:
    """Either a decoded JobResponse or the reason the message was skipped."""
    response: Optional[JobResponse] = None
    skip_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.response is not None

    @classmethod
    def decoded(cls, response: JobResponse) -> "DecodeResult":
        return cls(response=response)

    @classmethod
    def skip(cls, reason: str) -> "DecodeResult":
        return cls(skip_reason=reason)


def parse_job_response(payload: Union[str, bytes]) -> JobResponse:
    try:
        return JobResponse.model_validate_json(payload)
    except ValidationError as e:
        raise DeserializeError(f"failed to unmarshal response data: {e.error_count()} error(s)") from e


def decode_message(payload: Union[str, bytes]) -> DecodeResult:
    try:
        return DecodeResult.decoded(parse_job_response(payload))
    except DeserializeError as e:
        return DecodeResult.skip(str(e))


class LogChannelSubscriber:
    """
    Lazy sequence of decoded messages from one log channel.

    Usage:
        async with LogChannelSubscriber(conn, channel) as subscriber:
            async for result in subscriber.messages():
                ...
    """

    def __init__(
        self,
        redis_conn,
        channel: str,
        *,
        end_marker: str = "<<END>>",
        idle_timeout: float = 0,
    ):
        self.redis = redis_conn
        self.channel = channel
        self.end_marker = end_marker
        self.idle_timeout = idle_timeout
        self._pubsub = None
        self._closed = False

    async def start(self) -> None:
        """
        Subscribe to the channel.

        Raises:
            SubscribeError: If the subscription cannot be established
        """
        try:
            self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            await self._pubsub.subscribe(self.channel)
        except (RedisError, OSError) as e:
            raise SubscribeError(f"unable to subscribe to {self.channel}: {e}") from e
        logger.info(f"Subscribed to log channel {self.channel}")

    async def messages(self) -> AsyncIterator[DecodeResult]:
        """
        Yield one DecodeResult per message until the end marker arrives.

        Raises:
            LogIdleTimeoutError: No message within idle_timeout seconds
            SubscribeError: The channel connection was lost
        """
        if self._pubsub is None:
            raise SubscribeError(f"not subscribed to {self.channel}")

        loop = asyncio.get_running_loop()
        last_activity = loop.time()

        while True:
            timeout = None
            if self.idle_timeout:
                timeout = self.idle_timeout - (loop.time() - last_activity)
                if timeout <= 0:
                    raise LogIdleTimeoutError(
                        f"no build output received for {self.idle_timeout:g} seconds"
                    )

            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
            except (RedisError, OSError) as e:
                raise SubscribeError(f"lost connection to log channel {self.channel}: {e}") from e

            if msg is None or msg.get("type") != "message":
                continue

            last_activity = loop.time()
            data = msg.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8", errors="replace")
            if data == self.end_marker:
                logger.debug(f"End marker received on {self.channel}")
                return

            result = decode_message(data)
            if not result.ok:
                logger.debug(f"Skipping log message on {self.channel}: {result.skip_reason}")
            elif result.response.kind == ResponseKind.END.value:
                logger.debug(f"End response received on {self.channel}")
                return
            yield result

    async def close(self) -> None:
        if self._closed or self._pubsub is None:
            self._closed = True
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self.channel)
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to unsubscribe from {self.channel}: {e}")
        finally:
            await self._pubsub.aclose()
        logger.debug(f"Log channel {self.channel} closed")

    async def __aenter__(self) -> "LogChannelSubscriber":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
