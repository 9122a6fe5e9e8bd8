# routers/router.py
"""
FastAPI Router for the docker build gateway
"""

import asyncio

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import (
    APIRouter,
    Depends,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status
)
from pydantic import ValidationError
from starlette.websockets import WebSocketState
from uuid import uuid4

from core.config import settings
from core.errors import RelayWriteError
from core.logger import logger
from core.rate_limiter import limit_param, limiter
from core.redis_client import redis_health_check
from schemas.request_models import (
    BuildRequest,
    BuildResponse,
    ErrorStatus,
    HealthResponse,
)
from services.build_session import BuildSession, SessionDependencies


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

router = APIRouter(
    prefix="/api/v1",
    tags=["Docker Build"],
    responses={
        429: {"description": "Too Many Requests"},
        500: {"description": "Internal Server Error"}
    }
)

WS_CLOSE_BAD_REQUEST = 4400
WS_CLOSE_TIMEOUT = 4408

REQUEST_TIMEOUT_SECONDS = 60


class WebSocketSink:
    """Writes BuildResponse frames as JSON text messages."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, response: BuildResponse) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise RelayWriteError("websocket is no longer connected")
        try:
            await self.websocket.send_text(response.model_dump_json(exclude_none=True))
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise RelayWriteError(f"websocket write failed: {e!r}") from e


def get_session_dependencies() -> SessionDependencies:
    """External collaborators for build sessions (overridden in tests)."""
    return SessionDependencies()


async def _reject(websocket: WebSocket, message: str, code: int) -> None:
    frame = BuildResponse(id=str(uuid4()), error=ErrorStatus(message=message))
    try:
        await websocket.send_text(frame.model_dump_json(exclude_none=True))
        await websocket.close(code=code)
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.warning(f"Unable to reject build request: {e!r}")


async def _watch_disconnect(websocket: WebSocket, session: BuildSession) -> None:
    """Stop the session promptly when the client goes away."""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug(f"WebSocket receive ended: {e!r}")
    session.relay.mark_disconnected("websocket closed by client")


# ============================================================================
# HEALTH CHECK ENDPOINTS
# ============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Service Health Check",
    description="Validates connectivity to Redis and the upload bucket"
)
@limiter.limit(limit_param)
async def check_health(request: Request) -> HealthResponse:
    """
    Health check for the gateway dependencies.

    Checks:
    - Redis (log channels)
    - S3 upload bucket
    """
    health_status = HealthResponse()

    if await redis_health_check():
        health_status.redis_status = "connected"
    else:
        health_status.redis_status = "error"
        health_status.status = "degraded"

    try:
        from core.aws_client import create_session, get_s3_client
        s3 = get_s3_client(await asyncio.to_thread(create_session, "health"))
        try:
            await asyncio.to_thread(s3.head_bucket, Bucket=settings.UPLOAD_BUCKET_NAME)
        finally:
            s3.close()
        health_status.s3_status = "connected"
    except (BotoCoreError, ClientError) as e:
        logger.error(f"S3 health check failed: {e}")
        health_status.s3_status = f"error: {str(e)[:100]}"
        health_status.status = "degraded"

    return health_status


# ============================================================================
# DOCKER BUILD ENDPOINTS
# ============================================================================

@router.websocket("/docker/build")
async def docker_build(
    websocket: WebSocket,
    dependencies: SessionDependencies = Depends(get_session_dependencies),
) -> None:
    """
    Streaming docker build.

    The client sends one BuildRequest JSON frame. The server answers with
    BuildResponse frames: progress and build log lines in `content`, and at
    most one terminal `error`. The socket is closed when the build log ends.
    """
    await websocket.accept()

    try:
        raw = await asyncio.wait_for(websocket.receive_text(), timeout=REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        await websocket.close(code=WS_CLOSE_TIMEOUT)
        return
    except WebSocketDisconnect:
        logger.info("Client disconnected before sending a build request")
        return
    except KeyError:
        # binary frame: starlette's receive_text finds no "text" key
        logger.warning("Invalid build request: binary frame")
        await _reject(websocket, "invalid build request: expected a JSON text frame", WS_CLOSE_BAD_REQUEST)
        return

    try:
        body = BuildRequest.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Invalid build request: {e.error_count()} error(s)")
        await _reject(websocket, f"invalid build request: {e}", WS_CLOSE_BAD_REQUEST)
        return

    session = BuildSession(
        body,
        WebSocketSink(websocket),
        settings=settings,
        dependencies=dependencies,
    )
    watcher = asyncio.create_task(_watch_disconnect(websocket, session))
    try:
        outcome = await session.run()
    finally:
        watcher.cancel()

    logger.info(
        f"Build request processed: id={body.id}, session={outcome.session_id}, "
        f"ok={outcome.ok}, messages={outcome.messages_sent}"
    )

    if websocket.application_state == WebSocketState.CONNECTED:
        try:
            await websocket.close()
        except RuntimeError as e:
            logger.debug(f"WebSocket already closed: {e!r}")
