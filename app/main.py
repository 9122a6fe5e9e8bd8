import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from routers.router import router
from core.lifespan import lifespan
from core.config import settings
from core.logger import logger
from core.rate_limiter import limiter

# CORS configuration
if settings.ENABLE_CORS:
    origins = [
        origin for origin in (settings.FRONTEND_ENDPOINT, settings.BACKEND_ENDPOINT) if origin
    ]
else:
    origins = ["*"]

# Initialize FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Build-submission gateway for docker builds executed by remote workers.

    ## Streaming Endpoint

    **WS /api/v1/docker/build** - Submit a build and stream its output

    ### First client frame (BuildRequest):
    - `id` (required): Client request identifier
    - `content` (required): Base64 encoded zip (or tar.gz) of the build context
    - `image_name` (optional): Name of the image to build
    - `push_options` (optional): `image_name`, `username`, `password` for a registry push

    ### Server frames (BuildResponse):
    - `{id, content}` for progress narration and build log lines
    - `{id, error: {message}}` at most once, as the last frame, when the build fails

    The server closes the socket once the build log ends.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Request/Response logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    log_data = {
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": int(duration * 1000),
        "client": request.client.host if request.client else "unknown"
    }

    # Only log non-health-check requests
    if request.url.path != "/api/v1/health":
        logger.info(f"Request: {log_data}")

    return response

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "service": settings.PROJECT_NAME,
        "version": "1.0.0",
        "status": "running",
        "documentation": "/docs"
    }


if __name__ == "__main__":
    # WebSocket keepalive pings stay on; a build can be silent for minutes between log lines
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        ws_ping_interval=20,
        ws_ping_timeout=60,
        log_level="debug" if settings.DEBUG else "info",
    )
