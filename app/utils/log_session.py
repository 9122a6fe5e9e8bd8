import json
from datetime import datetime, timezone
from typing import Optional
from core.logger import logger


def log_session(
    session_id: str,
    request_id: str,
    state: str,
    error: Optional[str] = None,
    upload_key: Optional[str] = None,
    messages_sent: int = 0,
    client_gone: bool = False,
    duration_ms: int = 0,
) -> None:
    """
    Structured end-of-session log line for build sessions.
    """
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": "build_session",
        "session_id": session_id,
        "request_id": request_id,
        "state": state,
        "upload_key": upload_key,
        "messages_sent": messages_sent,
        "client_gone": client_gone,
        "duration_ms": duration_ms,
    }

    if error is not None:
        log_data["event"] = "build_session_failed"
        log_data["error"] = error[:500]  # Truncate long causes
        logger.warning(json.dumps(log_data))
    elif client_gone:
        log_data["event"] = "build_session_abandoned"
        logger.warning(json.dumps(log_data))
    else:
        logger.info(json.dumps(log_data))
