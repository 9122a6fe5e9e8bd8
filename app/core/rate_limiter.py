from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

# HTTP routes only; the build WebSocket is bounded by its session lifetime
limiter = Limiter(key_func=get_remote_address)
limit_param = f"{settings.RATE_LIMIT_MIN}/minute"
