from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from shared.config.settings import get_settings


def client_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Uses the first X-Forwarded-For hop when the service sits behind a proxy,
    falling back to the socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{get_remote_address(request)}"


def push_rate_limit() -> str:
    return get_settings().push_rate_limit


limiter = Limiter(key_func=client_ip, enabled=get_settings().rate_limit_enabled)
