from .rate_limiter import limiter, client_ip, push_rate_limit

__all__ = [
    "limiter",
    "client_ip",
    "push_rate_limit"
]
