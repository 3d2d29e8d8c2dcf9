from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from core.config import get_settings
from core.prometheus_metrics import REGISTRY

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["100/minute"]  # Global default
)

# Metric for monitoring
rate_limit_exceeded_counter = Counter(
    'rental_rate_limit_exceeded_total',
    'Total rate limit violations',
    ['endpoint'],
    registry=REGISTRY
)


def pickup_rate_limit() -> str:
    """Limit for the password-gated pickup route; override guesses are throttled per client."""
    return get_settings().pickup_rate_limit


def custom_rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    rate_limit_exceeded_counter.labels(endpoint=request.url.path).inc()

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": f"Rate limit exceeded: {exc.detail}. Please try again later.",
        },
    )
