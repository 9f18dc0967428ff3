"""Rate limiting shared by all routers (per client address, in-memory)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from travel_cost_engine.config import settings

limiter = Limiter(key_func=get_remote_address)

_rate_limit = settings.rate_limit


def configure_rate_limit(value: str) -> None:
    """Set the per-route limit; ``create_app`` calls this with its settings."""
    global _rate_limit
    _rate_limit = value


def rate_limit() -> str:
    # Evaluated by slowapi on every request
    return _rate_limit
