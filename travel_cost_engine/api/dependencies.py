"""FastAPI dependency injection helpers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Request

from travel_cost_engine.services.engine import TravelCostEngine


def get_engine(request: Request) -> TravelCostEngine:
    """The process-wide engine built in the app lifespan."""
    return request.app.state.engine


def request_context(request: Request) -> dict[str, Any]:
    """Opaque metadata stored alongside audit records."""
    return {
        "request_id": request.headers.get("x-request-id") or uuid.uuid4().hex,
        "path": request.url.path,
        "received_at": datetime.now(timezone.utc).isoformat(),
    }
