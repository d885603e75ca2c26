"""Request-scoped dependencies for the HTTP layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from lexplan.services.engine import BillingEngine


def get_engine(request: Request) -> BillingEngine:
    return request.app.state.engine


def get_user_id(request: Request) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""

    header = request.app.state.settings.api.user_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {header} header.",
        )
    return user_id


__all__ = ["get_engine", "get_user_id"]
