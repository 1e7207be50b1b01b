"""
Shared route dependencies.
"""
from fastapi import HTTPException, Request, status

from arena.bootstrap import Services
from arena.database import get_db  # noqa: F401  re-exported for routers


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_flag(request: Request, name: str) -> None:
    """Reject the request when a feature flag is off."""
    if not request.app.state.services.settings.flags.is_enabled(name):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{name} is disabled"
        )
