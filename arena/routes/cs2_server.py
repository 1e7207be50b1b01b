"""
cs2 game server status API.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from arena.bootstrap import Services
from arena.routes.deps import get_db, get_services

router = APIRouter(prefix="/api/cs2-server", tags=["cs2-server"])


class SyncRequest(BaseModel):
    admin_id: Optional[str] = Field(default=None, max_length=64)


@router.get("/status")
async def server_status(
    ip: str = Query(..., min_length=1, max_length=64),
    port: int = Query(27015, ge=1, le=65535),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Cached A2S probe of a game server."""
    status = await services.server_monitor.get_status(ip, port)
    return {"success": True, "server": status.to_dict()}


@router.post("/tournaments/{tournament_id}/sync")
async def sync_tournament(
    tournament_id: int,
    request: SyncRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    result = await services.server_monitor.sync_tournament(db, tournament_id, request.admin_id)
    return {"success": True, **result}


@router.post("/clear-cache")
async def clear_cache(services: Services = Depends(get_services)) -> Dict[str, Any]:
    cleared = services.server_monitor.clear_cache()
    return {"success": True, "cleared": cleared}
