"""
Public tournament API.

Reads evaluate the time-driven status lazily, so a tournament whose
deadline passed since the last sweep is already reported as closed.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from arena.bootstrap import Services
from arena.routes.deps import get_db, get_services
from arena.schemas.tournament import TournamentCreate
from arena.services import registration_queries

router = APIRouter(prefix="/api/tournaments", tags=["tournaments"])


@router.get("")
async def list_tournaments(
    game_type: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    tournaments = await services.tournaments.list_tournaments(db, game_type=game_type, status=status_filter)
    return {
        "success": True,
        "tournaments": [t.to_dict() for t in tournaments],
        "count": len(tournaments),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tournament(
    request: TournamentCreate,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Create a tournament.

    Window-based games need registration_deadline <= start_date < end_date;
    the initial status comes from the game type unless given explicitly.
    """
    tournament = await services.tournaments.create_tournament(db, request)
    return {"success": True, "tournament": tournament.to_dict()}


@router.get("/{tournament_id}")
async def get_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    tournament = await services.tournaments.get_tournament(db, tournament_id)
    return {"success": True, "tournament": tournament.to_dict()}


@router.get("/{tournament_id}/teams")
async def list_verified_teams(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Verified teams only, in registration order."""
    await services.tournaments.get_tournament(db, tournament_id)
    teams = await registration_queries.list_verified_teams(db, tournament_id)
    return {"success": True, "teams": teams, "count": len(teams)}
