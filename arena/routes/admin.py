"""
Admin API: registration review, tournament administration and the
notification ledger.

Admin identity is passed explicitly (admin_id) and recorded on the
affected rows; authentication sits in front of this service.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from arena.bootstrap import Services
from arena.routes.deps import get_db, get_services, require_flag
from arena.schemas.registration import (
    AdminActionRequest,
    AssignGroupsRequest,
    PinGroupRequest,
    RejectRequest,
    UpdateTeamRequest,
)
from arena.schemas.tournament import GroupingRequest, SetStatusRequest
from arena.services import registration_queries

registrations_router = APIRouter(prefix="/api/admin/registrations", tags=["admin-registrations"])
tournaments_router = APIRouter(prefix="/api/admin/tournaments", tags=["admin-tournaments"])
notifications_router = APIRouter(prefix="/api/admin/notifications", tags=["admin-notifications"])


# =============================================================================
# Registration review
# =============================================================================

@registrations_router.get("/tournament/{tournament_id}")
async def list_registrations(
    tournament_id: int,
    status: Optional[str] = Query(None),
    team_name: Optional[str] = Query(None),
    player_name: Optional[str] = Query(None),
    group: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=registration_queries.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Filtered, paginated registrations plus per-status counts.
    """
    tournament = await services.tournaments.get_tournament(db, tournament_id)
    listing = await registration_queries.list_registrations(
        db, tournament_id,
        status=status, team_name=team_name, player_name=player_name, group=group,
        page=page, limit=limit
    )
    stats = await registration_queries.registration_stats(db, tournament_id)
    return {
        "success": True,
        "tournament": tournament.to_dict(),
        "registrations": [r.to_dict() for r in listing["items"]],
        "pagination": {
            "total": listing["total"],
            "page": listing["page"],
            "pages": listing["pages"],
            "limit": limit,
        },
        "stats": stats,
    }


@registrations_router.post("/{registration_id}/verify")
async def verify_registration(
    registration_id: int,
    request: AdminActionRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.verify(
        db, registration_id, request.admin_id, override=request.override
    )
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.post("/{registration_id}/reject")
async def reject_registration(
    registration_id: int,
    request: RejectRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.reject(
        db, registration_id, request.admin_id, request.reason, override=request.override
    )
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.post("/{registration_id}/not-verified")
async def mark_not_verified(
    registration_id: int,
    request: AdminActionRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.mark_not_verified(
        db, registration_id, request.admin_id, override=request.override
    )
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.post("/{registration_id}/reopen")
async def reopen_registration(
    registration_id: int,
    request: AdminActionRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.reopen(db, registration_id, request.admin_id)
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.put("/{registration_id}/team")
async def update_team(
    registration_id: int,
    request: UpdateTeamRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.update_team(db, registration_id, request.admin_id, request.team)
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.post("/{registration_id}/group")
async def pin_group(
    registration_id: int,
    request: PinGroupRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.pin_group(db, registration_id, request.admin_id, request.group)
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.delete("/{registration_id}/group")
async def unpin_group(
    registration_id: int,
    admin_id: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.unpin_group(db, registration_id, admin_id)
    return {"success": True, "registration": registration.to_dict()}


@registrations_router.delete("/{registration_id}")
async def force_delete_registration(
    registration_id: int,
    admin_id: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Delete a registration in any status."""
    result = await services.lifecycle.force_delete(db, registration_id, admin_id)
    return {"success": True, **result}


# =============================================================================
# Tournament administration
# =============================================================================

@tournaments_router.post("/{tournament_id}/status")
async def set_tournament_status(
    tournament_id: int,
    request: SetStatusRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    tournament = await services.status_engine.set_status(db, tournament_id, request.status, request.admin_id)
    return {"success": True, "tournament": tournament.to_dict()}


@tournaments_router.post("/{tournament_id}/grouping")
async def update_grouping(
    tournament_id: int,
    request: GroupingRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    result = await services.tournaments.update_grouping(db, tournament_id, request.enabled, request.group_size)
    return {"success": True, **result}


@tournaments_router.post("/{tournament_id}/assign-groups")
async def assign_groups(
    tournament_id: int,
    request: AssignGroupsRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    result = await services.lifecycle.assign_groups(db, tournament_id, reset_pins=request.reset_pins)
    return {"success": True, **result}


@tournaments_router.get("/{tournament_id}/counter")
async def verify_counter(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Compare the stored participant counter with the real active count."""
    report = await services.lifecycle.counter.verify(db, tournament_id)
    return {"success": True, **report}


@tournaments_router.post("/sweep")
async def sweep_statuses(
    request: Request,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    require_flag(request, "FEATURE_STATUS_SWEEP")
    return await services.status_engine.sweep_statuses(db)


@tournaments_router.delete("/{tournament_id}")
async def delete_tournament(
    tournament_id: int,
    force: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    result = await services.tournaments.delete_tournament(db, tournament_id, force=force)
    return {"success": True, **result}


# =============================================================================
# Notification ledger
# =============================================================================

@notifications_router.get("")
async def list_messages(
    registration_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    messages = await services.dispatcher.list_messages(registration_id, status, limit)
    return {"success": True, "messages": [m.to_dict() for m in messages], "count": len(messages)}


@notifications_router.post("/process")
async def process_queued(
    request: Request,
    batch_size: Optional[int] = Query(None, ge=1, le=500),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    require_flag(request, "FEATURE_NOTIFICATIONS")
    result = await services.dispatcher.process_queued(batch_size)
    return {"success": True, **result}


@notifications_router.post("/{delivery_id}/delivered")
async def mark_delivered(
    delivery_id: str,
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Transport callback: the recipient's device received the message."""
    message = await services.dispatcher.mark_delivered(delivery_id)
    return {"success": True, "message": message.to_dict()}


@notifications_router.post("/{delivery_id}/read")
async def mark_read(
    delivery_id: str,
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    message = await services.dispatcher.mark_read(delivery_id)
    return {"success": True, "message": message.to_dict()}
