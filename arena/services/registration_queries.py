"""
Read-side queries over registrations: admin listing with filters and stats,
the public verified-teams list, per-user lookup and the counter integrity check.
"""
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import String, case, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.errors import ValidationError
from arena.orm.registration import Registration, RegistrationStatus as RS
from arena.services.participant_counter import ParticipantCounter
from arena.services.registration_lifecycle import NOT_VERIFIED_REASON

MAX_PAGE_SIZE = 100


async def list_registrations(
    db: AsyncSession,
    tournament_id: int,
    status: Optional[str] = None,
    team_name: Optional[str] = None,
    player_name: Optional[str] = None,
    group: Optional[str] = None,
    page: int = 1,
    limit: int = 20
) -> Dict[str, Any]:
    """Admin listing, newest first, paginated."""
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")
    if status and status not in {s.value for s in RS}:
        raise ValidationError(f"Unknown registration status '{status}'")

    filters = [Registration.tournament_id == tournament_id]
    if status:
        filters.append(Registration.status == status)
    if team_name:
        filters.append(Registration.team_name.ilike(f"%{team_name}%"))
    if player_name:
        pattern = f"%{player_name}%"
        filters.append(or_(
            Registration.leader_name.ilike(pattern),
            cast(Registration.team_members, String).ilike(pattern),
        ))
    if group:
        filters.append(Registration.group_label == group)

    total = (await db.execute(
        select(func.count(Registration.id)).where(*filters)
    )).scalar_one()

    result = await db.execute(
        select(Registration)
        .where(*filters)
        .order_by(Registration.registered_at.desc(), Registration.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "items": list(result.scalars().all()),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if total else 0,
    }


async def registration_stats(db: AsyncSession, tournament_id: int) -> Dict[str, int]:
    """
    Counts per status. ``rejected`` excludes the "Not Verified" admin
    outcome, which is reported separately as ``not_verified``.
    """
    not_verified = (Registration.status == RS.REJECTED.value) & (
        Registration.rejection_reason == NOT_VERIFIED_REASON
    )
    row = (await db.execute(
        select(
            func.count(Registration.id),
            func.sum(case((Registration.status == RS.PENDING.value, 1), else_=0)),
            func.sum(case((Registration.status == RS.IMAGES_UPLOADED.value, 1), else_=0)),
            func.sum(case((Registration.status == RS.VERIFIED.value, 1), else_=0)),
            func.sum(case((Registration.status == RS.REJECTED.value, 1), else_=0)),
            func.sum(case((not_verified, 1), else_=0)),
        ).where(Registration.tournament_id == tournament_id)
    )).one()

    total, pending, images_uploaded, verified, rejected, not_verified_count = (v or 0 for v in row)
    return {
        "total": total,
        "pending": pending,
        "images_uploaded": images_uploaded,
        "verified": verified,
        "rejected": rejected - not_verified_count,
        "not_verified": not_verified_count,
    }


async def list_verified_teams(db: AsyncSession, tournament_id: int) -> List[Dict[str, Any]]:
    """Public list: team names and groups only, in registration order."""
    result = await db.execute(
        select(Registration)
        .where(
            Registration.tournament_id == tournament_id,
            Registration.status == RS.VERIFIED.value
        )
        .order_by(Registration.registered_at.asc(), Registration.id.asc())
    )
    return [
        {
            "team_name": r.team_name,
            "leader_name": r.leader_name,
            "group": r.group_label,
            "verified_at": r.verified_at.isoformat() if r.verified_at else None,
        }
        for r in result.scalars().all()
    ]


async def get_user_registration(db: AsyncSession, tournament_id: int, user_id: str) -> Optional[Registration]:
    result = await db.execute(
        select(Registration).where(
            Registration.tournament_id == tournament_id,
            Registration.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def get_registration(db: AsyncSession, registration_id: int) -> Optional[Registration]:
    return await db.get(Registration, registration_id, populate_existing=True)


async def verify_counter_integrity(db: AsyncSession, tournament_id: int) -> Dict[str, Any]:
    """Compare the stored participant counter against a recount of active registrations."""
    return await ParticipantCounter().verify(db, tournament_id)
