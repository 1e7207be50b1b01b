"""
Tournament Service

Organizer-side tournament operations: creation, reads (with lazy status
evaluation), grouping configuration and deletion.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.config.settings import Settings
from arena.core.clock import Clock, SystemClock
from arena.errors import TournamentHasParticipants, ValidationError
from arena.orm.registration import Registration, RegistrationImage
from arena.orm.tournament import Tournament
from arena.schemas.tournament import TournamentCreate
from arena.services.game_policy import policy_for
from arena.services.participant_counter import count_active_registrations
from arena.services.registration_lifecycle import RegistrationLifecycle
from arena.services.status_engine import StatusTransitionEngine

logger = logging.getLogger(__name__)


def parse_tournament(data: Union[TournamentCreate, Dict[str, Any]]) -> TournamentCreate:
    if isinstance(data, TournamentCreate):
        return data
    try:
        return TournamentCreate.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid tournament details", details={"errors": errors}) from None


def validate_schedule(data: TournamentCreate, time_windowed: bool) -> None:
    """Window-based games need deadline <= start < end."""
    if not time_windowed:
        return
    missing = [
        name for name in ("registration_deadline", "start_date", "end_date")
        if getattr(data, name) is None
    ]
    if missing:
        raise ValidationError(f"Missing schedule fields: {', '.join(missing)}")
    if data.registration_deadline > data.start_date:
        raise ValidationError("Registration deadline must be on or before the start date")
    if data.end_date <= data.start_date:
        raise ValidationError("End date must be after start date")


class TournamentService:

    def __init__(
        self,
        lifecycle: RegistrationLifecycle,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        status_engine: Optional[StatusTransitionEngine] = None
    ):
        self.lifecycle = lifecycle
        self.settings = settings or lifecycle.settings
        self.clock = clock or lifecycle.clock or SystemClock()
        self.status_engine = status_engine or lifecycle.status_engine

    async def create_tournament(
        self,
        db: AsyncSession,
        data: Union[TournamentCreate, Dict[str, Any]]
    ) -> Tournament:
        """
        Raises:
            ValidationError: bad fields, unknown game type or bad schedule
            IllegalStatusForGameType: explicit status outside the game's set
        """
        data = parse_tournament(data)
        policy = policy_for(data.game_type)
        validate_schedule(data, policy.time_windowed)

        status = data.status or policy.initial_status
        policy.require_legal_status(status)

        tournament = Tournament(
            name=data.name.strip(),
            description=data.description,
            game_type=policy.game_type,
            status=status,
            registration_deadline=data.registration_deadline if policy.time_windowed else None,
            start_date=data.start_date if policy.time_windowed else None,
            end_date=data.end_date if policy.time_windowed else None,
            max_participants=data.max_participants,
            current_participants=0,
            grouping_enabled=data.grouping_enabled,
            group_size=data.group_size or self.settings.default_group_size,
            server_ip=data.server_ip,
            server_port=data.server_port,
            created_by=data.created_by,
        )
        db.add(tournament)
        await db.flush()
        await self.status_engine.apply(db, tournament)
        await db.commit()

        logger.info(f"[TOURNAMENT] Created {tournament.id} ({tournament.game_type}) status={tournament.status}")
        return tournament

    async def get_tournament(self, db: AsyncSession, tournament_id: int) -> Tournament:
        """Read with lazy status evaluation."""
        return await self.status_engine.evaluate_status(db, tournament_id)

    async def list_tournaments(
        self,
        db: AsyncSession,
        game_type: Optional[str] = None,
        status: Optional[str] = None
    ) -> List[Tournament]:
        query = select(Tournament).order_by(Tournament.start_date.asc(), Tournament.id.asc())
        if game_type:
            query = query.where(Tournament.game_type == policy_for(game_type).game_type)
        result = await db.execute(query.execution_options(populate_existing=True))
        tournaments = list(result.scalars().all())

        changed = False
        for tournament in tournaments:
            changed = await self.status_engine.apply(db, tournament) or changed
        if changed:
            await db.commit()

        if status:
            tournaments = [t for t in tournaments if t.status == status]
        return tournaments

    async def update_grouping(
        self,
        db: AsyncSession,
        tournament_id: int,
        enabled: bool,
        group_size: Optional[int] = None
    ) -> Dict[str, Any]:
        if group_size is not None and group_size < 5:
            raise ValidationError("Group size must be at least 5")

        async with self.lifecycle.unit_of_work(db, tournament_id):
            tournament = await self.lifecycle.load_tournament(db, tournament_id)
            tournament.grouping_enabled = enabled
            if group_size is not None:
                tournament.group_size = group_size
            await db.flush()
            result = await self.lifecycle.groups.recompute(db, tournament)

        logger.info(f"[TOURNAMENT] Grouping for {tournament_id}: enabled={enabled} size={tournament.group_size}")
        return {"tournament": tournament.to_dict(), **result}

    async def delete_tournament(
        self,
        db: AsyncSession,
        tournament_id: int,
        force: bool = False
    ) -> Dict[str, Any]:
        """Refused while active registrations exist unless ``force``."""
        released = []
        async with self.lifecycle.unit_of_work(db, tournament_id):
            tournament = await self.lifecycle.load_tournament(db, tournament_id)
            active = await count_active_registrations(db, tournament_id)
            if active > 0 and not force:
                raise TournamentHasParticipants(tournament_id, active)

            registration_ids = select(Registration.id).where(Registration.tournament_id == tournament_id)
            refs = await db.execute(
                select(RegistrationImage.blob_ref).where(RegistrationImage.registration_id.in_(registration_ids))
            )
            released = list(refs.scalars().all())

            await db.execute(
                delete(RegistrationImage).where(RegistrationImage.registration_id.in_(registration_ids))
                .execution_options(synchronize_session=False)
            )
            deleted = await db.execute(
                delete(Registration).where(Registration.tournament_id == tournament_id)
                .execution_options(synchronize_session=False)
            )
            await db.delete(tournament)

        await self.lifecycle.release_blobs(released)
        logger.info(f"[TOURNAMENT] Deleted {tournament_id} (force={force}, registrations={deleted.rowcount})")
        return {"deleted": True, "tournament_id": tournament_id, "registrations_deleted": deleted.rowcount}
