"""
Participant Counter

Keeps Tournament.current_participants equal to the number of active
registrations (pending, images_uploaded, verified). The stored value is
rewritten only when it differs from the recount.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from arena.errors import ConcurrencyConflict
from arena.orm.registration import ACTIVE_STATUSES, Registration
from arena.orm.tournament import Tournament

logger = logging.getLogger(__name__)


def count_active(statuses: Iterable[str]) -> int:
    """Pure function: how many of the given statuses count toward capacity."""
    return sum(1 for s in statuses if s in ACTIVE_STATUSES)


async def count_active_registrations(db: AsyncSession, tournament_id: int) -> int:
    result = await db.execute(
        select(func.count(Registration.id)).where(
            Registration.tournament_id == tournament_id,
            Registration.status.in_(ACTIVE_STATUSES)
        )
    )
    return result.scalar_one()


class ParticipantCounter:

    async def recompute(
        self,
        db: AsyncSession,
        tournament: Tournament,
        expected: Optional[int] = None
    ) -> int:
        """
        Recount and persist (no commit).

        With ``expected`` the write is a compare-and-swap against the value the
        caller read at the start of its transaction; a miss means another
        writer changed the counter underneath and raises ConcurrencyConflict.
        """
        await db.flush()
        actual = await count_active_registrations(db, tournament.id)
        stored = tournament.current_participants if expected is None else expected
        if actual == stored:
            return actual

        result = await db.execute(
            update(Tournament)
            .where(Tournament.id == tournament.id, Tournament.current_participants == stored)
            .values(current_participants=actual)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                f"[COUNTER] Tournament {tournament.id}: stored counter moved away from {stored}"
            )
            raise ConcurrencyConflict()

        set_committed_value(tournament, "current_participants", actual)
        logger.info(f"[COUNTER] Tournament {tournament.id}: {stored} -> {actual}")
        return actual

    async def verify(self, db: AsyncSession, tournament_id: int) -> dict:
        """Read-only integrity check of the denormalized counter."""
        stored = (await db.execute(
            select(Tournament.current_participants).where(Tournament.id == tournament_id)
        )).scalar_one_or_none()
        actual = await count_active_registrations(db, tournament_id)
        return {
            "tournament_id": tournament_id,
            "valid": stored == actual,
            "stored": stored,
            "actual": actual,
        }
