"""
Tournament Status Transition Engine

Drives tournaments through their time-gated status progression.

The decision is a pure function of (snapshot, now): ``evaluate`` never touches
the database, is deterministic, and is idempotent for a fixed ``now``. Lazy
per-read evaluation and the periodic sweep both call it and persist through a
compare-and-swap on the stored status, so they are safe to run concurrently.

Progression (window-based games):
    upcoming → registration_open → registration_closed → active → completed

cs2 tournaments only toggle active/inactive by explicit admin action.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from arena.core.clock import Clock, SystemClock
from arena.errors import ArenaError, InvalidTransition, tournament_not_found
from arena.orm.tournament import Tournament, TournamentStatus as TS
from arena.services.game_policy import policy_for, progression_rank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusSnapshot:
    """The subset of a tournament the status decision depends on."""
    game_type: str
    status: str
    registration_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @classmethod
    def of(cls, tournament: Tournament) -> "StatusSnapshot":
        return cls(
            game_type=tournament.game_type,
            status=tournament.status,
            registration_deadline=tournament.registration_deadline,
            start_date=tournament.start_date,
            end_date=tournament.end_date,
        )


def _reached(now: datetime, moment: Optional[datetime]) -> bool:
    return moment is not None and now >= moment


def next_status(snapshot: StatusSnapshot, now: datetime) -> str:
    """
    Pure function: the status the tournament should hold at ``now``.

    Edges are applied in order within one call, and only if they advance
    the status along the progression, so status never regresses even when
    ``now`` is earlier than a previous evaluation.
    """
    policy = policy_for(snapshot.game_type)
    current = snapshot.status
    if not policy.time_windowed or policy.is_terminal(current):
        return current
    if progression_rank(current) < 0:
        return current

    target = current
    if target == TS.UPCOMING.value and snapshot.registration_deadline is not None \
            and now < snapshot.registration_deadline:
        target = TS.REGISTRATION_OPEN.value
    if target in (TS.UPCOMING.value, TS.REGISTRATION_OPEN.value) \
            and _reached(now, snapshot.registration_deadline):
        target = TS.REGISTRATION_CLOSED.value
    if target == TS.REGISTRATION_CLOSED.value and _reached(now, snapshot.start_date):
        target = TS.ACTIVE.value
    if target == TS.ACTIVE.value and _reached(now, snapshot.end_date):
        target = TS.COMPLETED.value

    if progression_rank(target) <= progression_rank(current):
        return current
    return target


def evaluate(snapshot: StatusSnapshot, now: datetime) -> StatusSnapshot:
    """Pure, idempotent: evaluate(evaluate(s, now), now) == evaluate(s, now)."""
    status = next_status(snapshot, now)
    if status == snapshot.status:
        return snapshot
    return replace(snapshot, status=status)


class StatusTransitionEngine:
    """Persists status decisions with compare-and-swap semantics."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    async def _compare_and_swap(
        self,
        db: AsyncSession,
        tournament: Tournament,
        expected: str,
        new_status: str
    ) -> bool:
        result = await db.execute(
            update(Tournament)
            .where(Tournament.id == tournament.id, Tournament.status == expected)
            .values(status=new_status, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            set_committed_value(tournament, "status", new_status)
            return True
        # Another writer moved it first; pick up what they wrote
        await db.refresh(tournament, attribute_names=["status", "updated_at"])
        return False

    async def apply(self, db: AsyncSession, tournament: Tournament, now: Optional[datetime] = None) -> bool:
        """
        Evaluate and persist inside the caller's transaction (no commit).

        Returns True if this call changed the stored status.
        """
        now = now or self.clock.now()
        old = tournament.status
        new = next_status(StatusSnapshot.of(tournament), now)
        if new == old:
            return False
        swapped = await self._compare_and_swap(db, tournament, old, new)
        if swapped:
            logger.info(f"[STATUS] Tournament {tournament.id}: {old} -> {new}")
        return swapped

    async def evaluate_status(self, db: AsyncSession, tournament_id: int) -> Tournament:
        """Lazy evaluation on read."""
        tournament = await db.get(Tournament, tournament_id, populate_existing=True)
        if tournament is None:
            raise tournament_not_found(tournament_id)
        if await self.apply(db, tournament):
            await db.commit()
        return tournament

    async def sweep_statuses(self, db: AsyncSession) -> Dict[str, Any]:
        """
        Batch evaluation across every non-terminal, time-windowed tournament.

        Idempotent: a second sweep at the same instant updates nothing.
        """
        now = self.clock.now()
        result = await db.execute(
            select(Tournament)
            .where(Tournament.status.in_([
                TS.UPCOMING.value,
                TS.REGISTRATION_OPEN.value,
                TS.REGISTRATION_CLOSED.value,
                TS.ACTIVE.value,
            ]))
            .order_by(Tournament.id)
        )
        tournaments = result.scalars().all()

        updated = 0
        for tournament in tournaments:
            if not policy_for(tournament.game_type).time_windowed:
                continue
            if await self.apply(db, tournament, now):
                updated += 1
        await db.commit()

        logger.info(f"[SWEEP] Checked {len(tournaments)} tournaments, updated {updated}")
        return {"success": True, "checked_count": len(tournaments), "updated_count": updated}

    async def set_status(
        self,
        db: AsyncSession,
        tournament_id: int,
        new_status: str,
        admin_id: Optional[str] = None
    ) -> Tournament:
        """
        Explicit admin write.

        cs2: active/inactive toggle (server online/offline).
        Other games: only cancellation; the schedule drives everything else.
        """
        tournament = await db.get(Tournament, tournament_id, with_for_update=True, populate_existing=True)
        old = tournament.status if tournament is not None else None
        try:
            if tournament is None:
                raise tournament_not_found(tournament_id)
            policy = policy_for(tournament.game_type)
            policy.require_legal_status(new_status)
            if new_status != old and new_status not in policy.manual_statuses:
                raise InvalidTransition(
                    "tournament", old, new_status,
                    hint="this status is set by the tournament schedule"
                )
            if new_status != old and policy.is_terminal(old):
                raise InvalidTransition("tournament", old, new_status, hint=f"'{old}' is terminal")
        except ArenaError:
            await db.rollback()
            raise

        # Release the row lock without expiring the loaded tournament
        if new_status == old:
            await db.commit()
            return tournament

        if not await self._compare_and_swap(db, tournament, old, new_status):
            await db.rollback()
            raise InvalidTransition(
                "tournament", old, new_status,
                hint="status changed concurrently, reload and retry"
            )
        await db.commit()
        logger.info(f"[STATUS] Tournament {tournament.id}: {old} -> {new_status} by admin {admin_id}")
        return tournament
