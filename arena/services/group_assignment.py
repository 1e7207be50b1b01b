"""
Group Assignment

Deterministic partition of a tournament's active registrations into
fixed-size groups labelled G1..Gn, ordered by registration time (ties broken
by id). The partition is always recomputed from the full ordered active set
so cancellations and rejections never leave gaps.

Pinned registrations (manual admin override) keep their label and are left
out of the ordered partition until pins are explicitly reset.
"""
import logging
import re
from typing import Any, Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.orm.registration import Registration
from arena.orm.tournament import Tournament

logger = logging.getLogger(__name__)

GROUP_LABEL_PATTERN = re.compile(r"^G[1-9][0-9]*$")


def label_for_position(position: int, group_size: int) -> str:
    """
    Pure function: group label for the 0-indexed ``position``.

        0 .. size-1      → G1
        size .. 2size-1  → G2
    """
    if position < 0:
        raise ValueError(f"Position must be non-negative, got {position}")
    if group_size < 1:
        raise ValueError(f"Group size must be positive, got {group_size}")
    return f"G{position // group_size + 1}"


def partition_labels(count: int, group_size: int) -> List[str]:
    return [label_for_position(i, group_size) for i in range(count)]


def is_valid_group_label(label: str) -> bool:
    return bool(label) and GROUP_LABEL_PATTERN.match(label) is not None


class GroupAssignment:

    async def _ordered_registrations(self, db: AsyncSession, tournament_id: int) -> Sequence[Registration]:
        result = await db.execute(
            select(Registration)
            .where(Registration.tournament_id == tournament_id)
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def _clear_all(
        self,
        db: AsyncSession,
        tournament: Tournament,
        registrations: Sequence[Registration]
    ) -> Dict[str, Any]:
        updated = 0
        for registration in registrations:
            if registration.group_label is not None or registration.group_pinned:
                registration.group_label = None
                registration.group_pinned = False
                updated += 1
        if updated:
            await db.flush()
            logger.info(f"[GROUPS] Tournament {tournament.id}: grouping disabled, {updated} labels cleared")
        return {"updated_count": updated, "total_groups": 0}

    async def recompute(
        self,
        db: AsyncSession,
        tournament: Tournament,
        reset_pins: bool = False
    ) -> Dict[str, Any]:
        """
        Recompute labels inside the caller's transaction (no commit).

        Idempotent: an unchanged active set writes nothing. Only rows whose
        label or pin actually changes are touched. With grouping disabled
        every label and pin is cleared.
        """
        await db.flush()
        registrations = await self._ordered_registrations(db, tournament.id)

        if not tournament.grouping_enabled:
            return await self._clear_all(db, tournament, registrations)

        changed = set()
        active = []
        for registration in registrations:
            if registration.is_active:
                active.append(registration)
            elif registration.group_label is not None or registration.group_pinned:
                registration.group_label = None
                registration.group_pinned = False
                changed.add(registration.id)

        if reset_pins:
            for registration in active:
                if registration.group_pinned:
                    registration.group_pinned = False
                    changed.add(registration.id)

        unpinned = [r for r in active if not r.group_pinned]
        labels = partition_labels(len(unpinned), tournament.group_size)
        for registration, label in zip(unpinned, labels):
            if registration.group_label != label:
                registration.group_label = label
                changed.add(registration.id)

        updated = len(changed)
        total_groups = len({r.group_label for r in active if r.group_label})
        if updated:
            await db.flush()
            logger.info(
                f"[GROUPS] Tournament {tournament.id}: {updated} labels changed, "
                f"{len(active)} teams in {total_groups} groups"
            )
        return {"updated_count": updated, "total_groups": total_groups}
