"""
Game Type Policy

Single place that knows how game types differ. Each policy carries the legal
status set, whether the time window drives status, the initial status for a
new tournament, the player identifier label, and the registration-open
predicate. The status engine, the registration lifecycle and the tournament
service consume policies; nothing else branches on game_type.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Tuple

from arena.errors import ErrorCode, IllegalStatusForGameType, ValidationError
from arena.orm.tournament import GameType, TournamentStatus as TS

# Ordered, time-driven progression for window-based games
PROGRESSION: Tuple[str, ...] = (
    TS.UPCOMING.value,
    TS.REGISTRATION_OPEN.value,
    TS.REGISTRATION_CLOSED.value,
    TS.ACTIVE.value,
    TS.COMPLETED.value,
)

WINDOW_STATUSES = frozenset(PROGRESSION) | {TS.CANCELLED.value}
SERVER_STATUSES = frozenset({TS.ACTIVE.value, TS.INACTIVE.value})


@dataclass(frozen=True)
class GameTypePolicy:
    game_type: str
    allowed_statuses: FrozenSet[str]
    time_windowed: bool
    initial_status: str
    identifier_label: str
    terminal_statuses: FrozenSet[str] = frozenset()
    # Statuses an admin may write directly
    manual_statuses: FrozenSet[str] = frozenset()

    def is_legal_status(self, value: str) -> bool:
        return value in self.allowed_statuses

    def require_legal_status(self, value: str) -> None:
        if not self.is_legal_status(value):
            raise IllegalStatusForGameType(self.game_type, value, self.allowed_statuses)

    def is_terminal(self, value: str) -> bool:
        return value in self.terminal_statuses

    def registration_window_open(self, tournament, now: datetime) -> bool:
        """Registration-open predicate without the capacity clause."""
        if not self.time_windowed:
            return tournament.status == TS.ACTIVE.value
        if tournament.status not in (TS.UPCOMING.value, TS.REGISTRATION_OPEN.value):
            return False
        return tournament.registration_deadline is not None and now < tournament.registration_deadline

    def is_registration_open(self, tournament, now: datetime) -> bool:
        if not self.registration_window_open(tournament, now):
            return False
        if not self.time_windowed:
            return True
        return (tournament.current_participants or 0) < tournament.max_participants


POLICIES: Dict[str, GameTypePolicy] = {
    GameType.BGMI.value: GameTypePolicy(
        game_type=GameType.BGMI.value,
        allowed_statuses=WINDOW_STATUSES,
        time_windowed=True,
        initial_status=TS.UPCOMING.value,
        identifier_label="BGMI ID",
        terminal_statuses=frozenset({TS.COMPLETED.value, TS.CANCELLED.value}),
        manual_statuses=frozenset({TS.CANCELLED.value}),
    ),
    GameType.FREEFIRE.value: GameTypePolicy(
        game_type=GameType.FREEFIRE.value,
        allowed_statuses=WINDOW_STATUSES,
        time_windowed=True,
        initial_status=TS.UPCOMING.value,
        identifier_label="Free Fire ID",
        terminal_statuses=frozenset({TS.COMPLETED.value, TS.CANCELLED.value}),
        manual_statuses=frozenset({TS.CANCELLED.value}),
    ),
    GameType.VALORANT.value: GameTypePolicy(
        game_type=GameType.VALORANT.value,
        allowed_statuses=WINDOW_STATUSES,
        time_windowed=True,
        initial_status=TS.UPCOMING.value,
        identifier_label="Riot ID",
        terminal_statuses=frozenset({TS.COMPLETED.value, TS.CANCELLED.value}),
        manual_statuses=frozenset({TS.CANCELLED.value}),
    ),
    GameType.CS2.value: GameTypePolicy(
        game_type=GameType.CS2.value,
        allowed_statuses=SERVER_STATUSES,
        time_windowed=False,
        initial_status=TS.ACTIVE.value,
        identifier_label="Steam ID",
        manual_statuses=SERVER_STATUSES,
    ),
}


def policy_for(game_type: str) -> GameTypePolicy:
    try:
        return POLICIES[game_type]
    except KeyError:
        raise ValidationError(
            f"Invalid game type '{game_type}'. Must be one of: {', '.join(sorted(POLICIES))}",
            code=ErrorCode.INVALID_GAME_TYPE,
        ) from None


def progression_rank(status: str) -> int:
    """Position along the progression; -1 for statuses outside it."""
    try:
        return PROGRESSION.index(status)
    except ValueError:
        return -1
