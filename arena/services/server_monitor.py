"""
cs2 Server Monitor

Probes game servers for online status with a bounded TTL cache in front of
the probe, and drives the active/inactive status of cs2 tournaments from
the result.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import a2s
from sqlalchemy.ext.asyncio import AsyncSession

from arena.core.clock import Clock, SystemClock
from arena.core.ttl_cache import TTLCache
from arena.errors import ValidationError, tournament_not_found
from arena.orm.tournament import Tournament, TournamentStatus as TS
from arena.services.game_policy import policy_for
from arena.services.status_engine import StatusTransitionEngine

logger = logging.getLogger(__name__)


@dataclass
class ServerStatus:
    is_online: bool
    server_name: str = ""
    map: str = "Unknown"
    current_players: int = 0
    max_players: int = 0
    error: Optional[str] = None
    checked_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ServerProbe:
    """Interface: query(ip, port) -> ServerStatus. Must not raise for unreachable servers."""

    async def query(self, ip: str, port: int) -> ServerStatus:
        raise NotImplementedError


def status_from_info(info) -> ServerStatus:
    """Map a python-a2s SourceInfo onto ServerStatus."""
    return ServerStatus(
        is_online=True,
        server_name=info.server_name,
        map=info.map_name or "Unknown",
        current_players=info.player_count,
        max_players=info.max_players,
    )


class A2SServerProbe(ServerProbe):
    """A2S_INFO query through python-a2s (handles challenges and split packets)."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def query(self, ip: str, port: int) -> ServerStatus:
        try:
            info = await a2s.ainfo((ip, int(port)), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError, a2s.BrokenMessageError, a2s.BufferExhaustedError) as e:
            logger.warning(f"[CS2] Server query failed for {ip}:{port}: {e!r}")
            return ServerStatus(is_online=False, error=str(e) or type(e).__name__)
        return status_from_info(info)


class ServerMonitor:

    def __init__(
        self,
        probe: ServerProbe,
        status_engine: StatusTransitionEngine,
        cache: Optional[TTLCache] = None,
        clock: Optional[Clock] = None
    ):
        self.probe = probe
        self.status_engine = status_engine
        self.clock = clock or SystemClock()
        self.cache = cache or TTLCache(maxsize=256, ttl_seconds=30, clock=self.clock)

    async def get_status(self, ip: str, port: int) -> ServerStatus:
        key = f"{ip}:{port}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        status = await self.probe.query(ip, port)
        status.checked_at = self.clock.now().isoformat()
        self.cache.set(key, status)
        return status

    def clear_cache(self) -> int:
        return self.cache.clear()

    async def sync_tournament(
        self,
        db: AsyncSession,
        tournament_id: int,
        admin_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Set a cs2 tournament active when its server answers, inactive otherwise."""
        tournament = await db.get(Tournament, tournament_id, populate_existing=True)
        if tournament is None:
            raise tournament_not_found(tournament_id)
        if policy_for(tournament.game_type).time_windowed:
            raise ValidationError("Only server-driven tournaments can be synced with a game server")
        if not tournament.server_ip or not tournament.server_port:
            raise ValidationError(f"Tournament {tournament_id} has no game server configured")

        server = await self.get_status(tournament.server_ip, tournament.server_port)
        target = TS.ACTIVE.value if server.is_online else TS.INACTIVE.value
        tournament = await self.status_engine.set_status(db, tournament_id, target, admin_id)
        return {"tournament": tournament.to_dict(), "server": server.to_dict()}
