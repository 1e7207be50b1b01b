"""
Lifecycle events emitted by the registration lifecycle after commit.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecycleEvent:
    event_type: str
    registration_id: int
    tournament_id: int
    tournament_name: str
    team_name: str
    recipient: str
    reason: Optional[str] = None

    def params(self) -> Dict[str, Any]:
        data = {
            "team_name": self.team_name,
            "tournament_name": self.tournament_name,
        }
        if self.reason:
            data["reason"] = self.reason
        return data

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventSink:
    """Interface: receives lifecycle events. Must not raise into the caller."""

    async def publish(self, event: LifecycleEvent) -> None:
        raise NotImplementedError


class NullEventSink(EventSink):
    """Used when notifications are switched off."""

    async def publish(self, event: LifecycleEvent) -> None:
        logger.debug(f"[EVENT] Dropped {event.event_type} for registration {event.registration_id}")
