"""
Shared fixtures: a throwaway SQLite file per test, a controllable clock and
in-memory fakes for the blob store, event sink and notification transport.
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from arena.config.feature_flags import FeatureFlags
from arena.config.settings import Settings
from arena.core.clock import FixedClock
from arena.database import build_engine, build_session_factory, close_db, init_db
from arena.services.blob_store import BlobRef, BlobStore
from arena.services.events import EventSink, LifecycleEvent
from arena.services.registration_lifecycle import RegistrationLifecycle
from arena.services.status_engine import StatusTransitionEngine
from arena.services.tournament_service import TournamentService
from arena.services.transports import DeliveryResult, NotificationTransport

NOW = datetime(2026, 3, 1, 12, 0, 0)


class MemoryBlobStore(BlobStore):

    def __init__(self):
        self.blobs = {}
        self.deleted: List[str] = []
        self._seq = 0

    async def store(self, data: bytes, content_type: str = "image/jpeg") -> BlobRef:
        self._seq += 1
        ref = f"verification/blob-{self._seq}.jpg"
        self.blobs[ref] = data
        return BlobRef(url=f"/uploads/{ref}", ref=ref)

    async def delete(self, ref: str) -> None:
        self.blobs.pop(ref, None)
        self.deleted.append(ref)

    def blob(self) -> BlobRef:
        """A stored-looking reference without going through store()."""
        self._seq += 1
        ref = f"verification/blob-{self._seq}.jpg"
        self.blobs[ref] = b"img"
        return BlobRef(url=f"/uploads/{ref}", ref=ref)


class RecordingEventSink(EventSink):

    def __init__(self):
        self.events: List[LifecycleEvent] = []

    async def publish(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.event_type for e in self.events]


class FakeTransport(NotificationTransport):
    """Fails the first ``failures`` sends, then succeeds."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.sent = []

    async def send(self, template: str, recipient: str, params: List[str]) -> DeliveryResult:
        self.sent.append((template, recipient, params))
        if self.failures > 0:
            self.failures -= 1
            return DeliveryResult(success=False, error="upstream unavailable")
        return DeliveryResult(success=True, delivery_id=f"wamid.{len(self.sent)}")


def make_team(prefix: str = "p", substitute: bool = False, team_name: str = None) -> dict:
    members = [
        {"name": f"Member {i}", "player_id": f"{prefix}-m{i}"}
        for i in range(1, 4)
    ]
    if substitute:
        members.append({"name": "Sub Player", "player_id": f"{prefix}-sub", "is_substitute": True})
    return {
        "team_name": team_name or f"Team {prefix}",
        "team_leader": {"name": "Leader", "player_id": f"{prefix}-lead", "phone": "9876543210"},
        "team_members": members,
        "contact_number": "9876543210",
    }


def tournament_data(game_type: str = "bgmi", **overrides) -> dict:
    data = {
        "name": "Spring Cup",
        "game_type": game_type,
        "max_participants": 100,
    }
    if game_type != "cs2":
        data.update(
            registration_deadline=NOW + timedelta(days=2),
            start_date=NOW + timedelta(days=3),
            end_date=NOW + timedelta(days=4),
        )
    data.update(overrides)
    return data


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'arena_test.db'}",
        blob_storage_dir=str(tmp_path / "uploads"),
        flags=FeatureFlags(status_sweep=False, notifications=True, immediate_delivery=False),
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = build_engine(settings.database_url)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def lifecycle(settings, clock, blob_store, events) -> RegistrationLifecycle:
    return RegistrationLifecycle(
        settings=settings,
        clock=clock,
        blob_store=blob_store,
        events=events,
        status_engine=StatusTransitionEngine(clock),
    )


@pytest.fixture
def tournaments(lifecycle) -> TournamentService:
    return TournamentService(lifecycle)


@pytest_asyncio.fixture
async def tournament(db, tournaments):
    """An open bgmi tournament (deadline two days out)."""
    t = await tournaments.create_tournament(db, tournament_data())
    assert t.status == "registration_open"
    return t


async def fill_images(db, lifecycle, blob_store, registration_id: int, count: int = 8, user_id: str = None):
    """Attach ``count`` images in slot order."""
    keys = [(slot, n) for slot in ("leader", "member1", "member2", "member3") for n in (1, 2)]
    registration = None
    for slot, n in keys[:count]:
        registration = await lifecycle.attach_image(
            db, registration_id, slot, n, blob_store.blob(), user_id=user_id
        )
    return registration
