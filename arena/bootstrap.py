"""
arena/bootstrap.py
Wires the engine components together from a Settings object.

Used by the FastAPI lifespan, the CLI and the tests; collaborators
(clock, transport, blob store, probe) can be swapped per caller.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from arena.config.settings import Settings
from arena.core.clock import Clock, SystemClock
from arena.core.ttl_cache import TTLCache
from arena.services.blob_store import BlobStore, LocalBlobStore
from arena.services.events import EventSink, NullEventSink
from arena.services.notification_dispatcher import NotificationDispatcher
from arena.services.registration_lifecycle import RegistrationLifecycle
from arena.services.server_monitor import A2SServerProbe, ServerMonitor, ServerProbe
from arena.services.status_engine import StatusTransitionEngine
from arena.services.tournament_service import TournamentService
from arena.services.transports import NotificationTransport, UnconfiguredTransport, WhatsAppCloudTransport

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    clock: Clock
    status_engine: StatusTransitionEngine
    lifecycle: RegistrationLifecycle
    tournaments: TournamentService
    dispatcher: NotificationDispatcher
    server_monitor: ServerMonitor


def default_transport(settings: Settings) -> NotificationTransport:
    if settings.whatsapp_configured:
        return WhatsAppCloudTransport(
            settings.whatsapp_api_url,
            settings.whatsapp_phone_number_id,
            settings.whatsapp_access_token,
        )
    logger.warning("WhatsApp credentials missing; notifications will stay queued")
    return UnconfiguredTransport()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    clock: Optional[Clock] = None,
    transport: Optional[NotificationTransport] = None,
    blob_store: Optional[BlobStore] = None,
    probe: Optional[ServerProbe] = None
) -> Services:
    clock = clock or SystemClock()
    status_engine = StatusTransitionEngine(clock)
    dispatcher = NotificationDispatcher(
        session_factory,
        transport or default_transport(settings),
        settings,
        clock,
    )
    events: EventSink = dispatcher if settings.flags.is_enabled("FEATURE_NOTIFICATIONS") else NullEventSink()
    lifecycle = RegistrationLifecycle(
        settings=settings,
        clock=clock,
        blob_store=blob_store or LocalBlobStore(settings.blob_storage_dir, settings.blob_base_url),
        events=events,
        status_engine=status_engine,
    )
    server_monitor = ServerMonitor(
        probe or A2SServerProbe(),
        status_engine,
        cache=TTLCache(
            maxsize=settings.server_status_cache_size,
            ttl_seconds=settings.server_status_cache_ttl_seconds,
            clock=clock,
        ),
        clock=clock,
    )
    return Services(
        settings=settings,
        clock=clock,
        status_engine=status_engine,
        lifecycle=lifecycle,
        tournaments=TournamentService(lifecycle),
        dispatcher=dispatcher,
        server_monitor=server_monitor,
    )
