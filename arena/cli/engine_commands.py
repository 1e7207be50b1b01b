"""
Engine CLI Commands

Operational entry points for the periodic jobs and the admin group trigger.
"""
import asyncio
from typing import Optional

from sqlalchemy import select

from arena.bootstrap import build_services
from arena.config.settings import Settings
from arena.core.clock import FixedClock
from arena.database import build_engine, build_session_factory, close_db, init_db
from arena.errors import APIError
from arena.orm.tournament import Tournament


class EngineCommand:
    """Engine CLI command handler."""

    def __init__(self, database_url: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or Settings.from_env()
        if database_url:
            self.settings.database_url = database_url

    def execute(self, args) -> int:
        """Execute engine command."""
        handlers = {
            "init-db": self._init_db,
            "sweep": self._sweep,
            "notify": self._notify,
            "assign-groups": self._assign_groups,
            "check-counters": self._check_counters,
        }
        handler = handlers.get(args.command)
        if handler is None:
            print(f"Error: Unknown command {args.command}")
            return 1
        try:
            return asyncio.run(self._run(handler, args))
        except APIError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 1

    async def _run(self, handler, args) -> int:
        engine = build_engine(self.settings.database_url, self.settings.sql_echo)
        session_factory = build_session_factory(engine)
        at = getattr(args, "at", None)
        services = build_services(self.settings, session_factory, clock=FixedClock(at) if at else None)
        try:
            return await handler(args, services, session_factory, engine)
        finally:
            await close_db(engine)

    async def _init_db(self, args, services, session_factory, engine) -> int:
        await init_db(engine)
        print("Tables created")
        return 0

    async def _sweep(self, args, services, session_factory, engine) -> int:
        async with session_factory() as db:
            result = await services.status_engine.sweep_statuses(db)
        print(f"Checked {result['checked_count']} tournaments, updated {result['updated_count']}")
        return 0

    async def _notify(self, args, services, session_factory, engine) -> int:
        result = await services.dispatcher.process_queued(args.batch_size)
        print(f"Sent {result['processed']}, failed {result['failed']}")
        return 0 if result["failed"] == 0 else 2

    async def _assign_groups(self, args, services, session_factory, engine) -> int:
        async with session_factory() as db:
            result = await services.lifecycle.assign_groups(db, args.id, reset_pins=args.reset_pins)
        print(f"Tournament {args.id}: {result['updated_count']} registrations updated, "
              f"{result['total_groups']} groups")
        return 0

    async def _check_counters(self, args, services, session_factory, engine) -> int:
        lifecycle = services.lifecycle
        drifted = 0
        async with session_factory() as db:
            if args.id is not None:
                ids = [args.id]
            else:
                ids = list((await db.execute(select(Tournament.id).order_by(Tournament.id))).scalars().all())

            print(f"\n{'ID':<6} {'Stored':<8} {'Actual':<8} {'OK':<4}")
            print("-" * 30)
            for tournament_id in ids:
                report = await lifecycle.counter.verify(db, tournament_id)
                print(f"{tournament_id:<6} {str(report['stored']):<8} {report['actual']:<8} "
                      f"{'yes' if report['valid'] else 'NO':<4}")
                if report["valid"]:
                    continue
                drifted += 1
                if args.fix:
                    async with lifecycle.unit_of_work(db, tournament_id):
                        tournament = await lifecycle.load_tournament(db, tournament_id)
                        await lifecycle.counter.recompute(db, tournament)

        if drifted and not args.fix:
            return 2
        return 0
