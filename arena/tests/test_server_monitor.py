"""
cs2 server probing: the A2S query client, the status cache and tournament sync.
"""
import asyncio
from types import SimpleNamespace

import a2s
import pytest

from arena.core.ttl_cache import TTLCache
from arena.errors import ValidationError
from arena.services.server_monitor import A2SServerProbe, ServerMonitor, ServerProbe, ServerStatus
from arena.tests.conftest import tournament_data


class StubProbe(ServerProbe):

    def __init__(self, online=True):
        self.online = online
        self.calls = 0

    async def query(self, ip, port):
        self.calls += 1
        if not self.online:
            return ServerStatus(is_online=False, error="timed out")
        return ServerStatus(is_online=True, server_name="Arena", map="de_mirage", current_players=3, max_players=10)


@pytest.fixture
def probe():
    return StubProbe()


@pytest.fixture
def monitor(probe, lifecycle, clock):
    return ServerMonitor(probe, lifecycle.status_engine, TTLCache(ttl_seconds=30, clock=clock), clock)


class TestA2SServerProbe:

    async def test_maps_source_info(self, monkeypatch):
        queried = []

        async def fake_ainfo(address, timeout):
            queried.append((address, timeout))
            return SimpleNamespace(
                server_name="Arena #1", map_name="de_dust2", player_count=7, max_players=10
            )

        monkeypatch.setattr(a2s, "ainfo", fake_ainfo)
        status = await A2SServerProbe(timeout=2.0).query("10.0.0.5", "27015")

        assert queried == [(("10.0.0.5", 27015), 2.0)]
        assert status.is_online is True
        assert status.server_name == "Arena #1"
        assert status.map == "de_dust2"
        assert status.current_players == 7
        assert status.max_players == 10

    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        ConnectionRefusedError("refused"),
        a2s.BrokenMessageError("bad packet"),
    ])
    async def test_unreachable_server_is_offline(self, monkeypatch, error):
        async def fake_ainfo(address, timeout):
            raise error

        monkeypatch.setattr(a2s, "ainfo", fake_ainfo)
        status = await A2SServerProbe().query("10.0.0.5", 27015)

        assert status.is_online is False
        assert status.error


class TestServerMonitor:

    async def test_status_is_cached(self, monitor, probe, clock):
        first = await monitor.get_status("10.0.0.5", 27015)
        second = await monitor.get_status("10.0.0.5", 27015)
        assert first is second
        assert probe.calls == 1
        assert first.checked_at == clock.now().isoformat()

        clock.advance(seconds=30)
        await monitor.get_status("10.0.0.5", 27015)
        assert probe.calls == 2

    async def test_clear_cache(self, monitor, probe):
        await monitor.get_status("10.0.0.5", 27015)
        await monitor.get_status("10.0.0.6", 27015)
        assert monitor.clear_cache() == 2
        await monitor.get_status("10.0.0.5", 27015)
        assert probe.calls == 3

    async def test_sync_sets_inactive_when_offline(self, db, monitor, probe, tournaments):
        t = await tournaments.create_tournament(db, tournament_data("cs2", server_ip="10.0.0.5", server_port=27015))
        probe.online = False

        result = await monitor.sync_tournament(db, t.id, "admin-1")
        assert result["tournament"]["status"] == "inactive"
        assert result["server"]["is_online"] is False

    async def test_sync_only_for_server_games(self, db, monitor, tournament):
        with pytest.raises(ValidationError):
            await monitor.sync_tournament(db, tournament.id)

    async def test_sync_needs_server(self, db, monitor, tournaments):
        t = await tournaments.create_tournament(db, tournament_data("cs2"))
        with pytest.raises(ValidationError):
            await monitor.sync_tournament(db, t.id)
