"""
Per-game-type policy table.
"""
from datetime import timedelta
from types import SimpleNamespace

import pytest

from arena.errors import ErrorCode, IllegalStatusForGameType, ValidationError
from arena.services.game_policy import POLICIES, policy_for
from arena.tests.conftest import NOW


class TestGamePolicy:

    def test_every_game_type_has_a_policy(self):
        assert set(POLICIES) == {"bgmi", "cs2", "valorant", "freefire"}

    def test_unknown_game_type(self):
        with pytest.raises(ValidationError) as exc:
            policy_for("chess")
        assert exc.value.code == ErrorCode.INVALID_GAME_TYPE

    @pytest.mark.parametrize("game_type", ["bgmi", "valorant", "freefire"])
    def test_window_games_reject_server_statuses(self, game_type):
        policy = policy_for(game_type)
        assert policy.time_windowed
        with pytest.raises(IllegalStatusForGameType):
            policy.require_legal_status("inactive")

    def test_cs2_only_active_inactive(self):
        policy = policy_for("cs2")
        assert policy.allowed_statuses == {"active", "inactive"}
        assert policy.initial_status == "active"
        for value in ("upcoming", "registration_open", "completed", "cancelled"):
            assert not policy.is_legal_status(value)

    def test_identifier_labels(self):
        assert policy_for("bgmi").identifier_label == "BGMI ID"
        assert policy_for("cs2").identifier_label == "Steam ID"

    def test_registration_open_respects_deadline_and_capacity(self):
        policy = policy_for("bgmi")
        t = SimpleNamespace(
            status="registration_open",
            registration_deadline=NOW + timedelta(hours=1),
            current_participants=3,
            max_participants=4,
        )
        assert policy.is_registration_open(t, NOW)
        assert not policy.is_registration_open(t, NOW + timedelta(hours=1))
        t.current_participants = 4
        assert not policy.is_registration_open(t, NOW)

    def test_cs2_registration_follows_server_status(self):
        policy = policy_for("cs2")
        assert policy.is_registration_open(SimpleNamespace(status="active"), NOW)
        assert not policy.is_registration_open(SimpleNamespace(status="inactive"), NOW)
