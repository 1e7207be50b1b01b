"""
Group partition of active registrations.
"""
from collections import Counter

import pytest
from sqlalchemy import select

from arena.errors import ValidationError
from arena.orm.registration import Registration
from arena.services import registration_queries
from arena.services.group_assignment import is_valid_group_label, label_for_position, partition_labels
from arena.tests.conftest import make_team, tournament_data


class TestLabels:
    """Pure labelling functions."""

    def test_label_for_position(self):
        assert label_for_position(0, 20) == "G1"
        assert label_for_position(19, 20) == "G1"
        assert label_for_position(20, 20) == "G2"
        assert label_for_position(44, 20) == "G3"

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            label_for_position(-1, 20)
        with pytest.raises(ValueError):
            label_for_position(0, 0)

    @pytest.mark.parametrize("count,size", [(0, 5), (1, 5), (5, 5), (6, 5), (45, 20), (99, 7)])
    def test_partition_shape(self, count, size):
        labels = partition_labels(count, size)
        sizes = Counter(labels)
        groups = -(-count // size)
        assert len(sizes) == groups
        for index in range(1, groups):
            assert sizes[f"G{index}"] == size
        if groups:
            assert 1 <= sizes[f"G{groups}"] <= size
        assert labels == sorted(labels, key=lambda label: int(label[1:]))

    def test_label_format(self):
        assert is_valid_group_label("G1")
        assert is_valid_group_label("G12")
        assert not is_valid_group_label("G0")
        assert not is_valid_group_label("g1")
        assert not is_valid_group_label("")


async def submit_many(db, lifecycle, clock, tournament_id, count):
    ids = []
    for i in range(count):
        clock.advance(seconds=1)
        registration = await lifecycle.submit(db, tournament_id, f"user-{i}", make_team(f"p{i}"))
        ids.append(registration.id)
    return ids


async def labels_by_id(db, tournament_id):
    result = await db.execute(
        select(Registration.id, Registration.group_label)
        .where(Registration.tournament_id == tournament_id)
        .order_by(Registration.registered_at, Registration.id)
    )
    return {row.id: row.group_label for row in result}


class TestGroupAssignment:
    """Recompute through the lifecycle."""

    async def test_forty_five_verified_teams(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=20))
        ids = await submit_many(db, lifecycle, clock, t.id, 45)
        for registration_id in ids:
            await lifecycle.verify(db, registration_id, "admin-1")

        result = await lifecycle.assign_groups(db, t.id)
        assert result["total_groups"] == 3

        labels = await labels_by_id(db, t.id)
        assert [labels[i] for i in ids] == ["G1"] * 20 + ["G2"] * 20 + ["G3"] * 5

    async def test_assign_is_idempotent(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        await submit_many(db, lifecycle, clock, t.id, 7)

        result = await lifecycle.assign_groups(db, t.id)
        assert result == {"updated_count": 0, "total_groups": 2}

    async def test_cancel_closes_the_gap(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        ids = await submit_many(db, lifecycle, clock, t.id, 6)
        labels = await labels_by_id(db, t.id)
        assert labels[ids[5]] == "G2"

        await lifecycle.cancel(db, ids[0], "user-0")

        labels = await labels_by_id(db, t.id)
        assert set(labels.values()) == {"G1"}

    async def test_rejected_team_leaves_its_group(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        ids = await submit_many(db, lifecycle, clock, t.id, 3)

        await lifecycle.reject(db, ids[1], "admin-1", "Wrong player IDs")

        labels = await labels_by_id(db, t.id)
        assert labels[ids[1]] is None
        assert labels[ids[2]] == "G1"

    async def test_assign_enables_grouping(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data())
        tournament_id = t.id
        ids = await submit_many(db, lifecycle, clock, tournament_id, 2)
        assert (await labels_by_id(db, tournament_id))[ids[0]] is None

        result = await lifecycle.assign_groups(db, tournament_id)
        assert result["total_groups"] == 1
        assert t.grouping_enabled is True

    async def test_grouping_disabled_is_noop(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data())
        ids = await submit_many(db, lifecycle, clock, t.id, 2)
        await lifecycle.verify(db, ids[0], "admin-1")
        assert set((await labels_by_id(db, t.id)).values()) == {None}

    async def test_disabling_grouping_clears_labels_and_pins(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        tournament_id = t.id
        ids = await submit_many(db, lifecycle, clock, tournament_id, 3)
        await lifecycle.verify(db, ids[0], "admin-1")
        await lifecycle.pin_group(db, ids[1], "admin-1", "G3")
        assert set((await labels_by_id(db, tournament_id)).values()) == {"G1", "G3"}

        result = await tournaments.update_grouping(db, tournament_id, False)
        assert result["updated_count"] == 3
        assert result["total_groups"] == 0
        assert set((await labels_by_id(db, tournament_id)).values()) == {None}

        pinned = await db.execute(
            select(Registration.id).where(
                Registration.tournament_id == tournament_id,
                Registration.group_pinned.is_(True)
            )
        )
        assert pinned.scalars().all() == []

        teams = await registration_queries.list_verified_teams(db, tournament_id)
        assert [team["group"] for team in teams] == [None]

        again = await tournaments.update_grouping(db, tournament_id, False)
        assert again["updated_count"] == 0


class TestPinnedGroups:
    """Manual placement survives automatic recompute until pins are reset."""

    async def test_pin_is_sticky(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        tournament_id = t.id
        ids = await submit_many(db, lifecycle, clock, tournament_id, 6)

        pinned = await lifecycle.pin_group(db, ids[0], "admin-1", "G4")
        assert pinned.group_pinned is True

        labels = await labels_by_id(db, tournament_id)
        assert labels[ids[0]] == "G4"
        assert [labels[i] for i in ids[1:]] == ["G1"] * 5

        result = await lifecycle.assign_groups(db, tournament_id)
        assert result["updated_count"] == 0
        assert (await labels_by_id(db, tournament_id))[ids[0]] == "G4"

        result = await lifecycle.assign_groups(db, tournament_id, reset_pins=True)
        labels = await labels_by_id(db, tournament_id)
        assert labels[ids[0]] == "G1"
        assert labels[ids[5]] == "G2"
        assert result["total_groups"] == 2

    async def test_unpin_rejoins_partition(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        tournament_id = t.id
        ids = await submit_many(db, lifecycle, clock, tournament_id, 3)
        await lifecycle.pin_group(db, ids[2], "admin-1", "G2")

        registration = await lifecycle.unpin_group(db, ids[2], "admin-1")
        assert registration.group_pinned is False
        assert set((await labels_by_id(db, tournament_id)).values()) == {"G1"}

    async def test_pin_requires_grouping(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data())
        ids = await submit_many(db, lifecycle, clock, t.id, 1)
        with pytest.raises(ValidationError):
            await lifecycle.pin_group(db, ids[0], "admin-1", "G1")

    async def test_pin_requires_active_registration(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        ids = await submit_many(db, lifecycle, clock, t.id, 1)
        await lifecycle.reject(db, ids[0], "admin-1", "Wrong player IDs")
        with pytest.raises(ValidationError):
            await lifecycle.pin_group(db, ids[0], "admin-1", "G1")

    async def test_bad_label(self, db, lifecycle, tournaments, clock):
        t = await tournaments.create_tournament(db, tournament_data(grouping_enabled=True, group_size=5))
        ids = await submit_many(db, lifecycle, clock, t.id, 1)
        with pytest.raises(ValidationError):
            await lifecycle.pin_group(db, ids[0], "admin-1", "Group A")
