"""
Registration lifecycle: submission checks, the photo quota, admin review,
cancellation, and the participant counter staying in step with all of it.
"""
import asyncio
import random

import pytest
from sqlalchemy import select

from arena.errors import (
    CapacityExceeded,
    DuplicateIdentifier,
    DuplicateRegistration,
    ErrorCode,
    Forbidden,
    InvalidTransition,
    NotFound,
    RegistrationClosed,
    ValidationError,
)
from arena.orm.registration import Registration
from arena.services.registration_lifecycle import NOT_VERIFIED_REASON
from arena.tests.conftest import fill_images, make_team, tournament_data


async def assert_counter_consistent(db, lifecycle, tournament_id):
    report = await lifecycle.counter.verify(db, tournament_id)
    assert report["valid"], report
    return report["actual"]


class TestSubmit:
    """Team submission and its ordered checks."""

    async def test_submit_creates_pending_registration(self, db, lifecycle, tournament, events):
        registration = await lifecycle.submit(db, tournament.id, "user-1", make_team("a", substitute=True))

        assert registration.status == "pending"
        assert registration.user_id == "user-1"
        assert registration.image_count == 0
        assert len(registration.team_members) == 4
        assert tournament.current_participants == 1
        assert events.types() == ["submitted"]
        assert events.events[0].tournament_name == "Spring Cup"

    async def test_team_needs_exactly_three_members(self, db, lifecycle, tournament):
        team = make_team("a")
        team["team_members"] = team["team_members"][:2]
        with pytest.raises(ValidationError) as exc:
            await lifecycle.submit(db, tournament.id, "user-1", team)
        assert exc.value.code == ErrorCode.INVALID_TEAM_SIZE

    async def test_only_one_substitute(self, db, lifecycle, tournament):
        team = make_team("a", substitute=True)
        team["team_members"].append({"name": "Second Sub", "player_id": "a-sub2", "is_substitute": True})
        with pytest.raises(ValidationError) as exc:
            await lifecycle.submit(db, tournament.id, "user-1", team)
        assert exc.value.code == ErrorCode.TOO_MANY_SUBSTITUTES

    async def test_player_ids_unique_case_insensitive(self, db, lifecycle, tournament):
        team = make_team("a")
        team["team_members"][2]["player_id"] = "A-LEAD"
        with pytest.raises(DuplicateIdentifier) as exc:
            await lifecycle.submit(db, tournament.id, "user-1", team)
        assert "BGMI ID" in exc.value.message

    async def test_malformed_payload(self, db, lifecycle, tournament):
        team = make_team("a")
        team["contact_number"] = "12345"
        with pytest.raises(ValidationError) as exc:
            await lifecycle.submit(db, tournament.id, "user-1", team)
        assert exc.value.details["errors"][0]["field"] == "contact_number"

    async def test_unknown_tournament(self, db, lifecycle):
        with pytest.raises(NotFound) as exc:
            await lifecycle.submit(db, 4242, "user-1", make_team())
        assert exc.value.code == ErrorCode.TOURNAMENT_NOT_FOUND

    async def test_duplicate_registration(self, db, lifecycle, tournament):
        tournament_id = tournament.id
        await lifecycle.submit(db, tournament_id, "user-1", make_team("a"))
        with pytest.raises(DuplicateRegistration):
            await lifecycle.submit(db, tournament_id, "user-1", make_team("b"))
        assert await assert_counter_consistent(db, lifecycle, tournament_id) == 1

    async def test_closed_after_deadline(self, db, lifecycle, tournament, clock):
        clock.advance(days=2)
        with pytest.raises(RegistrationClosed):
            await lifecycle.submit(db, tournament.id, "user-1", make_team())

    async def test_cs2_registration_follows_server_status(self, db, lifecycle, tournaments):
        t = await tournaments.create_tournament(db, tournament_data("cs2"))
        await lifecycle.submit(db, t.id, "user-1", make_team("a"))

        await lifecycle.status_engine.set_status(db, t.id, "inactive", "admin-1")
        with pytest.raises(RegistrationClosed):
            await lifecycle.submit(db, t.id, "user-2", make_team("b"))

    async def test_capacity_scenario(self, db, lifecycle, tournaments):
        """Two slots: two submissions succeed, the third is refused."""
        t = await tournaments.create_tournament(db, tournament_data(max_participants=2))
        tournament_id = t.id
        await lifecycle.submit(db, tournament_id, "user-1", make_team("a"))
        await lifecycle.submit(db, tournament_id, "user-2", make_team("b"))

        with pytest.raises(CapacityExceeded):
            await lifecycle.submit(db, tournament_id, "user-3", make_team("c"))
        assert await assert_counter_consistent(db, lifecycle, tournament_id) == 2


class TestConcurrentSubmit:
    """Parallel submissions through independent sessions."""

    async def _submit(self, session_factory, lifecycle, tournament_id, user_id, prefix):
        async with session_factory() as session:
            return await lifecycle.submit(session, tournament_id, user_id, make_team(prefix))

    async def test_parallel_submissions_never_overfill(self, db, session_factory, lifecycle, tournaments):
        t = await tournaments.create_tournament(db, tournament_data(max_participants=2))

        results = await asyncio.gather(*[
            self._submit(session_factory, lifecycle, t.id, f"user-{i}", f"p{i}")
            for i in range(5)
        ], return_exceptions=True)

        succeeded = [r for r in results if isinstance(r, Registration)]
        refused = [r for r in results if isinstance(r, CapacityExceeded)]
        assert len(succeeded) == 2
        assert len(refused) == 3

        async with session_factory() as session:
            assert await assert_counter_consistent(session, lifecycle, t.id) == 2

    async def test_parallel_duplicate_submissions(self, db, session_factory, lifecycle, tournament):
        results = await asyncio.gather(*[
            self._submit(session_factory, lifecycle, tournament.id, "same-user", f"p{i}")
            for i in range(3)
        ], return_exceptions=True)

        assert sum(isinstance(r, Registration) for r in results) == 1
        assert sum(isinstance(r, DuplicateRegistration) for r in results) == 2


class TestImageQuota:
    """Eight images, one per (slot, image_number)."""

    @pytest.fixture
    async def registration(self, db, lifecycle, tournament):
        return await lifecycle.submit(db, tournament.id, "user-1", make_team("a"))

    async def test_eight_images_then_one_removed(self, db, lifecycle, blob_store, registration):
        registration = await fill_images(db, lifecycle, blob_store, registration.id, count=7)
        assert registration.status == "pending"

        registration = await lifecycle.attach_image(db, registration.id, "member3", 2, blob_store.blob())
        assert registration.image_count == 8
        assert registration.status == "images_uploaded"

        image_id = registration.images[0].id
        registration = await lifecycle.detach_image(db, registration.id, image_id)
        assert registration.image_count == 7
        assert registration.status == "pending"

    async def test_same_key_replaces(self, db, lifecycle, blob_store, registration):
        first = blob_store.blob()
        second = blob_store.blob()
        await lifecycle.attach_image(db, registration.id, "leader", 1, first)
        registration = await lifecycle.attach_image(db, registration.id, "leader", 1, second)

        assert registration.image_count == 1
        assert registration.images[0].url == second.url
        assert first.ref in blob_store.deleted

    async def test_invalid_slot_and_number(self, db, lifecycle, blob_store, registration):
        with pytest.raises(ValidationError):
            await lifecycle.attach_image(db, registration.id, "coach", 1, blob_store.blob())
        with pytest.raises(ValidationError):
            await lifecycle.attach_image(db, registration.id, "leader", 3, blob_store.blob())

    async def test_only_owner_may_upload(self, db, lifecycle, blob_store, registration):
        with pytest.raises(Forbidden):
            await lifecycle.attach_image(db, registration.id, "leader", 1, blob_store.blob(), user_id="intruder")

    async def test_images_frozen_after_review(self, db, lifecycle, blob_store, registration):
        await lifecycle.verify(db, registration.id, "admin-1")
        with pytest.raises(InvalidTransition):
            await lifecycle.attach_image(db, registration.id, "leader", 1, blob_store.blob())

    async def test_failed_upload_releases_new_blob(self, db, lifecycle, blob_store, registration):
        await lifecycle.verify(db, registration.id, "admin-1")
        with pytest.raises(InvalidTransition):
            await lifecycle.upload_image(db, registration.id, "leader", 1, b"jpeg-bytes")
        assert blob_store.deleted == ["verification/blob-1.jpg"]
        assert blob_store.blobs == {}

    async def test_detach_unknown_image(self, db, lifecycle, registration):
        with pytest.raises(NotFound) as exc:
            await lifecycle.detach_image(db, registration.id, 999)
        assert exc.value.code == ErrorCode.IMAGE_NOT_FOUND


class TestAdminReview:
    """Verify, reject, overrides and reopen."""

    @pytest.fixture
    async def registration(self, db, lifecycle, tournament):
        return await lifecycle.submit(db, tournament.id, "user-1", make_team("a"))

    async def test_verify(self, db, lifecycle, registration, tournament, events, clock):
        registration = await lifecycle.verify(db, registration.id, "admin-1")
        assert registration.status == "verified"
        assert registration.verified_by == "admin-1"
        assert registration.verified_at == clock.now()
        assert tournament.current_participants == 1
        assert events.types() == ["submitted", "verified"]

    async def test_verify_twice_is_noop(self, db, lifecycle, registration, events):
        await lifecycle.verify(db, registration.id, "admin-1")
        await lifecycle.verify(db, registration.id, "admin-2")
        assert events.types() == ["submitted", "verified"]

    async def test_reject_frees_slot(self, db, lifecycle, registration, tournament, events):
        registration = await lifecycle.reject(db, registration.id, "admin-1", "Blurry screenshots")
        assert registration.status == "rejected"
        assert registration.rejection_reason == "Blurry screenshots"
        assert await assert_counter_consistent(db, lifecycle, tournament.id) == 0
        assert events.events[-1].reason == "Blurry screenshots"

    async def test_reject_requires_reason(self, db, lifecycle, registration):
        with pytest.raises(ValidationError) as exc:
            await lifecycle.reject(db, registration.id, "admin-1", "no")
        assert exc.value.code == ErrorCode.REJECTION_REASON_REQUIRED

    async def test_reject_again_updates_reason(self, db, lifecycle, registration, events):
        await lifecycle.reject(db, registration.id, "admin-1", "Wrong player IDs")
        registration = await lifecycle.reject(db, registration.id, "admin-1", "Wrong player IDs and photos")
        assert registration.rejection_reason == "Wrong player IDs and photos"
        assert events.types().count("rejected") == 1

    async def test_not_verified(self, db, lifecycle, registration):
        registration = await lifecycle.mark_not_verified(db, registration.id, "admin-1")
        assert registration.status == "rejected"
        assert registration.rejection_reason == NOT_VERIFIED_REASON

    async def test_terminal_needs_override(self, db, lifecycle, registration, tournament):
        registration_id, tournament_id = registration.id, tournament.id
        await lifecycle.reject(db, registration_id, "admin-1", "Wrong player IDs")
        with pytest.raises(InvalidTransition):
            await lifecycle.verify(db, registration_id, "admin-1")

        registration = await lifecycle.verify(db, registration_id, "admin-1", override=True)
        assert registration.status == "verified"
        assert registration.rejection_reason is None
        assert await assert_counter_consistent(db, lifecycle, tournament_id) == 1

    async def test_override_respects_capacity(self, db, lifecycle, tournaments):
        t = await tournaments.create_tournament(db, tournament_data(max_participants=2))
        first = await lifecycle.submit(db, t.id, "user-1", make_team("a"))
        await lifecycle.submit(db, t.id, "user-2", make_team("b"))
        await lifecycle.reject(db, first.id, "admin-1", "Wrong player IDs")
        await lifecycle.submit(db, t.id, "user-3", make_team("c"))

        with pytest.raises(CapacityExceeded):
            await lifecycle.verify(db, first.id, "admin-1", override=True)

    async def test_reopen(self, db, lifecycle, blob_store, registration):
        await fill_images(db, lifecycle, blob_store, registration.id)
        await lifecycle.verify(db, registration.id, "admin-1")

        registration = await lifecycle.reopen(db, registration.id, "admin-1")
        assert registration.status == "images_uploaded"
        assert registration.verified_by is None

    async def test_reopen_requires_terminal(self, db, lifecycle, registration):
        with pytest.raises(InvalidTransition):
            await lifecycle.reopen(db, registration.id, "admin-1")

    async def test_update_team(self, db, lifecycle, registration):
        team = make_team("z", team_name="Renamed Squad")
        registration = await lifecycle.update_team(db, registration.id, "admin-1", team)
        assert registration.team_name == "Renamed Squad"
        assert registration.leader_player_id == "z-lead"


class TestRemoval:
    """Self-service cancel and admin force delete."""

    async def test_cancel_pending(self, db, lifecycle, blob_store, tournament):
        registration = await lifecycle.submit(db, tournament.id, "user-1", make_team("a"))
        await fill_images(db, lifecycle, blob_store, registration.id, count=2)

        result = await lifecycle.cancel(db, registration.id, "user-1")
        assert result["deleted"] is True
        assert result["current_participants"] == 0
        assert len(blob_store.deleted) == 2

        remaining = await db.execute(select(Registration).where(Registration.id == registration.id))
        assert remaining.scalar_one_or_none() is None

    async def test_cancel_someone_elses(self, db, lifecycle, tournament):
        registration = await lifecycle.submit(db, tournament.id, "user-1", make_team("a"))
        with pytest.raises(Forbidden):
            await lifecycle.cancel(db, registration.id, "user-2")

    async def test_cancel_after_review(self, db, lifecycle, tournament):
        registration = await lifecycle.submit(db, tournament.id, "user-1", make_team("a"))
        await lifecycle.verify(db, registration.id, "admin-1")
        with pytest.raises(InvalidTransition):
            await lifecycle.cancel(db, registration.id, "user-1")

    async def test_force_delete_verified(self, db, lifecycle, tournament):
        registration = await lifecycle.submit(db, tournament.id, "user-1", make_team("a"))
        await lifecycle.verify(db, registration.id, "admin-1")

        result = await lifecycle.force_delete(db, registration.id, "admin-1")
        assert result["current_participants"] == 0
        with pytest.raises(NotFound):
            await lifecycle.force_delete(db, registration.id, "admin-1")


class TestCounterInvariant:
    """The stored counter equals the active count after any operation sequence."""

    async def test_random_operation_sequence(self, db, lifecycle, tournaments):
        t = await tournaments.create_tournament(db, tournament_data(max_participants=6))
        tournament_id = t.id
        rng = random.Random(20260301)
        live = []
        next_user = 0

        for _ in range(60):
            action = rng.choice(["submit", "submit", "verify", "reject", "cancel", "reopen"])
            try:
                if action == "submit":
                    next_user += 1
                    registration = await lifecycle.submit(
                        db, tournament_id, f"user-{next_user}", make_team(f"p{next_user}")
                    )
                    live.append(registration.id)
                elif live:
                    registration_id = rng.choice(live)
                    if action == "verify":
                        await lifecycle.verify(db, registration_id, "admin-1", override=True)
                    elif action == "reject":
                        await lifecycle.reject(db, registration_id, "admin-1", "Random rejection", override=True)
                    elif action == "reopen":
                        await lifecycle.reopen(db, registration_id, "admin-1")
                    else:
                        await lifecycle.force_delete(db, registration_id, "admin-1")
                        live.remove(registration_id)
            except (CapacityExceeded, InvalidTransition):
                pass

            actual = await assert_counter_consistent(db, lifecycle, tournament_id)
            assert 0 <= actual <= 6
