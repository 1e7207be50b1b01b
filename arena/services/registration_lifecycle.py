"""
Registration Lifecycle Service

Owns every team registration transition: submission, the eight-image photo
quota, admin verification and rejection, cancellation and the admin
overrides. Each operation runs as one unit of work inside the tournament's
critical section:

    validate → persist → ParticipantCounter.recompute
             → GroupAssignment.recompute (grouping enabled) → commit
             → emit lifecycle event (fire-and-forget)

Capacity is enforced by the check-and-insert inside the critical section;
the counter compare-and-swap afterwards catches writers outside this process.
Blob releases and notifications happen only after commit, so a rolled back
operation never loses an image or announces a change that did not happen.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arena.config.settings import Settings
from arena.core.clock import Clock, SystemClock
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
    registration_not_found,
    tournament_not_found,
)
from arena.orm.notification import EventType
from arena.orm.registration import (
    IMAGE_NUMBERS,
    REQUIRED_IMAGE_COUNT,
    ImageSlot,
    Registration,
    RegistrationImage,
)
from arena.orm.tournament import Tournament
from arena.schemas.registration import TeamIn
from arena.services.blob_store import BlobRef, BlobStore
from arena.services.events import EventSink, LifecycleEvent, NullEventSink
from arena.services.game_policy import policy_for
from arena.services.group_assignment import GroupAssignment, is_valid_group_label
from arena.services.participant_counter import ParticipantCounter, count_active_registrations
from arena.services.status_engine import StatusTransitionEngine
from arena.services.tournament_locks import TournamentLockRegistry
from arena.state_machines import registration_state as rsm

logger = logging.getLogger(__name__)

NOT_VERIFIED_REASON = "Not Verified by Admin"
REQUIRED_MEMBERS = 3
MAX_SUBSTITUTES = 1


def parse_team(team: Union[TeamIn, Dict[str, Any]]) -> TeamIn:
    """Coerce a raw payload into TeamIn, mapping pydantic errors to ValidationError."""
    if isinstance(team, TeamIn):
        return team
    try:
        return TeamIn.model_validate(team)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid team details", details={"errors": errors}) from None


def validate_team_composition(team: TeamIn, identifier_label: str) -> None:
    """
    Team shape rules: one leader, exactly three regular members, at most one
    substitute, and player identifiers unique across the whole team.
    """
    substitutes = team.substitutes()
    if len(substitutes) > MAX_SUBSTITUTES:
        raise ValidationError(
            f"Only {MAX_SUBSTITUTES} substitute player is allowed",
            code=ErrorCode.TOO_MANY_SUBSTITUTES
        )
    regulars = len(team.team_members) - len(substitutes)
    if regulars != REQUIRED_MEMBERS:
        raise ValidationError(
            f"Team must have exactly {REQUIRED_MEMBERS} members besides the leader "
            f"(plus an optional substitute), got {regulars}",
            code=ErrorCode.INVALID_TEAM_SIZE
        )

    seen = set()
    duplicates = set()
    for player_id in team.player_ids():
        key = player_id.strip().lower()
        if key in seen:
            duplicates.add(player_id)
        seen.add(key)
    if duplicates:
        raise DuplicateIdentifier(identifier_label, duplicates)


def validate_image_key(slot: str, image_number: int) -> None:
    if slot not in {s.value for s in ImageSlot}:
        raise ValidationError(
            f"Invalid player slot '{slot}'. Must be one of: {', '.join(s.value for s in ImageSlot)}"
        )
    if image_number not in IMAGE_NUMBERS:
        raise ValidationError(f"Image number must be 1 or 2, got {image_number}")


def validate_rejection_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not 5 <= len(reason) <= 200:
        raise ValidationError(
            "Rejection reason is required (5-200 characters)",
            code=ErrorCode.REJECTION_REASON_REQUIRED
        )
    return reason


class RegistrationLifecycle:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        blob_store: Optional[BlobStore] = None,
        events: Optional[EventSink] = None,
        status_engine: Optional[StatusTransitionEngine] = None,
        counter: Optional[ParticipantCounter] = None,
        groups: Optional[GroupAssignment] = None,
        locks: Optional[TournamentLockRegistry] = None
    ):
        self.settings = settings or Settings()
        self.clock = clock or SystemClock()
        self.blob_store = blob_store
        self.events = events or NullEventSink()
        self.status_engine = status_engine or StatusTransitionEngine(self.clock)
        self.counter = counter or ParticipantCounter()
        self.groups = groups or GroupAssignment()
        self.locks = locks or TournamentLockRegistry()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def unit_of_work(self, db: AsyncSession, tournament_id: int):
        """Critical section plus transaction: commit on success, rollback on any error."""
        async with self.locks.hold(tournament_id):
            try:
                yield
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def load_tournament(self, db: AsyncSession, tournament_id: int) -> Tournament:
        tournament = await db.get(Tournament, tournament_id, with_for_update=True, populate_existing=True)
        if tournament is None:
            raise tournament_not_found(tournament_id)
        return tournament

    async def _tournament_id_for(self, db: AsyncSession, registration_id: int) -> int:
        result = await db.execute(
            select(Registration.tournament_id).where(Registration.id == registration_id)
        )
        tournament_id = result.scalar_one_or_none()
        if tournament_id is None:
            raise registration_not_found(registration_id)
        return tournament_id

    async def _load_registration(self, db: AsyncSession, registration_id: int) -> Registration:
        result = await db.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        registration = result.scalar_one_or_none()
        if registration is None:
            raise registration_not_found(registration_id)
        return registration

    @staticmethod
    def _check_owner(registration: Registration, user_id: Optional[str]) -> None:
        if user_id is not None and registration.user_id != user_id:
            raise Forbidden("You can only modify your own registration")

    async def _check_capacity(self, db: AsyncSession, tournament: Tournament) -> None:
        active = await count_active_registrations(db, tournament.id)
        if active >= tournament.max_participants:
            raise CapacityExceeded(tournament.id, tournament.max_participants)

    async def _reconcile(self, db: AsyncSession, tournament: Tournament, observed: int) -> None:
        await self.counter.recompute(db, tournament, expected=observed)
        await self.groups.recompute(db, tournament)

    async def release_blobs(self, refs: Iterable[str]) -> None:
        if self.blob_store is None:
            return
        for ref in refs:
            try:
                await self.blob_store.delete(ref)
            except Exception as e:
                logger.error(f"[BLOB] Failed to release {ref}: {e}")

    async def _emit(
        self,
        event_type: EventType,
        registration: Registration,
        tournament_name: str,
        reason: Optional[str] = None
    ) -> None:
        event = LifecycleEvent(
            event_type=event_type.value,
            registration_id=registration.id,
            tournament_id=registration.tournament_id,
            tournament_name=tournament_name,
            team_name=registration.team_name,
            recipient=registration.contact_number,
            reason=reason,
        )
        try:
            await self.events.publish(event)
        except Exception:
            logger.exception(f"[EVENT] Publishing {event.event_type} for registration {registration.id} failed")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        db: AsyncSession,
        tournament_id: int,
        user_id: str,
        team: Union[TeamIn, Dict[str, Any]]
    ) -> Registration:
        """
        Register a team.

        Raises:
            ValidationError, DuplicateIdentifier: bad team payload
            NotFound: unknown tournament
            RegistrationClosed: outside the registration window
            DuplicateRegistration: user already registered for this tournament
            CapacityExceeded: no slot left
            ConcurrencyConflict: counter moved underneath (retry)
        """
        team = parse_team(team)
        if not user_id:
            raise ValidationError("user_id is required")

        logger.info(f"[SUBMIT START] tournament={tournament_id} user={user_id} team={team.team_name!r}")

        async with self.unit_of_work(db, tournament_id):
            tournament = await self.load_tournament(db, tournament_id)
            policy = policy_for(tournament.game_type)
            validate_team_composition(team, policy.identifier_label)

            now = self.clock.now()
            await self.status_engine.apply(db, tournament, now)
            if not policy.registration_window_open(tournament, now):
                raise RegistrationClosed(tournament_id, tournament.status)

            existing = await db.execute(
                select(Registration.id).where(
                    Registration.tournament_id == tournament_id,
                    Registration.user_id == user_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise DuplicateRegistration(tournament_id, user_id)

            observed = tournament.current_participants
            await self._check_capacity(db, tournament)

            registration = Registration(
                tournament_id=tournament_id,
                user_id=user_id,
                status=rsm.PENDING,
                team_name=team.team_name,
                leader_name=team.team_leader.name,
                leader_player_id=team.team_leader.player_id,
                leader_phone=team.team_leader.phone,
                team_members=team.members_as_json(),
                contact_number=team.contact_number,
                registered_at=now,
                images=[],
            )
            db.add(registration)
            try:
                await db.flush()
            except IntegrityError:
                raise DuplicateRegistration(tournament_id, user_id) from None

            await self._reconcile(db, tournament, observed)
            tournament_name = tournament.name

        logger.info(
            f"[SUBMIT SUCCESS] registration={registration.id} tournament={tournament_id} "
            f"participants={tournament.current_participants}/{tournament.max_participants}"
        )
        await self._emit(EventType.SUBMITTED, registration, tournament_name)
        return registration

    # ------------------------------------------------------------------
    # Photo quota
    # ------------------------------------------------------------------

    def _require_images_editable(self, registration: Registration, target: str) -> None:
        if registration.status not in rsm.IMAGE_EDITABLE_STATUSES:
            raise InvalidTransition(
                "registration", registration.status, target,
                hint="images can only be changed while pending or images_uploaded"
            )

    async def _apply_quota(self, db: AsyncSession, tournament_id: int, registration: Registration) -> None:
        new_status = rsm.status_for_image_count(registration.status, registration.image_count, REQUIRED_IMAGE_COUNT)
        if new_status == registration.status:
            return
        logger.info(f"[QUOTA] Registration {registration.id}: {registration.status} -> {new_status} "
                    f"({registration.image_count}/{REQUIRED_IMAGE_COUNT} images)")
        registration.status = new_status
        tournament = await self.load_tournament(db, tournament_id)
        await self.counter.recompute(db, tournament)

    async def attach_image(
        self,
        db: AsyncSession,
        registration_id: int,
        slot: str,
        image_number: int,
        blob: BlobRef,
        user_id: Optional[str] = None
    ) -> Registration:
        """Upsert the image for (slot, image_number); a replaced blob is released after commit."""
        validate_image_key(slot, image_number)
        tournament_id = await self._tournament_id_for(db, registration_id)
        released: List[str] = []

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            self._check_owner(registration, user_id)
            self._require_images_editable(registration, rsm.IMAGES_UPLOADED)

            now = self.clock.now()
            image = registration.find_image(slot, image_number)
            if image is not None:
                if image.blob_ref != blob.ref:
                    released.append(image.blob_ref)
                image.url = blob.url
                image.blob_ref = blob.ref
                image.uploaded_at = now
            else:
                registration.images.append(RegistrationImage(
                    slot=slot,
                    image_number=image_number,
                    url=blob.url,
                    blob_ref=blob.ref,
                    uploaded_at=now,
                ))
            await self._apply_quota(db, tournament_id, registration)
            await db.flush()

        await self.release_blobs(released)
        return registration

    async def upload_image(
        self,
        db: AsyncSession,
        registration_id: int,
        slot: str,
        image_number: int,
        data: bytes,
        content_type: str = "image/jpeg",
        user_id: Optional[str] = None
    ) -> Registration:
        """Store the bytes in the blob store, then attach; the new blob is released if attaching fails."""
        if self.blob_store is None:
            raise ValidationError("Image uploads are not configured")
        validate_image_key(slot, image_number)
        blob = await self.blob_store.store(data, content_type)
        try:
            return await self.attach_image(db, registration_id, slot, image_number, blob, user_id=user_id)
        except Exception:
            await self.release_blobs([blob.ref])
            raise

    async def detach_image(
        self,
        db: AsyncSession,
        registration_id: int,
        image_id: int,
        user_id: Optional[str] = None
    ) -> Registration:
        tournament_id = await self._tournament_id_for(db, registration_id)
        released: List[str] = []

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            self._check_owner(registration, user_id)
            self._require_images_editable(registration, rsm.PENDING)

            image = next((i for i in registration.images if i.id == image_id), None)
            if image is None:
                raise NotFound("Image", image_id, code=ErrorCode.IMAGE_NOT_FOUND)
            released.append(image.blob_ref)
            registration.images.remove(image)
            await self._apply_quota(db, tournament_id, registration)
            await db.flush()

        await self.release_blobs(released)
        return registration

    # ------------------------------------------------------------------
    # Admin review
    # ------------------------------------------------------------------

    async def verify(
        self,
        db: AsyncSession,
        registration_id: int,
        admin_id: str,
        override: bool = False
    ) -> Registration:
        """Approve a registration. Verifying a verified registration is a no-op."""
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            if registration.status == rsm.VERIFIED:
                return registration
            rsm.require_transition(registration.status, rsm.VERIFIED, override)

            tournament = await self.load_tournament(db, tournament_id)
            observed = tournament.current_participants
            if not registration.is_active:
                await self._check_capacity(db, tournament)

            registration.status = rsm.VERIFIED
            registration.verified_by = admin_id
            registration.verified_at = self.clock.now()
            registration.rejection_reason = None
            await self._reconcile(db, tournament, observed)
            tournament_name = tournament.name

        logger.info(f"[VERIFY] Registration {registration_id} verified by admin {admin_id}")
        await self._emit(EventType.VERIFIED, registration, tournament_name)
        return registration

    async def reject(
        self,
        db: AsyncSession,
        registration_id: int,
        admin_id: str,
        reason: str,
        override: bool = False
    ) -> Registration:
        """Reject with a reason. Rejecting a rejected registration only updates the reason."""
        reason = validate_rejection_reason(reason)
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            if registration.status == rsm.REJECTED:
                registration.rejection_reason = reason
                return registration
            rsm.require_transition(registration.status, rsm.REJECTED, override)

            tournament = await self.load_tournament(db, tournament_id)
            observed = tournament.current_participants
            registration.status = rsm.REJECTED
            registration.verified_by = admin_id
            registration.verified_at = self.clock.now()
            registration.rejection_reason = reason
            await self._reconcile(db, tournament, observed)
            tournament_name = tournament.name

        logger.info(f"[REJECT] Registration {registration_id} rejected by admin {admin_id}: {reason}")
        await self._emit(EventType.REJECTED, registration, tournament_name, reason=reason)
        return registration

    async def mark_not_verified(
        self,
        db: AsyncSession,
        registration_id: int,
        admin_id: str,
        override: bool = False
    ) -> Registration:
        return await self.reject(db, registration_id, admin_id, NOT_VERIFIED_REASON, override=override)

    async def reopen(self, db: AsyncSession, registration_id: int, admin_id: str) -> Registration:
        """
        Admin override: send a verified or rejected registration back into
        review (images_uploaded if the quota is still met, else pending).
        """
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            target = rsm.status_for_image_count(rsm.PENDING, registration.image_count, REQUIRED_IMAGE_COUNT)
            if registration.status not in rsm.TERMINAL_STATUSES:
                raise InvalidTransition(
                    "registration", registration.status, target,
                    hint="only verified or rejected registrations can be reopened"
                )
            rsm.require_transition(registration.status, target, override=True)

            tournament = await self.load_tournament(db, tournament_id)
            observed = tournament.current_participants
            if not registration.is_active:
                await self._check_capacity(db, tournament)

            registration.status = target
            registration.verified_by = None
            registration.verified_at = None
            registration.rejection_reason = None
            await self._reconcile(db, tournament, observed)

        logger.info(f"[REOPEN] Registration {registration_id} -> {target} by admin {admin_id}")
        return registration

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def _delete(self, db: AsyncSession, tournament: Tournament, registration: Registration) -> List[str]:
        refs = [image.blob_ref for image in registration.images]
        observed = tournament.current_participants
        await db.delete(registration)
        await db.flush()
        await self._reconcile(db, tournament, observed)
        return refs

    async def cancel(self, db: AsyncSession, registration_id: int, user_id: str) -> Dict[str, Any]:
        """Self-service cancel: owner only, pending only."""
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            if registration.user_id != user_id:
                raise Forbidden("You can only cancel your own registration")
            if registration.status != rsm.PENDING:
                raise InvalidTransition(
                    "registration", registration.status, "cancelled",
                    hint="only pending registrations can be cancelled"
                )
            tournament = await self.load_tournament(db, tournament_id)
            released = await self._delete(db, tournament, registration)

        await self.release_blobs(released)
        logger.info(f"[CANCEL] Registration {registration_id} cancelled by user {user_id}")
        return {"deleted": True, "registration_id": registration_id,
                "current_participants": tournament.current_participants}

    async def force_delete(self, db: AsyncSession, registration_id: int, admin_id: str) -> Dict[str, Any]:
        """Admin delete in any status."""
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            tournament = await self.load_tournament(db, tournament_id)
            released = await self._delete(db, tournament, registration)

        await self.release_blobs(released)
        logger.info(f"[FORCE DELETE] Registration {registration_id} deleted by admin {admin_id}")
        return {"deleted": True, "registration_id": registration_id,
                "current_participants": tournament.current_participants}

    # ------------------------------------------------------------------
    # Admin edits
    # ------------------------------------------------------------------

    async def update_team(
        self,
        db: AsyncSession,
        registration_id: int,
        admin_id: str,
        team: Union[TeamIn, Dict[str, Any]]
    ) -> Registration:
        team = parse_team(team)
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            tournament = await self.load_tournament(db, tournament_id)
            validate_team_composition(team, policy_for(tournament.game_type).identifier_label)

            registration.team_name = team.team_name
            registration.leader_name = team.team_leader.name
            registration.leader_player_id = team.team_leader.player_id
            registration.leader_phone = team.team_leader.phone
            registration.team_members = team.members_as_json()
            registration.contact_number = team.contact_number
            await db.flush()

        logger.info(f"[TEAM EDIT] Registration {registration_id} updated by admin {admin_id}")
        return registration

    async def pin_group(
        self,
        db: AsyncSession,
        registration_id: int,
        admin_id: str,
        group_label: str
    ) -> Registration:
        """Manual override; the label survives automatic recomputes until pins are reset."""
        if not is_valid_group_label(group_label):
            raise ValidationError(f"Invalid group label '{group_label}', expected G1, G2, ...")
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            tournament = await self.load_tournament(db, tournament_id)
            if not tournament.grouping_enabled:
                raise ValidationError("Grouping is not enabled for this tournament")
            if not registration.is_active:
                raise ValidationError("Only active registrations can be placed in a group")
            registration.group_label = group_label
            registration.group_pinned = True
            await self.groups.recompute(db, tournament)

        logger.info(f"[GROUPS] Registration {registration_id} pinned to {group_label} by admin {admin_id}")
        return registration

    async def unpin_group(self, db: AsyncSession, registration_id: int, admin_id: str) -> Registration:
        tournament_id = await self._tournament_id_for(db, registration_id)

        async with self.unit_of_work(db, tournament_id):
            registration = await self._load_registration(db, registration_id)
            tournament = await self.load_tournament(db, tournament_id)
            registration.group_pinned = False
            await self.groups.recompute(db, tournament)

        logger.info(f"[GROUPS] Registration {registration_id} unpinned by admin {admin_id}")
        return registration

    async def assign_groups(
        self,
        db: AsyncSession,
        tournament_id: int,
        reset_pins: bool = False
    ) -> Dict[str, Any]:
        """Explicit admin trigger; switches grouping on if it was off."""
        async with self.unit_of_work(db, tournament_id):
            tournament = await self.load_tournament(db, tournament_id)
            if not tournament.grouping_enabled:
                tournament.grouping_enabled = True
                tournament.group_size = tournament.group_size or self.settings.default_group_size
                await db.flush()
            result = await self.groups.recompute(db, tournament, reset_pins=reset_pins)

        logger.info(f"[GROUPS] Tournament {tournament_id}: assign_groups -> {result}")
        return result
