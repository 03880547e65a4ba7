"""Participant lifecycle: registration, bonuses, disqualification, appeals and prize claims."""

from __future__ import annotations

from datetime import datetime

import structlog

from rewards.config import Settings, get_settings
from rewards.errors import (
    AlreadyRegisteredError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from rewards.locks import KeyedLock, LocalKeyedLock
from rewards.time_utils import ensure_utc, utcnow
from rewards.tournaments import state
from rewards.tournaments.repository import TournamentRepository
from rewards.tournaments.schemas import (
    BonusMultipliers,
    TournamentDefinition,
    TournamentParticipant,
    TournamentStatus,
)

logger = structlog.get_logger()

EARLY_BIRD_MULTIPLIER = 1.1

REGISTRATION_OPEN = (TournamentStatus.SCHEDULED, TournamentStatus.LIVE)


class TournamentService:
    def __init__(
        self,
        repository: TournamentRepository,
        lock: KeyedLock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.lock = lock or LocalKeyedLock(wait_seconds=settings.lock_wait_seconds)

    async def _tournament(self, tournament_id: str) -> TournamentDefinition:
        tournament = await self.repository.get_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    async def _participant(self, tournament_id: str, user_id: str) -> TournamentParticipant:
        participant = await self.repository.get_participant(tournament_id, user_id)
        if participant is None:
            raise NotFoundError(f"User {user_id} is not registered in {tournament_id}")
        return participant

    # --- Lifecycle ---

    async def advance(self, tournament_id: str, *, now: datetime | None = None) -> TournamentDefinition:
        """Persist the clock-driven status for a tournament."""
        tournament = await self._tournament(tournament_id)
        advanced = state.advance_status(tournament, now)
        if advanced.status != tournament.status:
            moved = await self.repository.set_status(tournament_id, tournament.status, advanced.status)
            if not moved:
                return await self._tournament(tournament_id)
        return advanced

    async def change_status(self, tournament_id: str, target: TournamentStatus) -> TournamentDefinition:
        """Administrative transition, e.g. cancelling or publishing a draft."""
        tournament = await self._tournament(tournament_id)
        updated = state.transition(tournament, target)
        if not await self.repository.set_status(tournament_id, tournament.status, target):
            raise InvalidTransitionError(f"Tournament {tournament_id} changed status concurrently")
        logger.info("tournament_status_changed", tournament_id=tournament_id, status=target.value)
        return updated

    # --- Registration ---

    async def register(self, tournament_id: str, user_id: str, *, now: datetime | None = None) -> TournamentParticipant:
        now = ensure_utc(now) or utcnow()
        async with self.lock.hold(f"register:{tournament_id}"):
            tournament = await self._tournament(tournament_id)
            if tournament.status not in REGISTRATION_OPEN:
                raise ValidationError(
                    f"Registration is closed for {tournament_id} ({tournament.status.value})",
                    code="registration_closed",
                )
            deadline = ensure_utc(tournament.registration_deadline)
            if deadline is not None and now > deadline:
                raise ValidationError("Registration deadline has passed", code="registration_closed")

            registrant = await self.repository.get_registrant(user_id)
            if registrant is None:
                raise NotFoundError(f"User {user_id} not found", code="user_not_found")
            if not registrant.is_active:
                raise ValidationError(f"User {user_id} is not active", code="account_inactive")
            if registrant.level < tournament.min_level:
                raise ValidationError(
                    f"Level {registrant.level} is below the required {tournament.min_level}",
                    code="level_too_low",
                )
            if not tournament.admits_region(registrant.region):
                raise ValidationError(f"Region {registrant.region} is not eligible", code="region_not_eligible")
            if await self.repository.get_participant(tournament_id, user_id) is not None:
                raise AlreadyRegisteredError(f"User {user_id} already registered for {tournament_id}")
            if tournament.max_participants is not None and tournament.total_participants >= tournament.max_participants:
                raise ValidationError(f"Tournament {tournament_id} is full", code="tournament_full")

            multipliers = BonusMultipliers()
            if now < ensure_utc(tournament.start_date):  # type: ignore[operator]
                multipliers = multipliers.with_bonus("early_bird", EARLY_BIRD_MULTIPLIER)

            participant = TournamentParticipant(
                tournament_id=tournament_id,
                user_id=user_id,
                registered_at=now,
                multipliers=multipliers,
            )
            await self.repository.add_participant(participant)

        logger.info(
            "tournament_registered",
            tournament_id=tournament_id,
            user_id=user_id,
            early_bird=multipliers.early_bird > 1.0,
        )
        return participant

    async def set_bonus(self, tournament_id: str, user_id: str, kind: str, value: float) -> TournamentParticipant:
        """Replace one bonus multiplier; the total is always the product of the four."""
        async with self.lock.hold(f"score:{tournament_id}:{user_id}"):
            participant = await self._participant(tournament_id, user_id)
            updated = participant.model_copy(update={"multipliers": participant.multipliers.with_bonus(kind, value)})
            await self.repository.save_participant(updated)
        return updated

    # --- Disqualification and appeals ---

    async def disqualify(
        self, tournament_id: str, user_id: str, reason: str, disqualified_by: str, *, now: datetime | None = None,
    ) -> TournamentParticipant:
        async with self.lock.hold(f"score:{tournament_id}:{user_id}"):
            participant = await self._participant(tournament_id, user_id)
            updated = state.disqualify(participant, reason, disqualified_by, now)
            await self.repository.save_participant(updated)
        logger.warning(
            "participant_disqualified",
            tournament_id=tournament_id,
            user_id=user_id,
            reason=reason,
            by=disqualified_by,
        )
        return updated

    async def submit_appeal(self, tournament_id: str, user_id: str, *, now: datetime | None = None) -> TournamentParticipant:
        async with self.lock.hold(f"score:{tournament_id}:{user_id}"):
            participant = await self._participant(tournament_id, user_id)
            updated = state.submit_appeal(participant, now)
            await self.repository.save_participant(updated)
        logger.info("appeal_submitted", tournament_id=tournament_id, user_id=user_id)
        return updated

    async def process_appeal(
        self, tournament_id: str, user_id: str, approved: bool, decided_by: str, *, now: datetime | None = None,
    ) -> TournamentParticipant:
        async with self.lock.hold(f"score:{tournament_id}:{user_id}"):
            participant = await self._participant(tournament_id, user_id)
            updated = state.process_appeal(participant, approved, decided_by, now)
            await self.repository.save_participant(updated)
        logger.info(
            "appeal_processed",
            tournament_id=tournament_id,
            user_id=user_id,
            decision=updated.appeal_status.value,
            by=decided_by,
        )
        return updated

    # --- Prizes ---

    async def claim_prize(self, tournament_id: str, user_id: str, *, now: datetime | None = None) -> TournamentParticipant:
        tournament = await self._tournament(tournament_id)
        if tournament.status != TournamentStatus.PRIZES_DISTRIBUTED:
            raise NotFoundError(f"Prizes for {tournament_id} have not been distributed")
        participant = await self._participant(tournament_id, user_id)
        if participant.prize_tier is None:
            raise NotFoundError(f"User {user_id} has no prize in {tournament_id}")
        claimed = await self.repository.mark_prize_claimed(tournament_id, user_id, now or utcnow())
        logger.info("prize_claimed", tournament_id=tournament_id, user_id=user_id, tier=claimed.prize_tier)
        return claimed
