"""Tournament lifecycle and the participant disqualification/appeal machine.

Lifecycle: draft -> scheduled -> live -> completed -> prizes_distributed,
with cancelled reachable from any state before completion. Transitions are
validated; no skipping forward past live and no going backwards.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from rewards.errors import AppealNotPendingError, InvalidTransitionError, StateConflictError
from rewards.tournaments.schemas import (
    AppealStatus,
    TournamentDefinition,
    TournamentParticipant,
    TournamentStatus,
)
from rewards.time_utils import ensure_utc, utcnow

logger = structlog.get_logger()

VALID_TRANSITIONS: dict[TournamentStatus, list[TournamentStatus]] = {
    TournamentStatus.DRAFT: [TournamentStatus.SCHEDULED, TournamentStatus.LIVE, TournamentStatus.CANCELLED],
    TournamentStatus.SCHEDULED: [TournamentStatus.LIVE, TournamentStatus.CANCELLED],
    TournamentStatus.LIVE: [TournamentStatus.COMPLETED, TournamentStatus.CANCELLED],
    TournamentStatus.COMPLETED: [TournamentStatus.PRIZES_DISTRIBUTED],
    TournamentStatus.PRIZES_DISTRIBUTED: [],
    TournamentStatus.CANCELLED: [],
}


def validate_transition(current_status: TournamentStatus, target_status: TournamentStatus) -> None:
    """Validate a lifecycle transition. Raises InvalidTransitionError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransitionError(
            f"Invalid transition: {current_status.value} -> {target_status.value}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


def transition(tournament: TournamentDefinition, target_status: TournamentStatus) -> TournamentDefinition:
    validate_transition(tournament.status, target_status)
    return tournament.model_copy(update={"status": target_status})


def clock_status(tournament: TournamentDefinition, now: datetime) -> TournamentStatus:
    """Where the calendar alone would put a tournament."""
    if now < ensure_utc(tournament.start_date):  # type: ignore[operator]
        return TournamentStatus.SCHEDULED
    if now < ensure_utc(tournament.end_date):  # type: ignore[operator]
        return TournamentStatus.LIVE
    return TournamentStatus.COMPLETED


def advance_status(tournament: TournamentDefinition, now: datetime | None = None) -> TournamentDefinition:
    """Apply the clock-driven transitions, one valid step at a time.

    Terminal and post-completion states are left alone, as is anything
    already at or past where the clock puts it.
    """
    now = ensure_utc(now) or utcnow()
    order = [TournamentStatus.DRAFT, TournamentStatus.SCHEDULED, TournamentStatus.LIVE, TournamentStatus.COMPLETED]
    if tournament.status not in order:
        return tournament

    target = clock_status(tournament, now)
    current = tournament
    while order.index(current.status) < order.index(target):
        if current.status == TournamentStatus.DRAFT and target != TournamentStatus.SCHEDULED:
            step = TournamentStatus.LIVE
        else:
            step = order[order.index(current.status) + 1]
        current = transition(current, step)

    if current.status != tournament.status:
        logger.info(
            "tournament_status_advanced",
            tournament_id=tournament.tournament_id,
            from_status=tournament.status.value,
            to_status=current.status.value,
        )
    return current


# ---------------------------------------------------------------------------
# Disqualification and appeals: none -> pending -> approved | rejected
# ---------------------------------------------------------------------------


def disqualify(
    participant: TournamentParticipant,
    reason: str,
    disqualified_by: str,
    now: datetime | None = None,
) -> TournamentParticipant:
    if participant.is_disqualified:
        raise StateConflictError(
            f"User {participant.user_id} is already disqualified", code="already_disqualified",
        )
    return participant.model_copy(update={
        "is_disqualified": True,
        "disqualification_reason": reason,
        "disqualified_at": now or utcnow(),
        "disqualified_by": disqualified_by,
        "appeal_status": AppealStatus.NONE,
        "appeal_submitted_at": None,
        "appeal_decision_at": None,
        "appeal_decision_by": None,
    })


def submit_appeal(participant: TournamentParticipant, now: datetime | None = None) -> TournamentParticipant:
    if not participant.is_disqualified:
        raise InvalidTransitionError(f"User {participant.user_id} is not disqualified")
    if participant.appeal_status != AppealStatus.NONE:
        raise InvalidTransitionError(
            f"Appeal already {participant.appeal_status.value} for {participant.user_id}"
        )
    return participant.model_copy(update={
        "appeal_status": AppealStatus.PENDING,
        "appeal_submitted_at": now or utcnow(),
    })


def process_appeal(
    participant: TournamentParticipant,
    approved: bool,
    decided_by: str,
    now: datetime | None = None,
) -> TournamentParticipant:
    """Decide a pending appeal; approval reinstates the participant."""
    if participant.appeal_status != AppealStatus.PENDING:
        raise AppealNotPendingError(
            f"No pending appeal for {participant.user_id} (status: {participant.appeal_status.value})"
        )
    update: dict[str, object] = {
        "appeal_status": AppealStatus.APPROVED if approved else AppealStatus.REJECTED,
        "appeal_decision_at": now or utcnow(),
        "appeal_decision_by": decided_by,
    }
    if approved:
        update["is_disqualified"] = False
    return participant.model_copy(update=update)
