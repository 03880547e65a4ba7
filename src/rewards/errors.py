"""Engine exception taxonomy.

Eligibility-negative outcomes (already earned, threshold not met, ...) are
never raised; they travel as reason codes on result values. Exceptions are
reserved for caller mistakes, lost races, dependency failures and broken
configuration, and each carries a machine-readable ``code``.
"""

from __future__ import annotations


class RewardsError(Exception):
    """Base class for every engine error."""

    code = "rewards_error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.code)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.code


# --- Validation ---


class ValidationError(RewardsError):
    """Bad input shape or a request the rules refuse outright. Never retried."""

    code = "validation_error"


class NotFoundError(RewardsError):
    code = "not_found"


# --- State conflicts (someone else already did it) ---


class StateConflictError(RewardsError):
    """A concurrent operation already changed the state this call relied on."""

    code = "state_conflict"


class GrantConflictError(StateConflictError):
    code = "grant_conflict"


class AlreadyDistributedError(StateConflictError):
    code = "already_distributed"


class NotCompletedError(StateConflictError):
    code = "not_completed"


class InvalidTransitionError(StateConflictError):
    code = "invalid_transition"


class AppealNotPendingError(StateConflictError):
    code = "appeal_not_pending"


class PrizeAlreadyClaimedError(StateConflictError):
    code = "prize_already_claimed"


class AlreadyRegisteredError(StateConflictError):
    code = "already_registered"


# --- External collaborators ---


class DependencyUnavailableError(RewardsError):
    """Snapshot provider, fraud scorer, processor or lock backend failed or timed out."""

    code = "dependency_unavailable"


# --- Configuration ---


class ConfigurationError(RewardsError):
    code = "invalid_configuration"
