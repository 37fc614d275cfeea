"""
engagevote/protocol/errors.py

Named failure kinds raised by the ledger's action handlers.

Every failure is a precondition violation: it is raised before any state
is touched, so a rejected action leaves the ledger exactly as it was.
"""


class LedgerError(Exception):
    """Base class for rejected ledger actions."""
    code = "ledger_error"
    http_status = 409

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class AlreadyClaimed(LedgerError):
    """Ownership has already been claimed."""
    code = "already_claimed"


class Unauthorized(LedgerError):
    """Caller is not the owner (or no owner exists yet)."""
    code = "unauthorized"
    http_status = 403


class AlreadyActive(LedgerError):
    """Election is already running."""
    code = "already_active"


class NotActive(LedgerError):
    """Election is not running (owner tried to end it)."""
    code = "not_active"


class ElectionNotActive(LedgerError):
    """A vote was cast while no election is running."""
    code = "election_not_active"


class CooldownActive(LedgerError):
    """An engagement or vote was attempted before its cooldown elapsed."""
    code = "cooldown_active"
    http_status = 429

    def __init__(self, action: str, retry_at: int, message: str = ""):
        super().__init__(message or f"{action} on cooldown until {retry_at}")
        self.action = action
        self.retry_at = retry_at

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "action": self.action,
            "retry_at": self.retry_at,
        }


class NoRewards(LedgerError):
    """Reward claim attempted with a zero balance."""
    code = "no_rewards"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        AlreadyClaimed,
        Unauthorized,
        AlreadyActive,
        NotActive,
        ElectionNotActive,
        CooldownActive,
        NoRewards,
    )
}

