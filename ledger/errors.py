# ledger/errors.py


class LedgerError(Exception):
    """Base for failures the ledger reports to callers. `code` is the stable wire value."""
    code = "ledger_error"

    def __init__(self, message: str = None):
        super().__init__(message or self.code)


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"


class NoOpenRace(LedgerError):
    code = "no_open_race"


class NoRacingRace(LedgerError):
    code = "no_racing_race"


class AlreadySettled(LedgerError):
    code = "already_settled"


class RaceAlreadyActive(LedgerError):
    code = "race_already_active"


class LedgerUnavailable(LedgerError):
    """The database could not be reached. Transient; callers may retry."""
    code = "ledger_unavailable"
