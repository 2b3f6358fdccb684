"""
Domain errors

Raised by the services and repositories; main.py maps each kind to an
HTTP status.
"""


class BudgetTrackerError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidFormat(BudgetTrackerError):
    """Malformed month token, id, date, amount or name."""

    status_code = 400


class NotFound(BudgetTrackerError):
    """Id does not resolve for this owner (other owners' ids included)."""

    status_code = 404


class Conflict(BudgetTrackerError):
    """A budget already exists for the (owner, month) pair."""

    status_code = 409


class StoreUnavailable(BudgetTrackerError):
    """The backing store could not be reached or failed the operation."""

    status_code = 503
