"""Exceptions raised by the service layer.

The HTTP layer in ``main.py`` maps each of these to a status code; the
services themselves never deal with HTTP.
"""


class BudgetError(Exception):
    """Base class for all application errors."""


class NotFoundError(BudgetError):
    """A single-row lookup came back empty (expected, not fatal)."""


class StoreError(BudgetError):
    """The data store failed while reading or writing rows."""

    def __init__(self, action: str):
        super().__init__(f"Failed to {action}")
        self.action = action


class InvalidInputError(BudgetError):
    """Input rejected before any store call was made."""


class AuthError(BudgetError):
    """Bad credentials, duplicate account, or missing session."""


class ProfileProvisioningError(BudgetError):
    """The user profile could not be ensured after sign-up or sign-in."""
