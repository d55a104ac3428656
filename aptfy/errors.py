"""
Error taxonomy shared by the payment, escrow and auth endpoints.

Every error carries the HTTP status it is rendered with and a message that
is safe to show to the user.
"""
from rest_framework import status


class AptfyError(Exception):
    """Base error for request failures."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AptfyError):
    """Missing or malformed request fields."""

    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientFundsError(ValidationError):
    """Sender balance does not cover the requested amount."""

    def __init__(self, message: str, balance=None, required=None, token: str = ''):
        super().__init__(message)
        self.balance = balance
        self.required = required
        self.token = token

    @property
    def shortfall(self):
        if self.balance is None or self.required is None:
            return None
        return self.required - self.balance


class AuthenticationError(AptfyError):
    """Identity token or ephemeral key material could not be used."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(AptfyError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AptfyError):
    """Record is not in the status the operation requires."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(AptfyError):
    """The chain refused the acting account."""


class AlreadyFinalizedError(AptfyError):
    """The escrow was already released or cancelled."""


class UnavailableError(AptfyError):
    """The database is not reachable."""


class UnknownError(AptfyError):
    pass
