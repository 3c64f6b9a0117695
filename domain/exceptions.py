"""
Domain exceptions raised by the account services.

The HTTP layer maps these to status codes; the services never build HTTP
responses themselves.
"""

from typing import Optional


class AccountError(Exception):
    """Base class for errors a caller of the account services can act on."""

    def __init__(self, message: str, description: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.description = description

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.description:
            body["description"] = self.description
        return body


class ValidationException(AccountError):
    """Input is malformed or references records that do not exist."""


class ConflictException(AccountError):
    """The operation would create a duplicate record."""
