"""Exceptions for the controller."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class BaseError(Exception):
    """Base class for all exceptions."""

    code: int = 1500
    status_code: int = 500
    message: str = "An unexpected error occurred"
    detail: Optional[str] = None
    quiet: bool = False

    def __repr__(self) -> str:
        """String representation of the error."""
        return f"{self.__class__.__qualname__}: {self.message}"

    def __str__(self) -> str:
        """String representation of the error."""
        return f"{self.__class__.__qualname__}: {self.message}"


# ! IMPORTANT: keep this list ordered by HTTP status code.


@dataclass
class MissingResourceError(BaseError):
    """Raised when a resource is not found."""

    code: int = 1404
    status_code: int = 404
    message: str = "The requested resource does not exist or cannot be found"
    quiet: bool = True


@dataclass
class ConflictError(BaseError):
    """Raised when a conflicting write occurs, e.g. creating an object that already exists."""

    code: int = 1409
    message: str = "Conflicting update detected."
    status_code: int = 409


@dataclass
class UpdateConflictError(ConflictError):
    """Raised when an update is rejected because the stored object changed since it was read.

    This is the optimistic-concurrency failure of the resource store. It is retryable: the caller is expected to
    read the object again and reapply its changes.
    """

    code: int = 1410
    message: str = "The object has been modified; please apply your changes to the latest version and try again."
    quiet: bool = True


@dataclass
class ValidationError(BaseError):
    """Raised when the inputs or outputs are invalid."""

    code: int = 1422
    message: str = "The provided input is invalid"
    status_code: int = 422


@dataclass
class ConfigurationError(BaseError):
    """Raised when the controller is not properly configured."""

    message: str = "The controller is not properly configured and cannot run"


@dataclass
class ProgrammingError(BaseError):
    """Raised an irrecoverable programming error or bug occurs."""

    code: int = 1500
    message: str = "An unexpected error occurred."
    status_code: int = 500


@dataclass
class TransientStoreError(BaseError):
    """Raised when reading from or writing to the kubernetes API fails for a reason other than a conflict."""

    code: int = 1502
    message: str = "The request to the kubernetes API failed."
    status_code: int = 502


@dataclass
class ExpiryParseError(BaseError):
    """Raised when the expiry annotation of an issued credential cannot be parsed."""

    code: int = 1503
    message: str = "The expiry timestamp of the access token cannot be parsed."


@dataclass
class TokenIssuanceError(BaseError):
    """Base class for errors while obtaining a GitHub App installation token."""

    code: int = 1520
    message: str = "An error occurred obtaining an installation access token."
    status_code: int = 502


@dataclass
class KeyDecodeError(TokenIssuanceError):
    """Raised when the private key does not contain a PEM block."""

    code: int = 1521
    message: str = "Failed to decode the private key, no PEM block was found."


@dataclass
class KeyParseError(TokenIssuanceError):
    """Raised when the PEM block does not contain a valid RSA private key."""

    code: int = 1522
    message: str = "Failed to parse the private key."


@dataclass
class SigningError(TokenIssuanceError):
    """Raised when the JWT assertion cannot be signed."""

    code: int = 1523
    message: str = "Failed to sign the JWT assertion."


@dataclass
class RequestError(TokenIssuanceError):
    """Raised when the request to the token endpoint cannot be sent or no response is received."""

    code: int = 1524
    message: str = "The request to the access token endpoint failed."


@dataclass
class UnexpectedStatusError(TokenIssuanceError):
    """Raised when the token endpoint does not answer with 201 Created."""

    code: int = 1525
    message: str = "The access token endpoint returned an unexpected status."
    response_status: int | None = None


@dataclass
class DecodeError(TokenIssuanceError):
    """Raised when the token endpoint response cannot be decoded."""

    code: int = 1526
    message: str = "Failed to decode the access token response."
