"""Errors for the controller."""

from runner_controller.errors.errors import (
    BaseError,
    ConfigurationError,
    ConflictError,
    DecodeError,
    ExpiryParseError,
    KeyDecodeError,
    KeyParseError,
    MissingResourceError,
    ProgrammingError,
    RequestError,
    SigningError,
    TokenIssuanceError,
    TransientStoreError,
    UnexpectedStatusError,
    UpdateConflictError,
    ValidationError,
)

__all__ = [
    "BaseError",
    "ConfigurationError",
    "ConflictError",
    "DecodeError",
    "ExpiryParseError",
    "KeyDecodeError",
    "KeyParseError",
    "MissingResourceError",
    "ProgrammingError",
    "RequestError",
    "SigningError",
    "TokenIssuanceError",
    "TransientStoreError",
    "UnexpectedStatusError",
    "UpdateConflictError",
    "ValidationError",
]
