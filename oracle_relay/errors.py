"""Exception taxonomy and the failure classifier used by the relay."""

from __future__ import annotations

import enum

import httpx


class OracleError(RuntimeError):
    """Base class for relay errors."""


class ConfigError(OracleError):
    """Raised when the runtime configuration is invalid."""


class RetryableError(OracleError):
    """A transient failure; the job is worth attempting again later."""


class StorageError(RetryableError):
    """Raised when the storage backend cannot store or serve content."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AIServiceError(RetryableError):
    """Raised when an AI provider call fails."""


class RoflError(RetryableError):
    """Raised when the attested signer daemon rejects or drops a request."""


class FatalError(OracleError):
    """A failure that will not resolve itself by retrying."""


class KeyResolutionError(FatalError):
    """Raised when no session key can be found for a conversation."""


class DecryptionError(FatalError):
    """Raised when an envelope or wrapped key fails authentication or parsing."""


class PayloadValidationError(FatalError):
    """Raised when a decrypted request payload does not match its schema."""


class MalformedEventError(FatalError):
    """Raised when an event cannot be decoded or lacks required arguments."""


class IdentityError(OracleError):
    """Raised when the on-chain oracle identity cannot be reconciled."""


class IdentityMismatchError(IdentityError):
    """Raised when the signer is not the registered oracle on a public chain."""


class CatchUpError(OracleError):
    """Raised when the historical event scan cannot complete."""


class Classification(str, enum.Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


_TRANSIENT_SIGNATURES = (
    "insufficient funds",
    "irys",
    "autonomys",
    "fetch",
    "bad gateway",
    "502",
    "503",
    "504",
    "etimedout",
    "econnreset",
    "timeout",
    "timed out",
    "nonce too low",
    "rate limit",
    "storage",
)


def _is_retryable_status(status: int) -> bool:
    return status >= 500 or status in {408, 429}


def classify(error: BaseException) -> Classification:
    """Decide whether a handler failure should be retried.

    Typed relay errors win. Transport failures and retryable HTTP statuses are
    transient. Anything else is matched against known transient messages and
    treated as fatal when nothing matches.
    """

    if isinstance(error, FatalError):
        return Classification.FATAL
    if isinstance(error, (RetryableError, ConnectionError, TimeoutError, httpx.TransportError)):
        return Classification.RETRYABLE
    if isinstance(error, httpx.HTTPStatusError):
        if _is_retryable_status(error.response.status_code):
            return Classification.RETRYABLE
        return Classification.FATAL
    message = str(error).lower()
    if any(signature in message for signature in _TRANSIENT_SIGNATURES):
        return Classification.RETRYABLE
    return Classification.FATAL


__all__ = [
    "AIServiceError",
    "CatchUpError",
    "Classification",
    "ConfigError",
    "DecryptionError",
    "FatalError",
    "IdentityError",
    "IdentityMismatchError",
    "KeyResolutionError",
    "MalformedEventError",
    "OracleError",
    "PayloadValidationError",
    "RetryableError",
    "RoflError",
    "StorageError",
    "classify",
]
