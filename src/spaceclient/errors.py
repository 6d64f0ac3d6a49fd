"""
errors.py — Space Client Error Taxonomy

Standardized error codes for the client-side object protocol. Decode,
decrypt and reference-resolution errors abort the current operation;
``PropagationError`` is caught at the node boundary and logged.
"""

from typing import Any, Dict, Optional

__all__ = [
    "SpaceError",
    "AccessDeniedError",
    "DecryptError",
    "InvalidSignatureError",
    "NotFoundError",
    "UnknownAliasError",
    "MalformedDeltaError",
    "SerializationError",
    "AclError",
    "AliasTakenError",
    "PropagationError",
    "NothingToMineError",
    "BatchError",
]


class SpaceError(Exception):
    """Base class for all spaceclient errors."""

    code = "SPACE_E000"
    default_message = "Space client error."

    def __init__(self, context: Optional[str] = None, message: Optional[str] = None):
        self.message = message or self.default_message
        self.context = context

        full_msg = f"[{self.code}] {self.message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)


# Access Errors (E0xx)
class AccessDeniedError(SpaceError):
    code = "SPACE_E001"
    default_message = "The caller's identity has no wrapped key for this record."


class DecryptError(SpaceError):
    code = "SPACE_E002"
    default_message = "Key unwrap or payload decryption failed (corrupted data or key mismatch)."


class InvalidSignatureError(SpaceError):
    code = "SPACE_E003"
    default_message = "Ed25519 record signature verification failed."


# Reference Errors (E1xx)
class NotFoundError(SpaceError):
    code = "SPACE_E100"
    default_message = "Referenced block or record is absent from both cache and network."


class UnknownAliasError(NotFoundError):
    code = "SPACE_E101"
    default_message = "No public key is registered for the alias."


# Delta Errors (E2xx)
class MalformedDeltaError(SpaceError):
    code = "SPACE_E200"
    default_message = "Delta offset exceeds the current buffer or a field is negative."


# Schema Errors (E3xx)
class SerializationError(SpaceError):
    code = "SPACE_E300"
    default_message = "Payload does not decode as the expected entity."


# Identity Errors (E4xx)
class AclError(SpaceError):
    code = "SPACE_E400"
    default_message = "Access control list does not contain its owner."


class AliasTakenError(SpaceError):
    code = "SPACE_E401"
    default_message = "Alias is already registered to a different key."


# Substrate Errors (E5xx)
class PropagationError(SpaceError):
    code = "SPACE_E500"
    default_message = "Propagating channel state to or from the network failed."


class NothingToMineError(SpaceError):
    code = "SPACE_E501"
    default_message = "Channel has no pending records to mine."


# Batch Errors (E6xx)
class BatchError(SpaceError):
    """Raised after a batch loop finishes with one or more failed items.

    ``succeeded`` maps item -> result for the items that went through and
    ``failures`` maps item -> the error that stopped it.
    """

    code = "SPACE_E600"
    default_message = "One or more items in a batch operation failed."

    def __init__(
        self,
        failures: Dict[str, SpaceError],
        succeeded: Optional[Dict[str, Any]] = None,
    ):
        self.failures = dict(failures)
        self.succeeded = dict(succeeded or {})
        summary = ", ".join(f"{k}: {v}" for k, v in self.failures.items())
        super().__init__(context=summary)
