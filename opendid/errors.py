"""
OpenDID Errors
Typed failures raised by the gateway and the claims ledger.

Every error carries a stable `code` callers can branch on and the HTTP
status the API layer answers with.
"""

from typing import Any, Dict, Optional


class OpenDIDError(Exception):
    code = "OPENDID_ERROR"
    status = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


# ============ Input validation ============

class EmptyInput(OpenDIDError):
    code = "EMPTY_INPUT"
    status = 422


class EmptyKey(EmptyInput):
    code = "EMPTY_KEY"


class EmptyDID(EmptyInput):
    code = "EMPTY_DID"


class EmptyCID(EmptyInput):
    code = "EMPTY_CID"


class EmptyClaimType(EmptyInput):
    code = "EMPTY_CLAIM_TYPE"


class InputLengthMismatch(OpenDIDError):
    code = "INPUT_LENGTH_MISMATCH"
    status = 422


class InvalidFormat(OpenDIDError):
    code = "INVALID_FORMAT"
    status = 422


# ============ Authorization ============

class NotOwner(OpenDIDError):
    code = "NOT_OWNER"
    status = 403


class Unauthorized(OpenDIDError):
    code = "UNAUTHORIZED"
    status = 403


# ============ State preconditions ============

class AlreadyExists(OpenDIDError):
    code = "ALREADY_EXISTS"
    status = 409


class ClaimTypeAlreadyExists(AlreadyExists):
    code = "CLAIM_TYPE_ALREADY_EXISTS"


class AlreadyRegistered(OpenDIDError):
    code = "ALREADY_REGISTERED"
    status = 409


class NotFound(OpenDIDError):
    code = "NOT_FOUND"
    status = 404


class NotRegistered(OpenDIDError):
    code = "NOT_REGISTERED"
    status = 404


class UnknownClaimType(OpenDIDError):
    code = "UNKNOWN_CLAIM_TYPE"
    status = 404


class InvalidRange(OpenDIDError):
    code = "INVALID_RANGE"
    status = 416


class InvalidIndex(OpenDIDError):
    code = "INVALID_INDEX"
    status = 404


# ============ External dependencies ============

class ResolverMissing(OpenDIDError):
    code = "RESOLVER_MISSING"
    status = 424


class ExternalCallFailed(OpenDIDError):
    code = "EXTERNAL_CALL_FAILED"
    status = 502


class StorageError(OpenDIDError):
    code = "STORAGE_ERROR"
    status = 502


class DecryptionError(OpenDIDError):
    code = "DECRYPTION_FAILED"
    status = 422


class ClaimVerificationError(OpenDIDError):
    code = "CLAIM_VERIFICATION_FAILED"
    status = 422
