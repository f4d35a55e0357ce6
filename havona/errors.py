"""
Havona error taxonomy.

Every rejection raised by the store is a HavonaError subclass carrying a
stable ``code``. Errors are synchronous rejections of the single call that
triggered them: no partial application, no retry.
"""

from typing import Optional


class HavonaError(Exception):
    """Base class for all store rejections."""

    code = "HAVONA_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AccessDenied(HavonaError):
    """Read attempted without a grant or operator status."""

    code = "ACCESS_DENIED"

    def __init__(self, identity: str, key: bytes):
        self.identity = identity
        self.key = key
        super().__init__(f"{identity} may not read 0x{key.hex()}")


class Unauthorized(HavonaError):
    """Operator-gated operation attempted by another identity."""

    code = "UNAUTHORIZED"

    def __init__(self, caller: str, operation: str):
        self.caller = caller
        self.operation = operation
        super().__init__(f"{caller} is not permitted to call {operation}")


class InvalidSignature(HavonaError):
    """Signature malformed, signer mismatch, or public key off-curve."""

    code = "INVALID_SIGNATURE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid signature: {reason}")


class SignatureExpired(HavonaError):
    code = "SIGNATURE_EXPIRED"

    def __init__(self, deadline: int, now: int):
        self.deadline = deadline
        self.now = now
        super().__init__(f"Signature expired at {deadline} (now {now})")


class ExpiryTooFar(HavonaError):
    code = "EXPIRY_TOO_FAR"

    def __init__(self, deadline: int, max_deadline: int):
        self.deadline = deadline
        self.max_deadline = max_deadline
        super().__init__(f"Deadline {deadline} exceeds maximum {max_deadline}")


class SignatureReplayed(HavonaError):
    code = "SIGNATURE_REPLAYED"

    def __init__(self, sig_hash: bytes):
        self.sig_hash = sig_hash
        super().__init__(f"Signature already used: 0x{sig_hash.hex()}")


class VersionLimitExceeded(HavonaError):
    code = "VERSION_LIMIT_EXCEEDED"

    def __init__(self, key: bytes, limit: int):
        self.key = key
        self.limit = limit
        super().__init__(f"0x{key.hex()} already holds {limit} versions")


class BatchTooLarge(HavonaError):
    code = "BATCH_TOO_LARGE"

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Batch of {size} exceeds limit of {limit}")


class BatchLengthMismatch(HavonaError):
    code = "BATCH_LENGTH_MISMATCH"

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Batch arrays differ in length: {left} != {right}")


class RecordNotFound(HavonaError):
    code = "RECORD_NOT_FOUND"

    def __init__(self, key: bytes):
        self.key = key
        super().__init__(f"No record at 0x{key.hex()}")


class IndexOutOfBounds(HavonaError):
    code = "INDEX_OUT_OF_BOUNDS"

    def __init__(self, index: int, length: int, what: Optional[str] = None):
        self.index = index
        self.length = length
        label = f"{what} " if what else ""
        super().__init__(f"{label}index {index} out of bounds (length {length})")


class ReentrantCall(HavonaError):
    """Nested call into the store while another call is in progress."""

    code = "REENTRANT_CALL"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Re-entrant call to {operation} rejected")


class InvalidInput(HavonaError):
    """Malformed argument (key length, content type, negative offsets)."""

    code = "INVALID_INPUT"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")
