"""
Error taxonomy for the CKKS core.

Every failure is a deterministic contract violation. Nothing is retried
and nothing is repaired silently: each operation raises one of the
exceptions below, tagged with an ErrorKind, and carries the expected and
actual values (level, parms id, key element) needed for diagnosis.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Tagged error kinds raised by the key generator and evaluator."""
    INVALID_ARGUMENT = "invalid_argument"
    INVALID_STATE = "invalid_state"
    KEY_MISMATCH = "key_mismatch"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    LEVEL_MISMATCH = "level_mismatch"
    SCALE_MISMATCH = "scale_mismatch"
    LEVEL_EXHAUSTED = "level_exhausted"
    MISSING_KEY = "missing_key"


_UNSET = object()


class CKKSError(Exception):
    """Base class for all CKKS core errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, expected: Any = _UNSET, actual: Any = _UNSET):
        self.expected = None if expected is _UNSET else expected
        self.actual = None if actual is _UNSET else actual
        if expected is not _UNSET or actual is not _UNSET:
            message = f"{message}: expected {self.expected}, got {self.actual}"
        super().__init__(message)


class InvalidArgumentError(CKKSError, ValueError):
    """Null, empty or malformed input (context, Galois element, step, key list)."""
    kind = ErrorKind.INVALID_ARGUMENT


class InvalidStateError(CKKSError, RuntimeError):
    """Parameters not validated, released object, or wrong ciphertext size."""
    kind = ErrorKind.INVALID_STATE


class KeyMismatchError(CKKSError, ValueError):
    """Key does not belong to the governing context or decomposition layout."""
    kind = ErrorKind.KEY_MISMATCH


class UnsupportedOperationError(CKKSError, RuntimeError):
    """Slot operations requested under parameters that lack batching support."""
    kind = ErrorKind.UNSUPPORTED_OPERATION


class LevelMismatchError(CKKSError, ValueError):
    """Operands live at different levels of the modulus chain."""
    kind = ErrorKind.LEVEL_MISMATCH


class ScaleMismatchError(CKKSError, ValueError):
    """Operand scales differ by more than the configured relative tolerance."""
    kind = ErrorKind.SCALE_MISMATCH


class LevelExhaustedError(CKKSError, RuntimeError):
    """No modulus left to drop at the bottom of the chain."""
    kind = ErrorKind.LEVEL_EXHAUSTED


class MissingKeyError(CKKSError, LookupError):
    """Key material required by the operation is absent."""
    kind = ErrorKind.MISSING_KEY
