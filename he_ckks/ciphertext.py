"""
Ciphertext and plaintext containers.

Both carry the three observable fields callers use to test compatibility
before combining values: the parms_id of their level, the level index
itself and the scale. Ciphertexts additionally expose their size (number
of polynomials): 2 after encryption, 3 after a multiplication.
"""

from typing import Sequence, Tuple

from .errors import InvalidArgumentError, InvalidStateError
from .resources import Releasable
from .ring.rns import RNSPoly


def _check_scale(scale: float) -> float:
    scale = float(scale)
    if not scale > 0 or scale == float('inf'):
        raise InvalidArgumentError("scale must be a positive finite number", actual=scale)
    return scale


class Plaintext:
    """Encoded polynomial at one level of the chain."""

    def __init__(self, poly: RNSPoly, parms_id: str, level: int, scale: float):
        self._poly = poly
        self._parms_id = parms_id
        self._level = level
        self._scale = _check_scale(scale)

    @property
    def poly(self) -> RNSPoly:
        return self._poly

    @property
    def parms_id(self) -> str:
        return self._parms_id

    @property
    def level(self) -> int:
        return self._level

    @property
    def scale(self) -> float:
        return self._scale

    @scale.setter
    def scale(self, value: float) -> None:
        self._scale = _check_scale(value)

    def __repr__(self) -> str:
        return f"Plaintext(level={self._level}, scale={self._scale:.6g})"


class Ciphertext(Releasable):
    """
    Encrypted vector at one level of the chain.

    The scale is assignable: the engine never corrects scale drift on its
    own, so callers snap scales to a canonical value explicitly before
    combining ciphertexts whose scales differ beyond tolerance.
    """

    def __init__(self, polys: Sequence[RNSPoly], parms_id: str, level: int, scale: float):
        if len(polys) < 2:
            raise InvalidArgumentError("a ciphertext has at least two polynomials",
                                       expected=">= 2", actual=len(polys))
        self._polys: Tuple[RNSPoly, ...] = tuple(polys)
        self._parms_id = parms_id
        self._level = level
        self._scale = _check_scale(scale)

    @property
    def polys(self) -> Tuple[RNSPoly, ...]:
        self._ensure_alive()
        return self._polys

    @property
    def parms_id(self) -> str:
        self._ensure_alive()
        return self._parms_id

    @property
    def level(self) -> int:
        self._ensure_alive()
        return self._level

    @property
    def size(self) -> int:
        self._ensure_alive()
        return len(self._polys)

    @property
    def scale(self) -> float:
        self._ensure_alive()
        return self._scale

    @scale.setter
    def scale(self, value: float) -> None:
        self._ensure_alive()
        self._scale = _check_scale(value)

    @property
    def coeff_modulus(self) -> Tuple[int, ...]:
        return self.polys[0].moduli

    @property
    def poly_modulus_degree(self) -> int:
        return self.polys[0].degree

    def copy(self) -> 'Ciphertext':
        """Independent ciphertext with the same content (polynomials are immutable)."""
        self._ensure_alive()
        return Ciphertext(self._polys, self._parms_id, self._level, self._scale)

    def _assign(self, other: 'Ciphertext') -> None:
        """Take over the state of `other`; used by in-place operations after all checks."""
        self._ensure_alive()
        self._polys = other._polys
        self._parms_id = other._parms_id
        self._level = other._level
        self._scale = other._scale

    def _release_resources(self) -> None:
        self._polys = ()

    def __repr__(self) -> str:
        if self._released:
            return "Ciphertext(released)"
        return (
            f"Ciphertext(level={self._level}, size={len(self._polys)}, "
            f"scale={self._scale:.6g})"
        )


def ensure_ciphertext(value, name: str = "ciphertext") -> Ciphertext:
    """Type and liveness check shared by the encryptor and the evaluator."""
    if value is None:
        raise InvalidArgumentError(f"{name} cannot be None")
    if not isinstance(value, Ciphertext):
        raise InvalidArgumentError(f"{name} must be a Ciphertext",
                                   expected="Ciphertext", actual=type(value).__name__)
    if value.released:
        raise InvalidStateError(f"{name} has been released")
    return value
