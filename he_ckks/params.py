"""
CKKS Encryption Parameters

This module defines the immutable encryption parameters of the CKKS core:
the ring degree N, the RNS coefficient modulus and the security level.
The last prime of the coefficient modulus is the special prime used only
for key switching; the remaining primes form the data-level chain.

Three named profiles are provided:
  - FAST: N=8192, depth 2
  - DEFAULT: N=16384, depth 2, 8192 slots
  - SAFE: N=16384, depth 3, extra precision headroom
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

from .config import get_config
from .errors import InvalidArgumentError
from .ring.primes import (
    MAX_MODULUS_BITS,
    MIN_MODULUS_BITS,
    create_coeff_modulus,
    is_prime,
)

MIN_POLY_MODULUS_DEGREE = 2
MAX_POLY_MODULUS_DEGREE = 32768


class SecurityLevel(Enum):
    """Classical security level targeted by the coefficient modulus size."""
    NONE = 0
    TC128 = 128
    TC192 = 192
    TC256 = 256


# HomomorphicEncryption.org standard bounds on total coeff modulus bits
_MAX_COEFF_BITS = {
    SecurityLevel.TC128: {1024: 27, 2048: 54, 4096: 109, 8192: 218, 16384: 438, 32768: 881},
    SecurityLevel.TC192: {1024: 19, 2048: 37, 4096: 75, 8192: 152, 16384: 305, 32768: 611},
    SecurityLevel.TC256: {1024: 14, 2048: 29, 4096: 58, 8192: 118, 16384: 237, 32768: 476},
}


def max_coeff_modulus_bits(poly_modulus_degree: int, level: SecurityLevel) -> Optional[int]:
    """Largest secure total modulus size, or None when unconstrained/unknown."""
    if level == SecurityLevel.NONE:
        return None
    return _MAX_COEFF_BITS[level].get(poly_modulus_degree)


def _default_security_level() -> SecurityLevel:
    return SecurityLevel(get_config().default_security_level)


@dataclass(frozen=True)
class EncryptionParameters:
    """
    Immutable CKKS encryption parameters.

    Once constructed they cannot be modified; a context built from them
    is likewise immutable.
    """

    # Polynomial ring degree (N) - determines slot count (N/2)
    poly_modulus_degree: int

    # RNS primes, data primes first, special key-switching prime last
    coeff_modulus: Tuple[int, ...]

    security_level: SecurityLevel = field(default_factory=_default_security_level)

    # Default encoding scale exponent (optional convenience for encoders)
    scale_bits: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'coeff_modulus', tuple(int(q) for q in self.coeff_modulus))

    @classmethod
    def from_bit_sizes(
        cls,
        poly_modulus_degree: int,
        bit_sizes: Sequence[int],
        security_level: Optional[SecurityLevel] = None,
        scale_bits: Optional[int] = None,
    ) -> 'EncryptionParameters':
        """
        Generate NTT-friendly primes of the given bit sizes.

        Raises:
            InvalidArgumentError: If the degree or a bit size is unusable.
        """
        if not _is_power_of_two(poly_modulus_degree):
            raise InvalidArgumentError(
                f"poly_modulus_degree={poly_modulus_degree} must be a power of 2"
            )
        try:
            moduli = create_coeff_modulus(poly_modulus_degree, list(bit_sizes))
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        if security_level is None:
            security_level = _default_security_level()
        return cls(
            poly_modulus_degree=poly_modulus_degree,
            coeff_modulus=tuple(moduli),
            security_level=security_level,
            scale_bits=scale_bits,
        )

    @property
    def slot_count(self) -> int:
        """Number of SIMD slots available."""
        return self.poly_modulus_degree // 2

    @property
    def coeff_modulus_bits(self) -> Tuple[int, ...]:
        return tuple(q.bit_length() for q in self.coeff_modulus)

    @property
    def max_depth(self) -> int:
        """Number of rescales available to a fresh ciphertext."""
        return len(self.coeff_modulus) - 2

    @property
    def scale(self) -> Optional[float]:
        return None if self.scale_bits is None else 2.0 ** self.scale_bits

    def validate(self) -> None:
        """
        Validate parameters for correctness and security.

        Raises:
            InvalidArgumentError: If parameters are invalid or insecure.
        """
        n = self.poly_modulus_degree
        if not isinstance(n, int) or not _is_power_of_two(n):
            raise InvalidArgumentError(f"poly_modulus_degree={n} must be power of 2")
        if not MIN_POLY_MODULUS_DEGREE <= n <= MAX_POLY_MODULUS_DEGREE:
            raise InvalidArgumentError(
                f"poly_modulus_degree={n} out of range "
                f"[{MIN_POLY_MODULUS_DEGREE}, {MAX_POLY_MODULUS_DEGREE}]"
            )

        if len(self.coeff_modulus) < 2:
            raise InvalidArgumentError(
                "Need at least 2 primes in coefficient modulus "
                "(one data prime and the special prime)"
            )
        if len(set(self.coeff_modulus)) != len(self.coeff_modulus):
            raise InvalidArgumentError("coefficient modulus primes must be distinct")

        for i, q in enumerate(self.coeff_modulus):
            bits = q.bit_length()
            if not MIN_MODULUS_BITS <= bits <= MAX_MODULUS_BITS:
                raise InvalidArgumentError(
                    f"coeff_modulus[{i}] has {bits} bits, allowed "
                    f"[{MIN_MODULUS_BITS}, {MAX_MODULUS_BITS}]"
                )
            if not is_prime(q):
                raise InvalidArgumentError(f"coeff_modulus[{i}]={q} is not prime")

        max_allowed = max_coeff_modulus_bits(n, self.security_level)
        if self.security_level != SecurityLevel.NONE:
            if max_allowed is None:
                raise InvalidArgumentError(
                    f"no {self.security_level.value}-bit security bound for N={n}"
                )
            total_bits = sum(self.coeff_modulus_bits)
            if total_bits > max_allowed:
                raise InvalidArgumentError(
                    f"Total coeff modulus bits ({total_bits}) exceeds "
                    f"security bound ({max_allowed}) for N={n}"
                )

        if self.scale_bits is not None:
            if not 1 <= self.scale_bits < sum(self.coeff_modulus_bits[:-1]):
                raise InvalidArgumentError(
                    f"scale_bits={self.scale_bits} does not fit the data modulus"
                )

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            'poly_modulus_degree': self.poly_modulus_degree,
            'coeff_modulus': list(self.coeff_modulus),
            'coeff_modulus_bits': list(self.coeff_modulus_bits),
            'security_level': self.security_level.value,
            'scale_bits': self.scale_bits,
            'slot_count': self.slot_count,
            'max_depth': self.max_depth,
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'EncryptionParameters':
        """Deserialize from dictionary."""
        return cls(
            poly_modulus_degree=d['poly_modulus_degree'],
            coeff_modulus=tuple(d['coeff_modulus']),
            security_level=SecurityLevel(d.get('security_level', 128)),
            scale_bits=d.get('scale_bits'),
        )


def _is_power_of_two(n) -> bool:
    return isinstance(n, int) and n > 0 and n & (n - 1) == 0


# =============================================================================
# PROFILE DEFINITIONS
# =============================================================================

class CKKSProfile(Enum):
    """Named parameter profiles."""
    FAST = "fast"
    DEFAULT = "default"
    SAFE = "safe"


_PROFILES = {
    CKKSProfile.FAST: (8192, (60, 40, 40, 60), 40),
    CKKSProfile.DEFAULT: (16384, (60, 40, 40, 60), 40),
    CKKSProfile.SAFE: (16384, (60, 45, 45, 45, 60), 45),
}


def get_profile(profile: CKKSProfile) -> EncryptionParameters:
    """
    Get encryption parameters for the specified profile.

    FAST:    N=8192,  bits [60, 40, 40, 60],     scale 2^40, 4096 slots
    DEFAULT: N=16384, bits [60, 40, 40, 60],     scale 2^40, 8192 slots
    SAFE:    N=16384, bits [60, 45, 45, 45, 60], scale 2^45, 8192 slots
    """
    if profile not in _PROFILES:
        raise InvalidArgumentError(f"Unknown profile: {profile}")
    n, bits, scale_bits = _PROFILES[profile]
    return EncryptionParameters.from_bit_sizes(
        n, bits, security_level=SecurityLevel.TC128, scale_bits=scale_bits,
    )
