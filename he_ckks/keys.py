"""
Key material and validity checks.

All keys live at the key level of the context that produced them: their
polynomials carry every data prime plus the special prime. Key-switching
keys (relinearization and Galois) hold one component per data prime, the
decomposition count of the chain.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .ciphertext import Ciphertext, Plaintext
from .context import CKKSContext
from .errors import MissingKeyError
from .galois import GaloisTool
from .resources import Releasable
from .ring.rns import RNSPoly


class KeyType(Enum):
    """Types of HE keys."""
    SECRET = "secret"
    PUBLIC = "public"
    RELIN = "relin"
    GALOIS = "galois"


def _poly_bytes(poly: RNSPoly) -> bytes:
    return b''.join(np.asarray(r, dtype='<u8').tobytes() for r in poly.residues)


class SecretKey(Releasable):
    """Ternary secret polynomial s at the key level."""

    key_type = KeyType.SECRET

    def __init__(self, poly: RNSPoly, parms_id: str):
        self._poly = poly
        self._parms_id = parms_id

    @property
    def poly(self) -> RNSPoly:
        self._ensure_alive()
        return self._poly

    @property
    def parms_id(self) -> str:
        return self._parms_id

    def copy(self) -> 'SecretKey':
        return SecretKey(self.poly, self._parms_id)

    def tobytes(self) -> bytes:
        return _poly_bytes(self.poly)

    def _release_resources(self) -> None:
        self._poly = None

    def __eq__(self, other) -> bool:
        if not isinstance(other, SecretKey):
            return NotImplemented
        if self.released or other.released:
            return False
        return self._parms_id == other._parms_id and self._poly == other._poly

    __hash__ = None

    def __repr__(self) -> str:
        return f"SecretKey(parms_id={self._parms_id})"


class PublicKey(Releasable):
    """Encryption of zero (b, a) with b = -a*s + e."""

    key_type = KeyType.PUBLIC

    def __init__(self, b: RNSPoly, a: RNSPoly, parms_id: str):
        self._polys: Tuple[RNSPoly, ...] = (b, a)
        self._parms_id = parms_id

    @property
    def polys(self) -> Tuple[RNSPoly, ...]:
        self._ensure_alive()
        return self._polys

    @property
    def parms_id(self) -> str:
        return self._parms_id

    def copy(self) -> 'PublicKey':
        b, a = self.polys
        return PublicKey(b, a, self._parms_id)

    def tobytes(self) -> bytes:
        return b''.join(_poly_bytes(p) for p in self.polys)

    def _release_resources(self) -> None:
        self._polys = ()

    def __eq__(self, other) -> bool:
        if not isinstance(other, PublicKey):
            return NotImplemented
        if self.released or other.released:
            return False
        return self._parms_id == other._parms_id and self._polys == other._polys

    __hash__ = None

    def __repr__(self) -> str:
        return f"PublicKey(parms_id={self._parms_id})"


@dataclass(frozen=True, eq=False)
class KeySwitchComponent:
    """
    One decomposition component: b = -a*s + e + (p mod q_j) * s' on prime j.

    `seed` reproduces `a` when the component was sampled from a seed.
    """
    b: RNSPoly
    a: RNSPoly
    seed: Optional[bytes] = None


class KSwitchKeys(Releasable):
    """Key-switching keys indexed by an integer (power or Galois element)."""

    key_type: KeyType = None

    def __init__(self, keys: Mapping[int, Sequence[KeySwitchComponent]], parms_id: str):
        self._keys: Dict[int, Tuple[KeySwitchComponent, ...]] = {
            int(index): tuple(components) for index, components in keys.items()
        }
        self._parms_id = parms_id

    @property
    def parms_id(self) -> str:
        return self._parms_id

    @property
    def keys(self) -> Mapping[int, Tuple[KeySwitchComponent, ...]]:
        self._ensure_alive()
        return MappingProxyType(self._keys)

    def has_key(self, index: int) -> bool:
        self._ensure_alive()
        return index in self._keys

    def components(self, index: int) -> Tuple[KeySwitchComponent, ...]:
        self._ensure_alive()
        try:
            return self._keys[index]
        except KeyError:
            raise MissingKeyError(
                f"no {self.key_type.value} key for index",
                expected=sorted(self._keys),
                actual=index,
            ) from None

    def tobytes(self) -> bytes:
        parts = []
        for index in sorted(self.keys):
            for component in self._keys[index]:
                parts.append(_poly_bytes(component.b))
                parts.append(_poly_bytes(component.a))
        return b''.join(parts)

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, index) -> bool:
        return not self._released and index in self._keys

    def _release_resources(self) -> None:
        self._keys = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(count={len(self._keys)}, parms_id={self._parms_id})"


class RelinKeys(KSwitchKeys):
    """Switching key for s^2."""

    key_type = KeyType.RELIN
    POWER = 2

    @property
    def key(self) -> Tuple[KeySwitchComponent, ...]:
        return self.components(self.POWER)


class GaloisKeys(KSwitchKeys):
    """Switching keys for phi_g(s), keyed by Galois element g."""

    key_type = KeyType.GALOIS

    @property
    def elements(self) -> List[int]:
        return sorted(self.keys)


# =============================================================================
# VALIDITY
# =============================================================================

def _poly_shape_ok(poly, moduli: Tuple[int, ...], degree: int) -> bool:
    return isinstance(poly, RNSPoly) and poly.moduli == tuple(moduli) and poly.degree == degree


def _poly_values_ok(poly: RNSPoly) -> bool:
    for residue, q in zip(poly.residues, poly.moduli):
        if len(residue) and (residue.min() < 0 or residue.max() >= q):
            return False
    return True


def _kswitch_metadata_ok(keys: KSwitchKeys, context: CKKSContext) -> bool:
    key_data = context.key_context_data
    decomposition = len(key_data.coeff_modulus) - 1
    if not keys._keys:
        return False
    if isinstance(keys, RelinKeys) and set(keys._keys) != {RelinKeys.POWER}:
        return False
    if isinstance(keys, GaloisKeys):
        tool = GaloisTool(key_data.poly_modulus_degree)
        if not all(tool.is_valid_elt(elt) for elt in keys._keys):
            return False
    for components in keys._keys.values():
        if len(components) != decomposition:
            return False
        for component in components:
            if not (_poly_shape_ok(component.b, key_data.coeff_modulus, key_data.poly_modulus_degree)
                    and _poly_shape_ok(component.a, key_data.coeff_modulus,
                                       key_data.poly_modulus_degree)):
                return False
    return True


def is_metadata_valid_for(obj, context: CKKSContext) -> bool:
    """
    Cheap check that `obj` belongs to `context`.

    Compares parms_id, level, prime set, degree and decomposition layout
    without looking at coefficient data.
    """
    if obj is None or context is None or not context.parameters_set:
        return False
    if isinstance(obj, Releasable) and obj.released:
        return False

    key_data = context.key_context_data
    if isinstance(obj, (SecretKey, PublicKey, KSwitchKeys)):
        if obj.parms_id != key_data.parms_id:
            return False
        n = key_data.poly_modulus_degree
        if isinstance(obj, SecretKey):
            return _poly_shape_ok(obj._poly, key_data.coeff_modulus, n)
        if isinstance(obj, PublicKey):
            return all(_poly_shape_ok(p, key_data.coeff_modulus, n) for p in obj._polys)
        return _kswitch_metadata_ok(obj, context)

    if isinstance(obj, (Ciphertext, Plaintext)):
        if obj.parms_id not in context:
            return False
        data = context.get_context_data(obj.parms_id)
        if data.is_key_level or data.level != obj.level:
            return False
        polys = obj.polys if isinstance(obj, Ciphertext) else (obj.poly,)
        return all(_poly_shape_ok(p, data.coeff_modulus, data.poly_modulus_degree) for p in polys)

    return False


def _secret_is_ternary(poly: RNSPoly) -> bool:
    centered = None
    for residue, q in zip(poly.residues, poly.moduli):
        high = np.asarray(residue > q // 2, dtype=bool)
        values = np.where(high, residue - q, residue)
        if np.any(np.abs(values) > 1):
            return False
        if centered is not None and not np.array_equal(values, centered):
            return False
        centered = values
    return True


def is_valid_for(obj, context: CKKSContext) -> bool:
    """Full check: metadata plus every coefficient reduced modulo its prime."""
    if not is_metadata_valid_for(obj, context):
        return False
    if isinstance(obj, SecretKey):
        return _poly_values_ok(obj._poly) and _secret_is_ternary(obj._poly)
    if isinstance(obj, PublicKey):
        return all(_poly_values_ok(p) for p in obj._polys)
    if isinstance(obj, KSwitchKeys):
        return all(
            _poly_values_ok(component.b) and _poly_values_ok(component.a)
            for components in obj._keys.values()
            for component in components
        )
    if isinstance(obj, Ciphertext):
        return all(_poly_values_ok(p) for p in obj.polys)
    return _poly_values_ok(obj.poly)
