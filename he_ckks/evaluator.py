"""
CKKS Evaluator

Homomorphic operations over ciphertexts of one context, with exact
enforcement of the (level, scale, size) compatibility rules:

  add / sub         same level, scales equal within tolerance
  multiply / square same level, operands of size 2; size 3 result
  relinearize       size 3 -> size 2 via the relinearization key
  rescale_to_next   drop the last prime, divide the scale by it
  mod_switch_to     drop primes down to a later level, scale unchanged
  rotate / galois   automorphism plus key switch, shape unchanged

Every operation validates all of its inputs before computing anything.
Out-of-place variants never touch their inputs; *_inplace variants
replace their target only once the result is complete, so a failure
leaves the target exactly as it was.
"""

import logging
import math
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .ciphertext import Ciphertext, Plaintext, ensure_ciphertext
from .config import EngineConfig, get_config
from .context import CKKSContext, ContextData
from .errors import (
    InvalidArgumentError,
    InvalidStateError,
    KeyMismatchError,
    LevelExhaustedError,
    LevelMismatchError,
    MissingKeyError,
    ScaleMismatchError,
    UnsupportedOperationError,
)
from .galois import GaloisTool
from .keys import GaloisKeys, KeySwitchComponent, RelinKeys, is_metadata_valid_for
from .resources import ensure_not_released
from .ring.primes import supports_ntt
from .ring.rns import RNSPoly, poly_dot

logger = logging.getLogger(__name__)


# =============================================================================
# OPERATION COUNTERS
# =============================================================================

@dataclass
class OperationCounters:
    """
    Counters for tracking HE operation costs.

    Rotations and relinearizations each cost one key switch per
    automorphism applied; rescales and modswitches count chain steps.
    """
    additions: int = 0
    multiplications: int = 0
    relinearizations: int = 0
    rescales: int = 0
    modswitches: int = 0
    rotations: int = 0
    keyswitches: int = 0

    # Timing
    compute_time_ms: float = 0.0

    def reset(self) -> None:
        """Reset all counters to zero."""
        self.additions = 0
        self.multiplications = 0
        self.relinearizations = 0
        self.rescales = 0
        self.modswitches = 0
        self.rotations = 0
        self.keyswitches = 0
        self.compute_time_ms = 0.0

    def __add__(self, other: 'OperationCounters') -> 'OperationCounters':
        """Combine counters."""
        return OperationCounters(
            additions=self.additions + other.additions,
            multiplications=self.multiplications + other.multiplications,
            relinearizations=self.relinearizations + other.relinearizations,
            rescales=self.rescales + other.rescales,
            modswitches=self.modswitches + other.modswitches,
            rotations=self.rotations + other.rotations,
            keyswitches=self.keyswitches + other.keyswitches,
            compute_time_ms=self.compute_time_ms + other.compute_time_ms,
        )

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            'additions': self.additions,
            'multiplications': self.multiplications,
            'relinearizations': self.relinearizations,
            'rescales': self.rescales,
            'modswitches': self.modswitches,
            'rotations': self.rotations,
            'keyswitches': self.keyswitches,
            'compute_time_ms': self.compute_time_ms,
        }


# =============================================================================
# EVALUATOR
# =============================================================================

class Evaluator:
    """
    Stateless operation set over one context.

    Usage:
        evaluator = Evaluator(context)
        squared = evaluator.square(ct)
        evaluator.relinearize_inplace(squared, relin_keys)
        evaluator.rescale_to_next_inplace(squared)
    """

    def __init__(self, context: CKKSContext, config: Optional[EngineConfig] = None):
        if context is None:
            raise InvalidArgumentError("context cannot be None")
        if not context.parameters_set:
            raise InvalidStateError(
                f"encryption parameters are not set correctly: {context.parameter_error}"
            )
        self._context = context
        self._config = config or get_config()
        self._galois_tool = GaloisTool(context.poly_modulus_degree)
        self._counters = OperationCounters()

    @property
    def context(self) -> CKKSContext:
        return self._context

    @property
    def counters(self) -> OperationCounters:
        return self._counters

    def reset_counters(self) -> None:
        self._counters.reset()

    @contextmanager
    def timed_section(self):
        """Accumulate wall time of the enclosed operation."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self._counters.compute_time_ms += (time.perf_counter() - start) * 1000

    # -------------------------------------------------------------------------
    # CHECKS
    # -------------------------------------------------------------------------

    def _check_ciphertext(self, ct: Ciphertext, name: str = "ciphertext") -> ContextData:
        ensure_ciphertext(ct, name)
        if not is_metadata_valid_for(ct, self._context):
            raise KeyMismatchError(f"{name} is not valid for this context",
                                   expected=[d.parms_id for d in self._context.chain],
                                   actual=ct.parms_id)
        return self._context.get_context_data(ct.parms_id)

    def _check_plaintext(self, pt: Plaintext) -> None:
        if not isinstance(pt, Plaintext):
            raise InvalidArgumentError("plain must be a Plaintext", actual=type(pt).__name__)
        if not is_metadata_valid_for(pt, self._context):
            raise KeyMismatchError("plaintext is not valid for this context",
                                   actual=pt.parms_id)

    @staticmethod
    def _check_same_level(lhs, rhs) -> None:
        if lhs.parms_id != rhs.parms_id:
            raise LevelMismatchError("operands are at different levels",
                                     expected=lhs.level, actual=rhs.level)

    def _check_same_scale(self, lhs_scale: float, rhs_scale: float) -> None:
        if abs(lhs_scale - rhs_scale) / lhs_scale > self._config.scale_tolerance:
            raise ScaleMismatchError("operand scales differ",
                                     expected=lhs_scale, actual=rhs_scale)

    @staticmethod
    def _check_size(ct: Ciphertext, expected: int, operation: str) -> None:
        if ct.size != expected:
            raise InvalidStateError(f"{operation} requires a size-{expected} ciphertext",
                                    expected=expected, actual=ct.size)

    @staticmethod
    def _check_scale_bound(scale: float, data: ContextData) -> None:
        if math.log2(scale) >= data.total_coeff_modulus_bit_count:
            raise InvalidArgumentError(
                "scale out of bounds",
                expected=f"< 2^{data.total_coeff_modulus_bit_count}",
                actual=scale,
            )

    def _check_batching(self) -> None:
        if not self._context.qualifiers.using_batching:
            raise UnsupportedOperationError(
                "slot operations require batching-capable parameters"
            )

    # -------------------------------------------------------------------------
    # ADDITION
    # -------------------------------------------------------------------------

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """
        Add two ciphertexts.

        Raises:
            LevelMismatchError: If the operands are at different levels
            ScaleMismatchError: If the scales differ beyond tolerance
        """
        return self._add_or_sub(a, b, subtract=False)

    def add_inplace(self, a: Ciphertext, b: Ciphertext) -> None:
        a._assign(self.add(a, b))

    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Subtract b from a (same rules as add)."""
        return self._add_or_sub(a, b, subtract=True)

    def sub_inplace(self, a: Ciphertext, b: Ciphertext) -> None:
        a._assign(self.sub(a, b))

    def _add_or_sub(self, a: Ciphertext, b: Ciphertext, subtract: bool) -> Ciphertext:
        self._check_ciphertext(a, "a")
        self._check_ciphertext(b, "b")
        self._check_same_level(a, b)
        self._check_same_scale(a.scale, b.scale)

        with self.timed_section():
            lhs, rhs = a.polys, b.polys
            polys = []
            for i in range(max(len(lhs), len(rhs))):
                if i >= len(rhs):
                    polys.append(lhs[i])
                elif i >= len(lhs):
                    polys.append(-rhs[i] if subtract else rhs[i])
                else:
                    polys.append(lhs[i] - rhs[i] if subtract else lhs[i] + rhs[i])
        self._counters.additions += 1
        return Ciphertext(polys, a.parms_id, a.level, a.scale)

    def negate(self, ct: Ciphertext) -> Ciphertext:
        self._check_ciphertext(ct)
        return Ciphertext([-p for p in ct.polys], ct.parms_id, ct.level, ct.scale)

    def negate_inplace(self, ct: Ciphertext) -> None:
        ct._assign(self.negate(ct))

    def add_plain(self, ct: Ciphertext, plain: Plaintext) -> Ciphertext:
        return self._add_or_sub_plain(ct, plain, subtract=False)

    def add_plain_inplace(self, ct: Ciphertext, plain: Plaintext) -> None:
        ct._assign(self.add_plain(ct, plain))

    def sub_plain(self, ct: Ciphertext, plain: Plaintext) -> Ciphertext:
        return self._add_or_sub_plain(ct, plain, subtract=True)

    def sub_plain_inplace(self, ct: Ciphertext, plain: Plaintext) -> None:
        ct._assign(self.sub_plain(ct, plain))

    def _add_or_sub_plain(self, ct: Ciphertext, plain: Plaintext, subtract: bool) -> Ciphertext:
        self._check_ciphertext(ct)
        self._check_plaintext(plain)
        self._check_same_level(ct, plain)
        self._check_same_scale(ct.scale, plain.scale)

        polys = list(ct.polys)
        polys[0] = polys[0] - plain.poly if subtract else polys[0] + plain.poly
        self._counters.additions += 1
        return Ciphertext(polys, ct.parms_id, ct.level, ct.scale)

    # -------------------------------------------------------------------------
    # MULTIPLICATION
    # -------------------------------------------------------------------------

    def multiply(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """
        Multiply two size-2 ciphertexts.

        Returns:
            Size-3 ciphertext at the same level with scale(a) * scale(b)

        Raises:
            LevelMismatchError: If the operands are at different levels
            InvalidStateError: If an operand has not been relinearized
        """
        data = self._check_ciphertext(a, "a")
        self._check_ciphertext(b, "b")
        self._check_same_level(a, b)
        self._check_size(a, 2, "multiply")
        self._check_size(b, 2, "multiply")
        scale = a.scale * b.scale
        self._check_scale_bound(scale, data)

        with self.timed_section():
            a0, a1 = a.polys
            b0, b1 = b.polys
            polys = (a0 * b0, poly_dot([a0, a1], [b1, b0]), a1 * b1)
        self._counters.multiplications += 1
        return Ciphertext(polys, a.parms_id, a.level, scale)

    def multiply_inplace(self, a: Ciphertext, b: Ciphertext) -> None:
        a._assign(self.multiply(a, b))

    def square(self, ct: Ciphertext) -> Ciphertext:
        """Square a size-2 ciphertext: size 3, scale squared."""
        data = self._check_ciphertext(ct)
        self._check_size(ct, 2, "square")
        scale = ct.scale * ct.scale
        self._check_scale_bound(scale, data)

        with self.timed_section():
            c0, c1 = ct.polys
            polys = (c0 * c0, (c0 * c1).mul_scalar(2), c1 * c1)
        self._counters.multiplications += 1
        return Ciphertext(polys, ct.parms_id, ct.level, scale)

    def square_inplace(self, ct: Ciphertext) -> None:
        ct._assign(self.square(ct))

    def multiply_plain(self, ct: Ciphertext, plain: Plaintext) -> Ciphertext:
        data = self._check_ciphertext(ct)
        self._check_plaintext(plain)
        self._check_same_level(ct, plain)
        scale = ct.scale * plain.scale
        self._check_scale_bound(scale, data)

        with self.timed_section():
            polys = [p * plain.poly for p in ct.polys]
        self._counters.multiplications += 1
        return Ciphertext(polys, ct.parms_id, ct.level, scale)

    def multiply_plain_inplace(self, ct: Ciphertext, plain: Plaintext) -> None:
        ct._assign(self.multiply_plain(ct, plain))

    # -------------------------------------------------------------------------
    # KEY SWITCHING
    # -------------------------------------------------------------------------

    def _switch_key(self, poly: RNSPoly,
                    components: Sequence[KeySwitchComponent]) -> Tuple[RNSPoly, RNSPoly]:
        """
        Switch `poly` (at some data level) to the secret key.

        Each residue d_j is lifted to the level's primes plus the special
        prime, multiplied into component j, and the sums are divided by
        the special prime.
        """
        key_moduli = self._context.key_context_data.coeff_modulus
        count = len(poly.moduli)
        indices = list(range(count)) + [len(key_moduli) - 1]
        moduli = [key_moduli[i] for i in indices]

        lifted = [RNSPoly.from_integers(poly.residue(j), moduli) for j in range(count)]
        bs = [_select_cached(components[j].b, indices) for j in range(count)]
        as_ = [_select_cached(components[j].a, indices) for j in range(count)]

        self._counters.keyswitches += 1
        return (
            poly_dot(lifted, bs).divide_and_round_by_last(),
            poly_dot(lifted, as_).divide_and_round_by_last(),
        )

    def relinearize(self, ct: Ciphertext, relin_keys: RelinKeys) -> Ciphertext:
        """
        Reduce a size-3 ciphertext to size 2.

        Raises:
            InvalidStateError: If the ciphertext is not of size 3
            MissingKeyError: If no relinearization keys are given
            KeyMismatchError: If the keys do not match this context
        """
        self._check_ciphertext(ct)
        self._check_size(ct, 3, "relinearize")
        if relin_keys is None:
            raise MissingKeyError("relinearization requires relinearization keys")
        ensure_not_released(relin_keys, "relin_keys")
        if not isinstance(relin_keys, RelinKeys) or not is_metadata_valid_for(relin_keys,
                                                                               self._context):
            raise KeyMismatchError("relinearization keys do not match this context",
                                   expected=self._context.key_parms_id,
                                   actual=getattr(relin_keys, 'parms_id', None))

        with self.timed_section():
            c0, c1, c2 = ct.polys
            d0, d1 = self._switch_key(c2, relin_keys.key)
            polys = (c0 + d0, c1 + d1)
        self._counters.relinearizations += 1
        return Ciphertext(polys, ct.parms_id, ct.level, ct.scale)

    def relinearize_inplace(self, ct: Ciphertext, relin_keys: RelinKeys) -> None:
        ct._assign(self.relinearize(ct, relin_keys))

    # -------------------------------------------------------------------------
    # LEVEL MANAGEMENT
    # -------------------------------------------------------------------------

    def rescale_to_next(self, ct: Ciphertext) -> Ciphertext:
        """
        Drop the last prime of the level and divide the scale by it.

        Raises:
            LevelExhaustedError: At the last level (ciphertext untouched)
        """
        data = self._check_ciphertext(ct)
        next_data = self._context.next_context_data(ct.parms_id)
        if next_data is None:
            raise LevelExhaustedError("cannot rescale past the last level",
                                      expected=f"level < {data.level}", actual=ct.level)

        with self.timed_section():
            polys = [p.divide_and_round_by_last() for p in ct.polys]
        scale = ct.scale / data.last_modulus
        self._counters.rescales += 1
        logger.debug("Rescaled level %d -> %d, scale %.6g -> %.6g",
                     data.level, next_data.level, ct.scale, scale)
        return Ciphertext(polys, next_data.parms_id, next_data.level, scale)

    def rescale_to_next_inplace(self, ct: Ciphertext) -> None:
        ct._assign(self.rescale_to_next(ct))

    def mod_switch_to_next(self, ct: Ciphertext) -> Ciphertext:
        """Drop the last prime without touching the scale."""
        data = self._check_ciphertext(ct)
        next_data = self._context.next_context_data(ct.parms_id)
        if next_data is None:
            raise LevelExhaustedError("cannot switch past the last level",
                                      expected=f"level < {data.level}", actual=ct.level)
        return self._drop_to(ct, next_data)

    def mod_switch_to_next_inplace(self, ct: Ciphertext) -> None:
        ct._assign(self.mod_switch_to_next(ct))

    def mod_switch_to(self, ct: Ciphertext, parms_id: str) -> Ciphertext:
        """
        Bring `ct` down to the level of `parms_id`, scale unchanged.

        Raises:
            InvalidArgumentError: If the target is unknown, the key level,
                or precedes the ciphertext's level
        """
        data = self._check_ciphertext(ct)
        target = self._context.get_context_data(parms_id)
        if target.is_key_level or target.level < data.level:
            raise InvalidArgumentError("cannot switch to a preceding level",
                                       expected=f"level >= {data.level}", actual=target.level)
        if target.level == data.level:
            return ct.copy()
        return self._drop_to(ct, target)

    def mod_switch_to_inplace(self, ct: Ciphertext, parms_id: str) -> None:
        ct._assign(self.mod_switch_to(ct, parms_id))

    def _drop_to(self, ct: Ciphertext, target: ContextData) -> Ciphertext:
        count = len(target.coeff_modulus)
        polys = [p.take(count) for p in ct.polys]
        self._counters.modswitches += target.level - ct.level
        logger.debug("Switched level %d -> %d", ct.level, target.level)
        return Ciphertext(polys, target.parms_id, target.level, ct.scale)

    # -------------------------------------------------------------------------
    # GALOIS OPERATIONS
    # -------------------------------------------------------------------------

    def _check_galois_keys(self, galois_keys: GaloisKeys) -> None:
        if galois_keys is None:
            raise MissingKeyError("Galois operations require Galois keys")
        ensure_not_released(galois_keys, "galois_keys")
        if not isinstance(galois_keys, GaloisKeys) or not is_metadata_valid_for(
            galois_keys, self._context
        ):
            raise KeyMismatchError("Galois keys do not match this context",
                                   expected=self._context.key_parms_id,
                                   actual=getattr(galois_keys, 'parms_id', None))

    def _missing_key(self, galois_keys: GaloisKeys, elts: List[int], request) -> None:
        missing = [elt for elt in elts if not galois_keys.has_key(elt)]
        if missing:
            raise MissingKeyError(f"no Galois key for {request}",
                                  expected=missing, actual=galois_keys.elements)

    def _apply_elts(self, ct: Ciphertext, elts: List[int], galois_keys: GaloisKeys) -> Ciphertext:
        polys = ct.polys
        with self.timed_section():
            for elt in elts:
                c0, c1 = (p.automorphism(elt) for p in polys)
                d0, d1 = self._switch_key(c1, galois_keys.components(elt))
                polys = (c0 + d0, d1)
        return Ciphertext(polys, ct.parms_id, ct.level, ct.scale)

    def apply_galois(self, ct: Ciphertext, galois_elt: int, galois_keys: GaloisKeys) -> Ciphertext:
        """
        Apply X -> X^galois_elt to a size-2 ciphertext.

        Raises:
            InvalidArgumentError: If the element is not odd in [1, 2N-1]
            InvalidStateError: If the ciphertext is not of size 2
            MissingKeyError: If no key exists for the element
        """
        self._check_ciphertext(ct)
        self._galois_tool.check_elt(galois_elt)
        self._check_size(ct, 2, "apply_galois")
        self._check_galois_keys(galois_keys)
        self._missing_key(galois_keys, [galois_elt], f"element {galois_elt}")
        return self._apply_elts(ct, [galois_elt], galois_keys)

    def apply_galois_inplace(self, ct: Ciphertext, galois_elt: int,
                             galois_keys: GaloisKeys) -> None:
        ct._assign(self.apply_galois(ct, galois_elt, galois_keys))

    def rotate_vector(self, ct: Ciphertext, steps: int, galois_keys: GaloisKeys) -> Ciphertext:
        """
        Rotate the slot vector (positive = left, negative = right).

        Uses the direct key for `steps` when present, otherwise composes
        the non-adjacent form of `steps` from power-of-two rotations.

        Raises:
            UnsupportedOperationError: Without batching-capable parameters
            InvalidArgumentError: If |steps| >= N/2
            MissingKeyError: If neither decomposition is fully covered
        """
        self._check_ciphertext(ct)
        self._check_batching()
        if isinstance(steps, bool) or not isinstance(steps, int):
            raise InvalidArgumentError("rotation steps must be an integer", actual=steps)
        if steps == 0:
            return ct.copy()
        direct = self._galois_tool.elt_from_step(steps)
        self._check_size(ct, 2, "rotate_vector")
        self._check_galois_keys(galois_keys)

        if galois_keys.has_key(direct):
            elts = [direct]
        else:
            elts = [self._galois_tool.elt_from_step(term) for term in self._galois_tool.naf(steps)]
            self._missing_key(galois_keys, elts, f"rotation by {steps}")

        result = self._apply_elts(ct, elts, galois_keys)
        self._counters.rotations += len(elts)
        return result

    def rotate_vector_inplace(self, ct: Ciphertext, steps: int, galois_keys: GaloisKeys) -> None:
        ct._assign(self.rotate_vector(ct, steps, galois_keys))

    def complex_conjugate(self, ct: Ciphertext, galois_keys: GaloisKeys) -> Ciphertext:
        """Conjugate every slot (Galois element 2N-1)."""
        self._check_ciphertext(ct)
        self._check_batching()
        result = self.apply_galois(ct, self._galois_tool.conjugation_elt, galois_keys)
        self._counters.rotations += 1
        return result

    def complex_conjugate_inplace(self, ct: Ciphertext, galois_keys: GaloisKeys) -> None:
        ct._assign(self.complex_conjugate(ct, galois_keys))


def _select_cached(poly: RNSPoly, indices: List[int]) -> RNSPoly:
    """Restrict a key polynomial, warming its NTT cache so later selections reuse it."""
    for i in indices:
        if supports_ntt(poly.moduli[i], poly.degree):
            poly.ntt_residue(i)
    return poly.select(indices)
