"""
Polynomials in residue-number-system form.

An RNSPoly holds one residue array per prime of its modulus, always in
coefficient representation. Instances are never mutated after
construction: every operation returns a new polynomial, which lets each
instance cache the forward NTT of its residues.
"""

from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from .ntt import forward_ntt, get_ntt_tables, inverse_ntt, kronecker_multiply
from .primes import supports_ntt


def _as_residue(values) -> np.ndarray:
    arr = np.asarray(values)
    if arr.dtype != object:
        arr = arr.astype(object)
    return arr


class RNSPoly:
    """Element of Z_Q[X]/(X^N + 1) stored as residues modulo each prime of Q."""

    __slots__ = ('_moduli', '_residues', '_degree', '_ntt_cache')

    def __init__(self, residues: Sequence[np.ndarray], moduli: Sequence[int]):
        if len(residues) != len(moduli) or not moduli:
            raise ValueError("one residue array per modulus is required")
        self._moduli: Tuple[int, ...] = tuple(int(q) for q in moduli)
        self._residues: Tuple[np.ndarray, ...] = tuple(_as_residue(r) for r in residues)
        self._degree = len(self._residues[0])
        self._ntt_cache: Dict[int, np.ndarray] = {}

    # ------------------------------------------------------------------
    # CONSTRUCTION
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, degree: int, moduli: Sequence[int]) -> 'RNSPoly':
        return cls([np.zeros(degree, dtype=object) for _ in moduli], moduli)

    @classmethod
    def from_integers(cls, coeffs, moduli: Sequence[int]) -> 'RNSPoly':
        """Reduce signed integer coefficients modulo every prime."""
        values = _as_residue(coeffs)
        return cls([values % q for q in moduli], moduli)

    # ------------------------------------------------------------------
    # ACCESSORS
    # ------------------------------------------------------------------

    @property
    def moduli(self) -> Tuple[int, ...]:
        return self._moduli

    @property
    def degree(self) -> int:
        return self._degree

    @property
    def residues(self) -> Tuple[np.ndarray, ...]:
        return self._residues

    def residue(self, index: int) -> np.ndarray:
        return self._residues[index]

    def ntt_residue(self, index: int) -> np.ndarray:
        """Forward NTT of one residue, computed once per instance."""
        cached = self._ntt_cache.get(index)
        if cached is None:
            tables = get_ntt_tables(self._moduli[index], self._degree)
            cached = forward_ntt(self._residues[index], tables)
            self._ntt_cache[index] = cached
        return cached

    def __eq__(self, other) -> bool:
        if not isinstance(other, RNSPoly):
            return NotImplemented
        return (
            self._moduli == other._moduli
            and self._degree == other._degree
            and all(np.array_equal(a, b) for a, b in zip(self._residues, other._residues))
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"RNSPoly(degree={self._degree}, moduli={len(self._moduli)})"

    # ------------------------------------------------------------------
    # ARITHMETIC
    # ------------------------------------------------------------------

    def _check_compatible(self, other: 'RNSPoly') -> None:
        if self._moduli != other._moduli or self._degree != other._degree:
            raise ValueError("polynomials live in different rings")

    def add(self, other: 'RNSPoly') -> 'RNSPoly':
        self._check_compatible(other)
        return RNSPoly(
            [(a + b) % q for a, b, q in zip(self._residues, other._residues, self._moduli)],
            self._moduli,
        )

    def sub(self, other: 'RNSPoly') -> 'RNSPoly':
        self._check_compatible(other)
        return RNSPoly(
            [(a - b) % q for a, b, q in zip(self._residues, other._residues, self._moduli)],
            self._moduli,
        )

    def neg(self) -> 'RNSPoly':
        return RNSPoly([(-a) % q for a, q in zip(self._residues, self._moduli)], self._moduli)

    def mul_scalar(self, scalar: int) -> 'RNSPoly':
        return RNSPoly(
            [a * (scalar % q) % q for a, q in zip(self._residues, self._moduli)],
            self._moduli,
        )

    def mul(self, other: 'RNSPoly') -> 'RNSPoly':
        return poly_dot([self], [other])

    __add__ = add
    __sub__ = sub
    __neg__ = neg
    __mul__ = mul

    # ------------------------------------------------------------------
    # STRUCTURE
    # ------------------------------------------------------------------

    def select(self, indices: Iterable[int]) -> 'RNSPoly':
        """Polynomial restricted to the chosen primes (NTT cache carried over)."""
        indices = list(indices)
        out = RNSPoly([self._residues[i] for i in indices], [self._moduli[i] for i in indices])
        for new_index, old_index in enumerate(indices):
            if old_index in self._ntt_cache:
                out._ntt_cache[new_index] = self._ntt_cache[old_index]
        return out

    def take(self, count: int) -> 'RNSPoly':
        """Polynomial restricted to the first `count` primes."""
        return self.select(range(count))

    def automorphism(self, galois_elt: int) -> 'RNSPoly':
        """Apply X -> X^galois_elt."""
        n = self._degree
        idx = (np.arange(n, dtype=np.int64) * galois_elt) % (2 * n)
        target = idx % n
        negate = idx >= n
        out = []
        for a, q in zip(self._residues, self._moduli):
            permuted = np.empty(n, dtype=object)
            permuted[target] = np.where(negate, (-a) % q, a)
            out.append(permuted)
        return RNSPoly(out, self._moduli)

    def divide_and_round_by_last(self) -> 'RNSPoly':
        """round(x / q_last) modulo the remaining primes."""
        if len(self._moduli) < 2:
            raise ValueError("cannot drop the only prime")
        q_last = self._moduli[-1]
        last = self._residues[-1]
        high = np.asarray(last > q_last // 2, dtype=bool)
        centered = np.where(high, last - q_last, last)
        out = []
        for a, q in zip(self._residues[:-1], self._moduli[:-1]):
            inv = pow(q_last % q, -1, q)
            out.append((a - centered % q) * inv % q)
        return RNSPoly(out, self._moduli[:-1])

    def to_signed_integers(self) -> np.ndarray:
        """CRT-compose the residues into centered integers in (-Q/2, Q/2]."""
        big_q = 1
        for q in self._moduli:
            big_q *= q
        acc = np.zeros(self._degree, dtype=object)
        for a, q in zip(self._residues, self._moduli):
            partial = big_q // q
            acc = acc + (a * pow(partial % q, -1, q) % q) * partial
        acc = acc % big_q
        high = np.asarray(acc > big_q // 2, dtype=bool)
        return np.where(high, acc - big_q, acc)


def poly_dot(lhs: Sequence[RNSPoly], rhs: Sequence[RNSPoly]) -> RNSPoly:
    """
    Sum of lhs[k] * rhs[k], accumulated in the NTT domain per prime.

    One inverse transform per prime regardless of the number of terms.
    """
    if not lhs or len(lhs) != len(rhs):
        raise ValueError("poly_dot needs two equally sized, non-empty sequences")
    first = lhs[0]
    for poly in list(lhs) + list(rhs):
        first._check_compatible(poly)
    n = first.degree
    out: List[np.ndarray] = []
    for i, q in enumerate(first.moduli):
        acc = np.zeros(n, dtype=object)
        if supports_ntt(q, n):
            for x, y in zip(lhs, rhs):
                acc = (acc + x.ntt_residue(i) * y.ntt_residue(i)) % q
            out.append(inverse_ntt(acc, get_ntt_tables(q, n)))
        else:
            for x, y in zip(lhs, rhs):
                acc = (acc + kronecker_multiply(x.residue(i), y.residue(i), q)) % q
            out.append(acc)
    return RNSPoly(out, first.moduli)
