"""
Negacyclic polynomial multiplication modulo a single RNS prime.

Residues are numpy object arrays of Python ints so that 60-bit products
never overflow. NTT-friendly primes (q = 1 mod 2N) use a vectorized
radix-2 number-theoretic transform; any other modulus falls back to
Kronecker substitution over Python big integers.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import List

import numpy as np

from .primes import find_primitive_root


def _bit_reverse_indices(n: int) -> np.ndarray:
    bits = n.bit_length() - 1
    idx = np.arange(n, dtype=np.int64)
    rev = np.zeros(n, dtype=np.int64)
    for b in range(bits):
        rev |= ((idx >> b) & 1) << (bits - 1 - b)
    return rev


def _powers(base: int, count: int, q: int) -> np.ndarray:
    out = np.empty(count, dtype=object)
    acc = 1
    for i in range(count):
        out[i] = acc
        acc = acc * base % q
    return out


def _stage_roots(omega: int, n: int, q: int) -> List[np.ndarray]:
    roots = []
    m = 1
    while m < n:
        roots.append(_powers(pow(omega, n // (2 * m), q), m, q))
        m *= 2
    return roots


@dataclass(frozen=True, eq=False)
class NTTTables:
    """Precomputed twiddles for the length-N negacyclic NTT modulo q."""
    modulus: int
    degree: int
    bit_reverse: np.ndarray
    psi_powers: np.ndarray
    inv_psi_powers_scaled: np.ndarray
    forward_roots: List[np.ndarray]
    inverse_roots: List[np.ndarray]


@lru_cache(maxsize=64)
def get_ntt_tables(q: int, n: int) -> NTTTables:
    """Build (and cache) the NTT tables for modulus q and degree n."""
    psi = find_primitive_root(2 * n, q)
    psi_inv = pow(psi, -1, q)
    omega = psi * psi % q
    omega_inv = pow(omega, -1, q)
    n_inv = pow(n, -1, q)
    return NTTTables(
        modulus=q,
        degree=n,
        bit_reverse=_bit_reverse_indices(n),
        psi_powers=_powers(psi, n, q),
        inv_psi_powers_scaled=_powers(psi_inv, n, q) * n_inv % q,
        forward_roots=_stage_roots(omega, n, q),
        inverse_roots=_stage_roots(omega_inv, n, q),
    )


def _cyclic_transform(values: np.ndarray, roots: List[np.ndarray], tables: NTTTables) -> np.ndarray:
    q = tables.modulus
    a = values[tables.bit_reverse]
    m = 1
    for w in roots:
        blocks = a.reshape(-1, 2 * m)
        even = blocks[:, :m]
        odd = blocks[:, m:] * w % q
        a = np.concatenate(((even + odd) % q, (even - odd) % q), axis=1).reshape(-1)
        m *= 2
    return a


def forward_ntt(values: np.ndarray, tables: NTTTables) -> np.ndarray:
    """Coefficients -> evaluations at the odd powers of psi."""
    return _cyclic_transform(values * tables.psi_powers % tables.modulus,
                             tables.forward_roots, tables)


def inverse_ntt(values: np.ndarray, tables: NTTTables) -> np.ndarray:
    """Evaluations -> coefficients."""
    a = _cyclic_transform(values, tables.inverse_roots, tables)
    return a * tables.inv_psi_powers_scaled % tables.modulus


def kronecker_multiply(a: np.ndarray, b: np.ndarray, q: int) -> np.ndarray:
    """Negacyclic product via packing both operands into one big integer."""
    n = len(a)
    slot_bits = 2 * q.bit_length() + n.bit_length() + 1
    slot_bytes = (slot_bits + 7) // 8

    def pack(poly: np.ndarray) -> int:
        return int.from_bytes(
            b''.join(int(c).to_bytes(slot_bytes, 'little') for c in poly),
            'little',
        )

    raw = (pack(a) * pack(b)).to_bytes(2 * n * slot_bytes, 'little')
    full = [
        int.from_bytes(raw[i * slot_bytes:(i + 1) * slot_bytes], 'little')
        for i in range(2 * n)
    ]
    out = np.empty(n, dtype=object)
    for i in range(n):
        out[i] = (full[i] - full[i + n]) % q
    return out
