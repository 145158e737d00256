"""
Randomness for key generation and encryption.

All sampling draws from a SHAKE-256 counter-mode generator. The
process-wide instance is seeded from os.urandom at import time and
reseeded in forked children; seeded instances expand the public `a`
polynomials of key-switching keys so that exports can ship the seed
instead of the polynomial.
"""

import hashlib
import os
import threading
from typing import Optional, Sequence

import numpy as np

from .rns import RNSPoly

SEED_BYTES = 32


class ShakePRNG:
    """Deterministic byte stream: SHAKE-256(seed || counter) blocks."""

    def __init__(self, seed: bytes):
        if len(seed) < 16:
            raise ValueError("seed must be at least 16 bytes")
        self._seed = bytes(seed)
        self._counter = 0
        self._lock = threading.Lock()

    def random_bytes(self, count: int) -> bytes:
        with self._lock:
            block = hashlib.shake_256(
                self._seed + self._counter.to_bytes(8, 'little')
            ).digest(count)
            self._counter += 1
        return block

    def random_uint64(self, count: int) -> np.ndarray:
        return np.frombuffer(self.random_bytes(8 * count), dtype='<u8')


_SYSTEM_PRNG = ShakePRNG(os.urandom(64))


def system_prng() -> ShakePRNG:
    """The process-wide generator."""
    return _SYSTEM_PRNG


def reseed(seed: Optional[bytes] = None) -> None:
    """Replace the process-wide generator (fresh OS entropy by default)."""
    global _SYSTEM_PRNG
    _SYSTEM_PRNG = ShakePRNG(seed if seed is not None else os.urandom(64))


if hasattr(os, 'register_at_fork'):
    os.register_at_fork(after_in_child=reseed)


def new_seed() -> bytes:
    return system_prng().random_bytes(SEED_BYTES)


# =============================================================================
# DISTRIBUTIONS
# =============================================================================

def sample_ternary(degree: int, prng: Optional[ShakePRNG] = None) -> np.ndarray:
    """Uniform coefficients in {-1, 0, 1}."""
    prng = prng or system_prng()
    chunks = []
    have = 0
    while have < degree:
        raw = np.frombuffer(prng.random_bytes(degree), dtype=np.uint8)
        raw = raw[raw < 255]
        chunks.append(raw)
        have += len(raw)
    values = np.concatenate(chunks)[:degree].astype(np.int64)
    return values % 3 - 1


def sample_gaussian(degree: int, stddev: float, max_deviation: float,
                    prng: Optional[ShakePRNG] = None) -> np.ndarray:
    """Rounded Gaussian coefficients, rejected beyond max_deviation."""
    prng = prng or system_prng()
    chunks = []
    have = 0
    while have < degree:
        u = (prng.random_uint64(2 * degree) >> np.uint64(11)).astype(np.float64)
        u = (u + 1.0) / float(1 << 53)
        u1, u2 = u[:degree], u[degree:]
        z = stddev * np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)
        z = z[np.abs(z) <= max_deviation]
        chunks.append(np.rint(z).astype(np.int64))
        have += len(z)
    return np.concatenate(chunks)[:degree]


def sample_uniform_residue(q: int, degree: int, prng: ShakePRNG) -> np.ndarray:
    """Uniform values in [0, q) by masked rejection sampling."""
    mask = np.uint64((1 << q.bit_length()) - 1)
    bound = np.uint64(q)
    chunks = []
    have = 0
    while have < degree:
        raw = prng.random_uint64(degree) & mask
        raw = raw[raw < bound]
        chunks.append(raw)
        have += len(raw)
    return np.concatenate(chunks)[:degree].astype(object)


def sample_uniform_poly(degree: int, moduli: Sequence[int],
                        prng: Optional[ShakePRNG] = None) -> RNSPoly:
    prng = prng or system_prng()
    return RNSPoly([sample_uniform_residue(q, degree, prng) for q in moduli], moduli)


def expand_seed(seed: bytes, degree: int, moduli: Sequence[int]) -> RNSPoly:
    """Reproduce the uniform polynomial generated from `seed`."""
    return sample_uniform_poly(degree, moduli, ShakePRNG(seed))
