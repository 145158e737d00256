"""
Prime generation for the RNS coefficient modulus.

Coefficient moduli are chains of distinct primes q with q = 1 (mod 2N) so
that every prime admits a negacyclic NTT of length N.
"""

from collections import Counter
from typing import Dict, List, Sequence

# Deterministic Miller-Rabin witnesses, correct for n < 3.3e24
_MR_BASES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41)

MAX_MODULUS_BITS = 60
MIN_MODULUS_BITS = 2


def is_prime(n: int) -> bool:
    """Deterministic primality test for moduli up to 64 bits."""
    if n < 2:
        return False
    for p in _MR_BASES:
        if n % p == 0:
            return n == p
    d = n - 1
    r = 0
    while d % 2 == 0:
        d //= 2
        r += 1
    for a in _MR_BASES:
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(r - 1):
            x = x * x % n
            if x == n - 1:
                break
        else:
            return False
    return True


def supports_ntt(q: int, poly_degree: int) -> bool:
    """True if q admits a primitive 2N-th root of unity."""
    return q % (2 * poly_degree) == 1


def generate_ntt_primes(bit_size: int, count: int, poly_degree: int) -> List[int]:
    """
    Largest `count` primes below 2^bit_size that are 1 mod 2N.

    Raises:
        ValueError: If the bit size is out of range or not enough primes exist.
    """
    if not MIN_MODULUS_BITS <= bit_size <= MAX_MODULUS_BITS:
        raise ValueError(
            f"bit_size={bit_size} out of range "
            f"[{MIN_MODULUS_BITS}, {MAX_MODULUS_BITS}]"
        )
    factor = 2 * poly_degree
    lower = 1 << (bit_size - 1)
    candidate = ((1 << bit_size) - 1) // factor * factor + 1
    if candidate >= 1 << bit_size:
        candidate -= factor

    primes: List[int] = []
    while len(primes) < count and candidate > lower:
        if is_prime(candidate):
            primes.append(candidate)
        candidate -= factor

    if len(primes) < count:
        raise ValueError(
            f"not enough {bit_size}-bit primes congruent to 1 mod {factor}"
        )
    return primes


def create_coeff_modulus(poly_degree: int, bit_sizes: Sequence[int]) -> List[int]:
    """
    Distinct NTT-friendly primes with the requested bit sizes, in order.

    Equal bit sizes receive successively smaller primes.
    """
    needed = Counter(bit_sizes)
    pools: Dict[int, List[int]] = {
        bits: generate_ntt_primes(bits, count, poly_degree)
        for bits, count in needed.items()
    }
    return [pools[bits].pop(0) for bits in bit_sizes]


def find_primitive_root(order: int, q: int) -> int:
    """
    Smallest-generator primitive root of unity of power-of-two `order` mod q.

    Raises:
        ValueError: If q - 1 is not divisible by order.
    """
    if (q - 1) % order != 0:
        raise ValueError(f"{q} has no primitive {order}-th root of unity")
    cofactor = (q - 1) // order
    half = order // 2
    for g in range(2, q):
        root = pow(g, cofactor, q)
        if pow(root, half, q) == q - 1:
            return root
    raise ValueError(f"no primitive {order}-th root of unity mod {q}")
