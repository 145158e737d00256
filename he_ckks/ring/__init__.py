"""
Ring arithmetic collaborators for the CKKS core.

  - primes: NTT-friendly prime generation and primality testing
  - ntt: negacyclic transforms and the big-integer fallback multiplier
  - rns: RNSPoly, polynomials in residue-number-system form
  - sampling: process-wide CSPRNG and the key/noise distributions
"""

from .primes import create_coeff_modulus, is_prime, supports_ntt
from .rns import RNSPoly, poly_dot
from .sampling import (
    ShakePRNG,
    expand_seed,
    new_seed,
    reseed,
    sample_gaussian,
    sample_ternary,
    sample_uniform_poly,
    system_prng,
)

__all__ = [
    'RNSPoly',
    'ShakePRNG',
    'create_coeff_modulus',
    'expand_seed',
    'is_prime',
    'new_seed',
    'poly_dot',
    'reseed',
    'sample_gaussian',
    'sample_ternary',
    'sample_uniform_poly',
    'supports_ntt',
    'system_prng',
]
