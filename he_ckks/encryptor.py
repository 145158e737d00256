"""
Public-key encryption and secret-key decryption.
"""

from typing import Optional

from .ciphertext import Ciphertext, Plaintext, ensure_ciphertext
from .config import EngineConfig, get_config
from .context import CKKSContext
from .errors import InvalidArgumentError, InvalidStateError, KeyMismatchError
from .keys import PublicKey, SecretKey, is_metadata_valid_for
from .resources import ensure_not_released
from .ring.rns import RNSPoly, poly_dot
from .ring.sampling import sample_gaussian, sample_ternary


def _check_context(context: CKKSContext) -> None:
    if context is None:
        raise InvalidArgumentError("context cannot be None")
    if not context.parameters_set:
        raise InvalidStateError(
            f"encryption parameters are not set correctly: {context.parameter_error}"
        )


class Encryptor:
    """Encrypt plaintexts under a public key at the plaintext's level."""

    def __init__(self, context: CKKSContext, public_key: PublicKey,
                 config: Optional[EngineConfig] = None):
        _check_context(context)
        ensure_not_released(public_key, "public_key")
        if not is_metadata_valid_for(public_key, context):
            raise KeyMismatchError("public key is not valid for this context")
        self._context = context
        self._public_key = public_key
        self._config = config or get_config()

    def encrypt(self, plain: Plaintext) -> Ciphertext:
        """
        Encrypt `plain`: (b*u + e0 + m, a*u + e1) over the plaintext's primes.

        Raises:
            KeyMismatchError: If `plain` does not belong to this context.
        """
        if not isinstance(plain, Plaintext):
            raise InvalidArgumentError("plain must be a Plaintext", actual=type(plain).__name__)
        if not is_metadata_valid_for(plain, self._context):
            raise KeyMismatchError("plaintext is not valid for this context",
                                   actual=plain.parms_id)
        data = self._context.get_context_data(plain.parms_id)
        n = data.poly_modulus_degree
        count = len(data.coeff_modulus)
        moduli = data.coeff_modulus

        b, a = (p.take(count) for p in self._public_key.polys)
        u = RNSPoly.from_integers(sample_ternary(n), moduli)
        bound = self._config.noise_max_deviation
        stddev = self._config.noise_standard_deviation
        e0 = RNSPoly.from_integers(sample_gaussian(n, stddev, bound), moduli)
        e1 = RNSPoly.from_integers(sample_gaussian(n, stddev, bound), moduli)

        c0 = b * u + e0 + plain.poly
        c1 = a * u + e1
        return Ciphertext((c0, c1), plain.parms_id, plain.level, plain.scale)


class Decryptor:
    """Decrypt ciphertexts of any size with the secret key."""

    def __init__(self, context: CKKSContext, secret_key: SecretKey):
        _check_context(context)
        ensure_not_released(secret_key, "secret_key")
        if not is_metadata_valid_for(secret_key, context):
            raise KeyMismatchError("secret key is not valid for this context")
        self._context = context
        self._secret_key = secret_key

    def decrypt(self, ciphertext: Ciphertext) -> Plaintext:
        """c0 + c1*s + c2*s^2 + ... over the ciphertext's primes."""
        ciphertext = ensure_ciphertext(ciphertext)
        if not is_metadata_valid_for(ciphertext, self._context):
            raise KeyMismatchError("ciphertext is not valid for this context",
                                   actual=ciphertext.parms_id)
        polys = ciphertext.polys
        s = self._secret_key.poly.take(len(polys[0].moduli))
        powers = [s]
        for _ in range(len(polys) - 2):
            powers.append(powers[-1] * s)
        message = polys[0] + poly_dot(polys[1:], powers)
        return Plaintext(message, ciphertext.parms_id, ciphertext.level, ciphertext.scale)
