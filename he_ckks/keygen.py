"""
CKKS Key Generator

Owns one secret key and derives every other key from it:
- Secret key (sk) - ternary, sampled once per generator, never regenerated
- Public key (pk) - generated on first access and cached for the lifetime
- Relinearization keys - fresh randomness on every call
- Galois keys - canonical full set, chosen elements, or rotation steps

Security properties:
- All key events are recorded in an audit log with SHA-256 fingerprints
- release() drops key material; later use raises InvalidStateError
"""

import hashlib
import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .config import EngineConfig, get_config
from .context import CKKSContext
from .errors import (
    InvalidArgumentError,
    InvalidStateError,
    KeyMismatchError,
    UnsupportedOperationError,
)
from .galois import GaloisTool
from .keys import (
    GaloisKeys,
    KeySwitchComponent,
    PublicKey,
    RelinKeys,
    SecretKey,
    is_valid_for,
)
from .resources import Releasable, ensure_not_released
from .ring.rns import RNSPoly
from .ring.sampling import (
    expand_seed,
    new_seed,
    sample_gaussian,
    sample_ternary,
    sample_uniform_poly,
)
from .serialization import (
    CompressionMode,
    KeySink,
    save_galois_keys,
    save_relin_keys,
)

logger = logging.getLogger(__name__)


class KeyGenerator(Releasable):
    """
    Generates CKKS keys for one context.

    Usage:
        keygen = KeyGenerator(context)
        public_key = keygen.public_key
        relin_keys = keygen.relin_keys()
        galois_keys = keygen.galois_keys_from_steps([1, -1])
    """

    def __init__(
        self,
        context: CKKSContext,
        secret_key: Optional[SecretKey] = None,
        public_key: Optional[PublicKey] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize the key generator.

        Args:
            context: Validated CKKS context
            secret_key: Existing secret key to reuse (else a new one is sampled)
            public_key: Existing public key to reuse (requires secret_key)
            config: Engine configuration override

        Raises:
            InvalidArgumentError: If context is None
            InvalidStateError: If the context parameters are not set
            KeyMismatchError: If a given key is not valid for the context
        """
        if context is None:
            raise InvalidArgumentError("context cannot be None")
        if not context.parameters_set:
            raise InvalidStateError(
                f"encryption parameters are not set correctly: {context.parameter_error}"
            )
        if public_key is not None and secret_key is None:
            raise InvalidArgumentError("a public key can only be reused with its secret key")

        self._context = context
        self._config = config or get_config()
        self._galois_tool = GaloisTool(context.poly_modulus_degree)

        # Audit log
        self._audit_log: List[Dict[str, Any]] = []

        # Guards the first generation of the public key
        self._pk_lock = threading.Lock()
        self._public_key: Optional[PublicKey] = None

        if secret_key is not None:
            ensure_not_released(secret_key, "secret_key")
            if not is_valid_for(secret_key, context):
                raise KeyMismatchError("secret key is not valid for this context",
                                       expected=context.key_parms_id,
                                       actual=getattr(secret_key, 'parms_id', None))
            self._secret_key = secret_key.copy()
        else:
            self._secret_key = self._generate_secret_key()

        if public_key is not None:
            ensure_not_released(public_key, "public_key")
            if not is_valid_for(public_key, context):
                raise KeyMismatchError("public key is not valid for this context",
                                       expected=context.key_parms_id,
                                       actual=getattr(public_key, 'parms_id', None))
            self._public_key = public_key.copy()

    # -------------------------------------------------------------------------
    # SECRET AND PUBLIC KEY
    # -------------------------------------------------------------------------

    @property
    def context(self) -> CKKSContext:
        return self._context

    @property
    def secret_key(self) -> SecretKey:
        """Copy of the held secret key."""
        self._ensure_alive()
        return self._secret_key.copy()

    @property
    def public_key(self) -> PublicKey:
        """Public key, generated on first access and cached thereafter."""
        self._ensure_alive()
        cached = self._public_key
        if cached is None:
            with self._pk_lock:
                self._ensure_alive()
                if self._public_key is None:
                    self._public_key = self._generate_public_key()
                cached = self._public_key
        return cached.copy()

    def _generate_secret_key(self) -> SecretKey:
        key_data = self._context.key_context_data
        coeffs = sample_ternary(key_data.poly_modulus_degree)
        poly = RNSPoly.from_integers(coeffs, key_data.coeff_modulus)
        key = SecretKey(poly, key_data.parms_id)
        self._audit("SECRET_KEY_GENERATED", f"fingerprint={self._hash_key(key)}")
        return key

    def _sample_error(self, moduli) -> RNSPoly:
        n = self._context.poly_modulus_degree
        coeffs = sample_gaussian(
            n,
            self._config.noise_standard_deviation,
            self._config.noise_max_deviation,
        )
        return RNSPoly.from_integers(coeffs, moduli)

    def _generate_public_key(self) -> PublicKey:
        key_data = self._context.key_context_data
        moduli = key_data.coeff_modulus
        a = sample_uniform_poly(key_data.poly_modulus_degree, moduli)
        b = self._sample_error(moduli) - a * self._secret_key.poly
        key = PublicKey(b, a, key_data.parms_id)
        self._audit("PUBLIC_KEY_GENERATED", f"fingerprint={self._hash_key(key)}")
        return key

    # -------------------------------------------------------------------------
    # KEY SWITCHING KEYS
    # -------------------------------------------------------------------------

    def _generate_kswitch_components(self, target: RNSPoly) -> List[KeySwitchComponent]:
        """
        Switching key from `target` to s, one component per data prime.

        Component j encrypts (p mod q_j) * target on prime j only, so the
        decomposed products sum to p * target over all primes.
        """
        key_data = self._context.key_context_data
        moduli = key_data.coeff_modulus
        n = key_data.poly_modulus_degree
        special = moduli[-1]
        s = self._secret_key.poly

        components = []
        for j in range(len(moduli) - 1):
            seed = new_seed()
            a = expand_seed(seed, n, moduli)
            residues = [
                target.residue(i) * (special % q) % q if i == j else np.zeros(n, dtype=object)
                for i, q in enumerate(moduli)
            ]
            gadget = RNSPoly(residues, moduli)
            b = self._sample_error(moduli) - a * s + gadget
            components.append(KeySwitchComponent(b, a, seed))
        return components

    def _create_relin_keys(self) -> RelinKeys:
        self._ensure_alive()
        s = self._secret_key.poly
        keys = RelinKeys({RelinKeys.POWER: self._generate_kswitch_components(s * s)},
                         self._context.key_parms_id)
        self._audit("RELIN_KEYS_GENERATED", f"fingerprint={self._hash_key(keys)}")
        return keys

    def relin_keys(self) -> RelinKeys:
        """Generate a fresh relinearization key set."""
        return self._create_relin_keys()

    def relin_keys_export(self, sink: KeySink,
                          compression: CompressionMode = CompressionMode.SEEDED) -> int:
        """Generate relinearization keys and write them to `sink`; returns bytes written."""
        self._check_sink(sink)
        keys = self._create_relin_keys()
        return self._export(sink, save_relin_keys(keys, compression), compression, "relin")

    def _check_galois_support(self) -> None:
        if not self._context.qualifiers.using_batching:
            raise UnsupportedOperationError(
                "Galois keys require batching-capable parameters (every prime = 1 mod 2N)"
            )

    def _create_galois_keys(self, elements: Iterable[int]) -> GaloisKeys:
        self._ensure_alive()
        s = self._secret_key.poly
        keys = {}
        for elt in elements:
            keys[elt] = self._generate_kswitch_components(s.automorphism(elt))
        galois_keys = GaloisKeys(keys, self._context.key_parms_id)
        self._audit(
            "GALOIS_KEYS_GENERATED",
            f"count={len(keys)} fingerprint={self._hash_key(galois_keys)}",
        )
        return galois_keys

    def _resolve_elements(self, elements) -> List[int]:
        if elements is None:
            raise InvalidArgumentError("Galois elements cannot be None")
        elements = list(elements)
        if not elements:
            raise InvalidArgumentError("Galois elements cannot be empty")
        for elt in elements:
            self._galois_tool.check_elt(elt)
        return list(dict.fromkeys(elements))

    def galois_keys(self) -> GaloisKeys:
        """Canonical logarithmic-size set covering every rotation and conjugation."""
        self._ensure_alive()
        self._check_galois_support()
        return self._create_galois_keys(self._galois_tool.elts_all())

    def galois_keys_from_elements(self, elements: Iterable[int]) -> GaloisKeys:
        self._ensure_alive()
        self._check_galois_support()
        return self._create_galois_keys(self._resolve_elements(elements))

    def galois_keys_from_steps(self, steps: Iterable[int]) -> GaloisKeys:
        """Keys for signed rotation steps (0 = conjugation)."""
        self._ensure_alive()
        self._check_galois_support()
        return self._create_galois_keys(self._galois_tool.elts_from_steps(steps))

    def galois_keys_export(self, sink: KeySink,
                           compression: CompressionMode = CompressionMode.SEEDED) -> int:
        self._check_sink(sink)
        keys = self.galois_keys()
        return self._export(sink, save_galois_keys(keys, compression), compression, "galois")

    def galois_keys_from_elements_export(self, elements: Iterable[int], sink: KeySink,
                                         compression: CompressionMode = CompressionMode.SEEDED) -> int:
        self._check_sink(sink)
        keys = self.galois_keys_from_elements(elements)
        return self._export(sink, save_galois_keys(keys, compression), compression, "galois")

    def galois_keys_from_steps_export(self, steps: Iterable[int], sink: KeySink,
                                      compression: CompressionMode = CompressionMode.SEEDED) -> int:
        self._check_sink(sink)
        keys = self.galois_keys_from_steps(steps)
        return self._export(sink, save_galois_keys(keys, compression), compression, "galois")

    # -------------------------------------------------------------------------
    # EXPORT
    # -------------------------------------------------------------------------

    def _check_sink(self, sink: KeySink) -> None:
        self._ensure_alive()
        if sink is None:
            raise InvalidArgumentError("sink cannot be None")

    def _export(self, sink: KeySink, data: bytes, compression: CompressionMode,
                what: str) -> int:
        written = sink.write(data, compression)
        self._audit("KEYS_EXPORTED", f"{what} keys, {written} bytes, {compression.name}")
        return written

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    def _release_resources(self) -> None:
        with self._pk_lock:
            self._secret_key.release()
            self._secret_key = None
            if self._public_key is not None:
                self._public_key.release()
                self._public_key = None
        self._audit("KEYS_RELEASED", "Key material released")

    def close(self) -> None:
        self.release()

    # -------------------------------------------------------------------------
    # AUDIT AND UTILITIES
    # -------------------------------------------------------------------------

    def _audit(self, event: str, details: str) -> None:
        """Log an audit event."""
        if not self._config.audit_key_events:
            return

        entry = {
            'timestamp': time.time(),
            'event': event,
            'details': details,
        }
        self._audit_log.append(entry)

        logger.info("AUDIT: %s - %s", event, details)

    def get_audit_log(self) -> List[Dict[str, Any]]:
        """Get the audit log."""
        return self._audit_log.copy()

    def _hash_key(self, key: Any) -> str:
        """Fingerprint of a key for audit purposes."""
        if key is None:
            return "none"
        return hashlib.sha256(key.tobytes()).hexdigest()[:16]
