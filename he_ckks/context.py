"""
CKKS context and modulus chain.

A context is built once from EncryptionParameters and never mutated. It
holds the key level (every prime, including the special key-switching
prime) and the data-level chain: level 0 holds all data primes and each
following level drops the last prime of the previous one. Every level is
identified by an opaque parms_id; keys live at the key level and
ciphertexts at data levels.

Invalid parameters do not raise here: the context records the reason in
``parameter_error`` and reports ``parameters_set == False`` so that key
generation and evaluation can refuse to run.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import InvalidArgumentError, InvalidStateError
from .params import EncryptionParameters, SecurityLevel
from .ring.primes import supports_ntt

logger = logging.getLogger(__name__)

KEY_LEVEL = -1


def compute_parms_id(poly_modulus_degree: int, coeff_modulus: Tuple[int, ...]) -> str:
    """Opaque identifier of a parameter set."""
    material = f"{poly_modulus_degree}:" + ",".join(str(q) for q in coeff_modulus)
    return hashlib.sha256(material.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class ContextQualifiers:
    """Capabilities derived from the parameters."""
    using_ntt: bool
    using_batching: bool
    using_keyswitching: bool
    security_level: SecurityLevel


@dataclass(frozen=True)
class ContextData:
    """One parameter set of the chain."""
    parms_id: str
    level: int  # 0 = freshest data level, KEY_LEVEL for the key level
    chain_index: int  # highest at the key level, 0 at the last data level
    coeff_modulus: Tuple[int, ...]
    poly_modulus_degree: int
    qualifiers: ContextQualifiers
    next_parms_id: Optional[str] = None
    prev_parms_id: Optional[str] = None

    @property
    def total_coeff_modulus(self) -> int:
        total = 1
        for q in self.coeff_modulus:
            total *= q
        return total

    @property
    def total_coeff_modulus_bit_count(self) -> int:
        return self.total_coeff_modulus.bit_length()

    @property
    def is_key_level(self) -> bool:
        return self.level == KEY_LEVEL

    @property
    def last_modulus(self) -> int:
        return self.coeff_modulus[-1]

    @property
    def slot_count(self) -> int:
        return self.poly_modulus_degree // 2


class CKKSContext:
    """
    Immutable chain of parameter sets.

    Usage:
        params = EncryptionParameters.from_bit_sizes(8192, [60, 40, 40, 60])
        context = CKKSContext(params)
        assert context.parameters_set
        first = context.first_context_data   # level 0, primes [60, 40, 40]
        last = context.last_context_data     # level 2, primes [60]
    """

    def __init__(self, params: EncryptionParameters):
        if params is None:
            raise InvalidArgumentError("params cannot be None")

        self._params = params
        self._parameter_error: Optional[str] = None
        self._by_id: Dict[str, ContextData] = {}
        self._chain: Tuple[ContextData, ...] = ()
        self._key_data: Optional[ContextData] = None

        try:
            params.validate()
        except InvalidArgumentError as e:
            self._parameter_error = str(e)
            logger.warning("Encryption parameters rejected: %s", e)
            return

        self._build_chain()
        logger.debug("Created CKKS context: %s", self.describe())

    def _build_chain(self) -> None:
        n = self._params.poly_modulus_degree
        moduli = self._params.coeff_modulus
        using_ntt = all(supports_ntt(q, n) for q in moduli)
        qualifiers = ContextQualifiers(
            using_ntt=using_ntt,
            using_batching=using_ntt,
            using_keyswitching=len(moduli) > 1,
            security_level=self._params.security_level,
        )

        data_moduli = moduli[:-1]
        depth = len(data_moduli)
        ids = [compute_parms_id(n, moduli)] + [
            compute_parms_id(n, data_moduli[:depth - level]) for level in range(depth)
        ]

        entries = []
        for position, parms_id in enumerate(ids):
            level = position - 1
            entries.append(ContextData(
                parms_id=parms_id,
                level=level,
                chain_index=depth - position,
                coeff_modulus=moduli if level == KEY_LEVEL else data_moduli[:depth - level],
                poly_modulus_degree=n,
                qualifiers=qualifiers,
                next_parms_id=ids[position + 1] if position + 1 < len(ids) else None,
                prev_parms_id=ids[position - 1] if position > 0 else None,
            ))

        self._key_data = entries[0]
        self._chain = tuple(entries[1:])
        self._by_id = {entry.parms_id: entry for entry in entries}

    # -------------------------------------------------------------------------
    # VALIDITY
    # -------------------------------------------------------------------------

    @property
    def parameters_set(self) -> bool:
        """True when the parameters passed validation."""
        return self._parameter_error is None

    @property
    def parameter_error(self) -> Optional[str]:
        """Why validation failed, or None."""
        return self._parameter_error

    def _ensure_set(self) -> None:
        if not self.parameters_set:
            raise InvalidStateError(
                f"Encryption parameters are not set correctly: {self._parameter_error}"
            )

    # -------------------------------------------------------------------------
    # CHAIN ACCESS
    # -------------------------------------------------------------------------

    @property
    def params(self) -> EncryptionParameters:
        return self._params

    @property
    def poly_modulus_degree(self) -> int:
        return self._params.poly_modulus_degree

    @property
    def slot_count(self) -> int:
        return self._params.slot_count

    @property
    def special_prime(self) -> int:
        return self._params.coeff_modulus[-1]

    @property
    def chain(self) -> Tuple[ContextData, ...]:
        """Data levels, freshest first."""
        self._ensure_set()
        return self._chain

    @property
    def key_context_data(self) -> ContextData:
        self._ensure_set()
        return self._key_data

    @property
    def first_context_data(self) -> ContextData:
        return self.chain[0]

    @property
    def last_context_data(self) -> ContextData:
        return self.chain[-1]

    @property
    def key_parms_id(self) -> str:
        return self.key_context_data.parms_id

    @property
    def first_parms_id(self) -> str:
        return self.first_context_data.parms_id

    @property
    def last_parms_id(self) -> str:
        return self.last_context_data.parms_id

    @property
    def qualifiers(self) -> ContextQualifiers:
        return self.key_context_data.qualifiers

    def get_context_data(self, parms_id: str) -> ContextData:
        """
        Look up a parameter set by id.

        Raises:
            InvalidStateError: If the parameters are not set.
            InvalidArgumentError: If the id does not belong to this chain.
        """
        self._ensure_set()
        data = self._by_id.get(parms_id)
        if data is None:
            raise InvalidArgumentError(
                "parms_id is not part of this context's modulus chain",
                expected=[d.parms_id for d in self._chain],
                actual=parms_id,
            )
        return data

    def next_context_data(self, parms_id: str) -> Optional[ContextData]:
        """The level below `parms_id`, or None at the end of the chain."""
        data = self.get_context_data(parms_id)
        if data.next_parms_id is None:
            return None
        return self._by_id[data.next_parms_id]

    def prev_context_data(self, parms_id: str) -> Optional[ContextData]:
        """The level above `parms_id`, or None at the key level."""
        data = self.get_context_data(parms_id)
        if data.prev_parms_id is None:
            return None
        return self._by_id[data.prev_parms_id]

    def level_parms_id(self, level: int) -> str:
        """parms_id of a data level."""
        chain = self.chain
        if not 0 <= level < len(chain):
            raise InvalidArgumentError(
                "level outside the modulus chain",
                expected=f"0..{len(chain) - 1}",
                actual=level,
            )
        return chain[level].parms_id

    def __contains__(self, parms_id) -> bool:
        return parms_id in self._by_id

    def describe(self) -> dict:
        """Summary of the parameters and chain, for logging and inspection."""
        info = {
            'parameters_set': self.parameters_set,
            'poly_modulus_degree': self._params.poly_modulus_degree,
            'coeff_modulus_bits': list(self._params.coeff_modulus_bits),
            'security_level': self._params.security_level.value,
        }
        if self.parameters_set:
            info['levels'] = [
                {'level': d.level, 'parms_id': d.parms_id,
                 'coeff_modulus_bits': [q.bit_length() for q in d.coeff_modulus]}
                for d in self._chain
            ]
        else:
            info['parameter_error'] = self._parameter_error
        return info

    def __repr__(self) -> str:
        if not self.parameters_set:
            return f"CKKSContext(invalid: {self._parameter_error})"
        return (
            f"CKKSContext(N={self.poly_modulus_degree}, "
            f"bits={list(self._params.coeff_modulus_bits)}, levels={len(self._chain)})"
        )
