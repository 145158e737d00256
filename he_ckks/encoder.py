"""
CKKS canonical-embedding encoder.

A plaintext polynomial m(X) of degree < N represents the N/2 complex
values m(zeta^(3^j)), zeta = exp(i*pi/N). Encoding multiplies the values
by the scale, inverts the embedding with an FFT and rounds to integer
coefficients; decoding evaluates the embedding again and divides by the
plaintext's scale.
"""

from numbers import Number
from typing import Optional, Sequence, Union

import numpy as np

from .ciphertext import Plaintext
from .context import CKKSContext
from .errors import InvalidArgumentError, InvalidStateError
from .ring.rns import RNSPoly


class CKKSEncoder:
    """
    Encode real or complex vectors into plaintexts.

    Usage:
        encoder = CKKSEncoder(context)
        plain = encoder.encode(values, scale=2.0 ** 40)
        values = encoder.decode(plain)
    """

    def __init__(self, context: CKKSContext):
        if context is None:
            raise InvalidArgumentError("context cannot be None")
        if not context.parameters_set:
            raise InvalidStateError("encryption parameters are not set correctly")
        self._context = context
        n = context.poly_modulus_degree
        self._n = n
        self._slots = n // 2

        # Slot j sits at root zeta^(2t_j + 1), its conjugate at index N-1-t_j
        m = 2 * n
        rotation_group = np.array(
            [pow(3, j, m) for j in range(self._slots)], dtype=np.int64
        )
        self._slot_index = (rotation_group - 1) // 2
        self._conj_index = n - 1 - self._slot_index
        self._twist = np.exp(1j * np.pi * np.arange(n) / n)

    @property
    def slot_count(self) -> int:
        return self._slots

    def encode(
        self,
        values: Union[Number, Sequence[complex], np.ndarray],
        scale: Optional[float] = None,
        parms_id: Optional[str] = None,
    ) -> Plaintext:
        """
        Encode up to N/2 values (a scalar fills every slot).

        `scale` defaults to the scale named by the encryption parameters.

        Raises:
            InvalidArgumentError: For too many values, a non-positive scale,
                or a scale/value too large for the target level.
        """
        if parms_id is None:
            parms_id = self._context.first_parms_id
        data = self._context.get_context_data(parms_id)
        if data.is_key_level:
            raise InvalidArgumentError("cannot encode at the key level", actual=parms_id)

        if scale is None:
            scale = self._context.params.scale
            if scale is None:
                raise InvalidArgumentError("no scale given and the parameters name none")
        scale = float(scale)
        if not scale > 0:
            raise InvalidArgumentError("scale must be positive", actual=scale)
        if int(scale).bit_length() >= data.total_coeff_modulus_bit_count:
            raise InvalidArgumentError(
                "scale out of bounds",
                expected=f"< 2^{data.total_coeff_modulus_bit_count - 1}",
                actual=scale,
            )

        slots = np.zeros(self._slots, dtype=np.complex128)
        if isinstance(values, Number):
            slots[:] = values
        else:
            arr = np.asarray(values, dtype=np.complex128).reshape(-1)
            if len(arr) > self._slots:
                raise InvalidArgumentError(
                    "too many values to encode", expected=f"<= {self._slots}", actual=len(arr)
                )
            slots[:len(arr)] = arr
        if not np.all(np.isfinite(slots)):
            raise InvalidArgumentError("values must be finite")

        embedded = np.zeros(self._n, dtype=np.complex128)
        embedded[self._slot_index] = slots * scale
        embedded[self._conj_index] = np.conj(slots) * scale
        coeffs = np.rint(np.real(np.fft.fft(embedded) / self._n * np.conj(self._twist)))

        bound = data.total_coeff_modulus // 2
        max_coeff = float(np.max(np.abs(coeffs))) if len(coeffs) else 0.0
        if max_coeff >= bound:
            raise InvalidArgumentError("encoded values are too large for the coefficient modulus")

        integers = np.array([int(c) for c in coeffs], dtype=object)
        poly = RNSPoly.from_integers(integers, data.coeff_modulus)
        return Plaintext(poly, parms_id, data.level, scale)

    def decode_complex(self, plain: Plaintext) -> np.ndarray:
        """Complex slot values of `plain`."""
        if not isinstance(plain, Plaintext):
            raise InvalidArgumentError("plain must be a Plaintext", actual=type(plain).__name__)
        coeffs = plain.poly.to_signed_integers().astype(np.float64) / plain.scale
        embedded = self._n * np.fft.ifft(coeffs * self._twist)
        return embedded[self._slot_index]

    def decode(self, plain: Plaintext) -> np.ndarray:
        """Real parts of the slot values of `plain`."""
        return np.real(self.decode_complex(plain))
