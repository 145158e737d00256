"""
Mapping between slot rotations and Galois elements.

The Galois group of X^N + 1 is generated by 3 (rotations of the N/2
slots) together with 2N - 1 (complex conjugation). With slot j placed at
the root zeta^(3^j), the automorphism X -> X^(3^k) rotates the slot
vector left by k.
"""

from typing import Iterable, List

from .errors import InvalidArgumentError


class GaloisTool:
    """Step/element conversions for ring degree N."""

    GENERATOR = 3

    def __init__(self, poly_modulus_degree: int):
        self._n = poly_modulus_degree
        self._m = 2 * poly_modulus_degree
        self._slots = poly_modulus_degree // 2

    @property
    def conjugation_elt(self) -> int:
        return self._m - 1

    @property
    def slot_count(self) -> int:
        return self._slots

    def is_valid_elt(self, elt) -> bool:
        """Odd integer in [1, 2N-1]."""
        if isinstance(elt, bool) or not isinstance(elt, int):
            return False
        return 1 <= elt < self._m and elt % 2 == 1

    def check_elt(self, elt) -> int:
        if not self.is_valid_elt(elt):
            raise InvalidArgumentError(
                "Galois element must be an odd integer in [1, 2N-1]",
                expected=f"odd in [1, {self._m - 1}]",
                actual=elt,
            )
        return elt

    def elt_from_step(self, step: int) -> int:
        """
        Galois element realizing a rotation by `step` slots.

        0 maps to conjugation, +k to 3^k (left rotation by k) and -k to
        3^(N/2 - k) (right rotation by k).
        """
        if isinstance(step, bool) or not isinstance(step, int):
            raise InvalidArgumentError("rotation step must be an integer", actual=step)
        if abs(step) >= self._slots and step != 0:
            raise InvalidArgumentError(
                "rotation step out of range",
                expected=f"|step| < {self._slots}",
                actual=step,
            )
        if step == 0:
            return self.conjugation_elt
        if step > 0:
            return pow(self.GENERATOR, step, self._m)
        return pow(self.GENERATOR, self._slots + step, self._m)

    def elts_from_steps(self, steps: Iterable[int]) -> List[int]:
        """Elements for `steps`, duplicates collapsed, first-seen order kept."""
        if steps is None:
            raise InvalidArgumentError("steps cannot be None")
        elts = list(dict.fromkeys(self.elt_from_step(step) for step in steps))
        if not elts:
            raise InvalidArgumentError("steps cannot be empty")
        return elts

    def elts_all(self) -> List[int]:
        """Canonical generating set: conjugation plus +-2^i rotations."""
        elts = [self.conjugation_elt]
        power = 1
        while power < self._slots:
            elts.append(pow(self.GENERATOR, power, self._m))
            elts.append(pow(self.GENERATOR, self._slots - power, self._m))
            power *= 2
        return list(dict.fromkeys(elts))

    def naf(self, step: int) -> List[int]:
        """
        Non-adjacent form of `step` as signed powers of two.

        Terms of magnitude N/2 are full turns and dropped.
        """
        terms = []
        power = 1
        value = step
        while value != 0:
            if value & 1:
                digit = 2 - (value % 4)
                if power != self._slots:
                    terms.append(digit * power)
                value -= digit
            value //= 2
            power *= 2
        return terms
