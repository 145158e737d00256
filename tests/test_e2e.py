"""
End-to-end scenario at production ring degree: evaluate x^2 + x.

Uses the default 128-bit profile shape (N=16384, 60/40/40/60 bits),
so it is marked slow.
"""

import pytest
import numpy as np

from he_ckks import (
    CKKSContext,
    CKKSEncoder,
    Decryptor,
    EncryptionParameters,
    Encryptor,
    Evaluator,
    KeyGenerator,
    SecurityLevel,
)

pytestmark = pytest.mark.slow

SCALE = 2.0 ** 40


@pytest.fixture(scope="module")
def setup():
    params = EncryptionParameters.from_bit_sizes(
        16384, [60, 40, 40, 60], security_level=SecurityLevel.TC128,
    )
    context = CKKSContext(params)
    keygen = KeyGenerator(context)
    return {
        'context': context,
        'keygen': keygen,
        'encoder': CKKSEncoder(context),
        'encryptor': Encryptor(context, keygen.public_key),
        'decryptor': Decryptor(context, keygen.secret_key),
    }


class TestSquarePlusLinear:
    """x^2 + x with one relinearization and one rescale."""

    def test_polynomial_evaluation(self, setup):
        context = setup['context']
        encoder = setup['encoder']
        evaluator = Evaluator(context)
        relin_keys = setup['keygen'].relin_keys()

        assert encoder.slot_count == 8192
        values = np.random.default_rng(7).uniform(0, 1, encoder.slot_count)
        x = setup['encryptor'].encrypt(encoder.encode(values, SCALE))

        x2 = evaluator.square(x)
        evaluator.relinearize_inplace(x2, relin_keys)
        evaluator.rescale_to_next_inplace(x2)
        assert x2.level == 1
        assert x2.size == 2

        x = evaluator.mod_switch_to(x, x2.parms_id)
        x.scale = SCALE
        x2.scale = SCALE
        result = evaluator.add(x2, x)

        decoded = encoder.decode(setup['decryptor'].decrypt(result))
        assert np.max(np.abs(decoded - (values ** 2 + values))) < 1e-3

        counters = evaluator.counters
        assert counters.multiplications == 1
        assert counters.relinearizations == 1
        assert counters.rescales == 1

    def test_rotation(self, setup):
        context = setup['context']
        encoder = setup['encoder']
        evaluator = Evaluator(context)
        galois_keys = setup['keygen'].galois_keys_from_steps([1])

        values = np.random.default_rng(11).uniform(0, 1, encoder.slot_count)
        ct = setup['encryptor'].encrypt(encoder.encode(values, SCALE))
        rotated = evaluator.rotate_vector(ct, 1, galois_keys)

        decoded = encoder.decode(setup['decryptor'].decrypt(rotated))
        assert np.max(np.abs(decoded - np.roll(values, -1))) < 1e-3
