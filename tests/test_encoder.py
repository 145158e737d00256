"""
Tests for encoding, encryption and decryption.
"""

import pytest
import numpy as np

from he_ckks import (
    CKKSContext,
    CKKSEncoder,
    Decryptor,
    EncryptionParameters,
    Encryptor,
    InvalidArgumentError,
    InvalidStateError,
    KeyGenerator,
    KeyMismatchError,
    SecurityLevel,
)

SCALE = 2.0 ** 30


class TestEncoder:
    """Tests for the canonical-embedding encoder."""

    def test_roundtrip_real(self, encoder, rng):
        values = rng.uniform(-1, 1, encoder.slot_count)
        decoded = encoder.decode(encoder.encode(values, SCALE))
        np.testing.assert_allclose(decoded, values, atol=1e-6)

    def test_roundtrip_complex(self, encoder, rng):
        values = rng.uniform(-1, 1, encoder.slot_count) + 1j * rng.uniform(-1, 1, encoder.slot_count)
        decoded = encoder.decode_complex(encoder.encode(values, SCALE))
        np.testing.assert_allclose(decoded, values, atol=1e-6)

    def test_short_input_padded(self, encoder):
        decoded = encoder.decode(encoder.encode([1.0, 2.0, 3.0], SCALE))
        np.testing.assert_allclose(decoded[:3], [1.0, 2.0, 3.0], atol=1e-6)
        np.testing.assert_allclose(decoded[3:], 0.0, atol=1e-6)

    def test_scalar_fills_slots(self, encoder):
        decoded = encoder.decode(encoder.encode(0.25, SCALE))
        np.testing.assert_allclose(decoded, 0.25, atol=1e-6)

    def test_too_many_values(self, encoder):
        with pytest.raises(InvalidArgumentError):
            encoder.encode(np.zeros(encoder.slot_count + 1), SCALE)

    def test_scale_out_of_bounds(self, context, encoder):
        with pytest.raises(InvalidArgumentError, match="scale out of bounds"):
            encoder.encode([1.0], 2.0 ** 60, context.last_parms_id)

    def test_non_positive_scale(self, encoder):
        with pytest.raises(InvalidArgumentError):
            encoder.encode([1.0], 0)

    def test_values_too_large(self, context, encoder):
        with pytest.raises(InvalidArgumentError, match="too large"):
            encoder.encode(2.0 ** 30, 2.0 ** 25, context.last_parms_id)

    def test_encode_at_level(self, context, encoder):
        plain = encoder.encode([1.0], SCALE, context.chain[1].parms_id)
        assert plain.level == 1
        assert plain.poly.moduli == context.chain[1].coeff_modulus

    def test_scale_from_parameters(self):
        params = EncryptionParameters.from_bit_sizes(
            1024, [50, 30, 30, 50], security_level=SecurityLevel.NONE, scale_bits=30,
        )
        plain = CKKSEncoder(CKKSContext(params)).encode([1.0])
        assert plain.scale == params.scale == SCALE

    def test_no_scale_anywhere(self, encoder):
        with pytest.raises(InvalidArgumentError, match="no scale"):
            encoder.encode([1.0])

    def test_key_level_rejected(self, context, encoder):
        with pytest.raises(InvalidArgumentError):
            encoder.encode([1.0], SCALE, context.key_parms_id)


class TestEncryption:
    """Tests for the encryptor and decryptor."""

    def test_fresh_ciphertext_shape(self, context, encrypt):
        ct = encrypt([0.5])
        assert ct.size == 2
        assert ct.level == 0
        assert ct.parms_id == context.first_parms_id
        assert ct.scale == SCALE

    def test_encrypt_at_every_level(self, context, encrypt, decrypt, rng):
        values = rng.uniform(0, 1, context.slot_count)
        for data in context.chain:
            ct = encrypt(values, parms_id=data.parms_id)
            assert ct.level == data.level
            np.testing.assert_allclose(decrypt(ct), values, atol=1e-4)

    def test_ciphertexts_are_randomized(self, encrypt):
        a = encrypt([0.5])
        b = encrypt([0.5])
        assert a.polys[0] != b.polys[0]

    def test_wrong_secret_key(self, context, encrypt, encoder):
        other = Decryptor(context, KeyGenerator(context).secret_key)
        values = np.full(encoder.slot_count, 0.5)
        decoded = encoder.decode(other.decrypt(encrypt(values)))
        assert np.max(np.abs(decoded - values)) > 1.0

    def test_foreign_public_key(self, context, other_context):
        foreign = KeyGenerator(other_context).public_key
        with pytest.raises(KeyMismatchError):
            Encryptor(context, foreign)

    def test_foreign_plaintext(self, encryptor, other_context):
        plain = CKKSEncoder(other_context).encode([1.0], SCALE)
        with pytest.raises(KeyMismatchError):
            encryptor.encrypt(plain)

    def test_copy_is_independent(self, encrypt):
        ct = encrypt([0.5])
        clone = ct.copy()
        clone.scale = 2.0 ** 31
        assert ct.scale == SCALE

    def test_released_keys_rejected(self, context, keygen):
        public_key = keygen.public_key
        secret_key = keygen.secret_key
        public_key.release()
        secret_key.release()
        with pytest.raises(InvalidStateError):
            Encryptor(context, public_key)
        with pytest.raises(InvalidStateError):
            Decryptor(context, secret_key)
