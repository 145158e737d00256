"""
Tests for the key generator.

Covers the three constructors, the cached public key, secret-key
round trips, Galois element selection, key freshness and release.
"""

import threading

import pytest
import numpy as np

from he_ckks import (
    BufferSink,
    CKKSContext,
    CompressionMode,
    EncryptionParameters,
    Encryptor,
    Evaluator,
    GaloisTool,
    InvalidArgumentError,
    InvalidStateError,
    KeyGenerator,
    KeyMismatchError,
    SecurityLevel,
    UnsupportedOperationError,
    is_metadata_valid_for,
    is_valid_for,
    load_relin_keys,
)
from he_ckks.config import EngineConfig
from he_ckks.ring.primes import create_coeff_modulus


class TestConstruction:
    """Tests for the KeyGenerator constructors."""

    def test_new_secret_key_is_valid(self, context):
        keygen = KeyGenerator(context)
        assert is_valid_for(keygen.secret_key, context)

    def test_none_context(self):
        with pytest.raises(InvalidArgumentError):
            KeyGenerator(None)

    def test_unvalidated_context(self):
        params = EncryptionParameters.from_bit_sizes(
            1024, [50, 30, 50], security_level=SecurityLevel.TC128,
        )
        with pytest.raises(InvalidStateError):
            KeyGenerator(CKKSContext(params))

    def test_secret_key_roundtrip(self, context, keygen):
        secret_key = keygen.secret_key
        again = KeyGenerator(context, secret_key)
        assert again.secret_key == secret_key

    def test_secret_key_from_other_context(self, keygen, other_context):
        with pytest.raises(KeyMismatchError):
            KeyGenerator(other_context, keygen.secret_key)

    def test_secret_and_public_key(self, context, keygen):
        public_key = keygen.public_key
        again = KeyGenerator(context, keygen.secret_key, public_key)
        assert again.public_key == public_key

    def test_public_key_from_other_context(self, context, keygen, other_context):
        foreign = KeyGenerator(other_context).public_key
        with pytest.raises(KeyMismatchError):
            KeyGenerator(context, keygen.secret_key, foreign)

    def test_public_key_without_secret_key(self, context, keygen):
        with pytest.raises(InvalidArgumentError):
            KeyGenerator(context, None, keygen.public_key)


class TestSecretAndPublicKey:
    """Tests for the key accessors."""

    def test_secret_key_is_ternary_and_stable(self, context, keygen):
        first = keygen.secret_key
        second = keygen.secret_key
        assert first == second
        assert first is not second
        coeffs = first.poly.to_signed_integers()
        assert set(int(c) for c in coeffs) <= {-1, 0, 1}

    def test_public_key_cached(self, keygen):
        assert keygen.public_key == keygen.public_key

    def test_public_key_valid(self, context, keygen):
        assert is_valid_for(keygen.public_key, context)

    def test_public_key_single_generation_under_threads(self, context):
        keygen = KeyGenerator(context)
        results = []
        barrier = threading.Barrier(4)

        def read():
            barrier.wait()
            results.append(keygen.public_key)

        threads = [threading.Thread(target=read) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(pk == results[0] for pk in results)
        events = [e['event'] for e in keygen.get_audit_log()]
        assert events.count("PUBLIC_KEY_GENERATED") == 1

    def test_public_key_encrypts_to_secret_key(self, context, keygen, encoder, decrypt):
        encryptor = Encryptor(context, keygen.public_key)
        values = np.linspace(-1, 1, encoder.slot_count)
        ct = encryptor.encrypt(encoder.encode(values, 2.0 ** 30))
        np.testing.assert_allclose(decrypt(ct), values, atol=1e-4)


class TestGaloisElements:
    """Tests for step -> element mapping and Galois key sets."""

    def test_step_mapping(self, context):
        n = context.poly_modulus_degree
        tool = GaloisTool(n)
        assert tool.elt_from_step(0) == 2 * n - 1
        for k in (1, 2, 7, n // 2 - 1):
            assert tool.elt_from_step(k) == pow(3, k, 2 * n)
            assert tool.elt_from_step(-k) == pow(3, n // 2 - k, 2 * n)

    def test_steps_and_elements_give_same_keys(self, context, keygen):
        tool = GaloisTool(context.poly_modulus_degree)
        steps = [1, -3, 0]
        from_steps = keygen.galois_keys_from_steps(steps)
        from_elts = keygen.galois_keys_from_elements(tool.elts_from_steps(steps))
        assert from_steps.elements == from_elts.elements

    def test_duplicate_steps_collapse(self, context, keygen):
        half = context.slot_count // 2
        # +half and -half rotate to the same place
        keys = keygen.galois_keys_from_steps([1, 1, 0, 0, half, -half])
        assert len(keys) == 3

    def test_full_set_is_logarithmic(self, context, keygen):
        keys = keygen.galois_keys()
        log_slots = int(np.log2(context.slot_count))
        assert len(keys) == 2 * log_slots
        assert 2 * context.poly_modulus_degree - 1 in keys

    @pytest.mark.parametrize("elt", [0, 2, 2048, 2049, -1])
    def test_invalid_element(self, keygen, elt):
        with pytest.raises(InvalidArgumentError):
            keygen.galois_keys_from_elements([elt])

    def test_empty_or_none_elements(self, keygen):
        with pytest.raises(InvalidArgumentError):
            keygen.galois_keys_from_elements([])
        with pytest.raises(InvalidArgumentError):
            keygen.galois_keys_from_elements(None)

    def test_step_out_of_range(self, context, keygen):
        with pytest.raises(InvalidArgumentError):
            keygen.galois_keys_from_steps([context.slot_count])
        with pytest.raises(InvalidArgumentError):
            keygen.galois_keys_from_steps([])

    def test_without_batching_support(self):
        moduli = (create_coeff_modulus(64, [30])[0], 1000003)
        context = CKKSContext(EncryptionParameters(64, moduli, SecurityLevel.NONE))
        keygen = KeyGenerator(context)
        with pytest.raises(UnsupportedOperationError):
            keygen.galois_keys()
        with pytest.raises(UnsupportedOperationError):
            keygen.galois_keys_from_steps([1])
        # Relinearization keys need no batching support
        assert is_valid_for(keygen.relin_keys(), context)


class TestRelinKeys:
    """Tests for relinearization key generation."""

    def test_layout(self, context, relin_keys):
        assert is_valid_for(relin_keys, context)
        assert len(relin_keys.key) == len(context.first_context_data.coeff_modulus)

    def test_fresh_but_interchangeable(self, context, keygen, encrypt, decrypt):
        first = keygen.relin_keys()
        second = keygen.relin_keys()
        assert first.tobytes() != second.tobytes()

        evaluator = Evaluator(context)
        values = np.linspace(0, 1, context.slot_count)
        ct = encrypt(values)
        squared = evaluator.square(ct)
        a = evaluator.relinearize(squared, first)
        b = evaluator.relinearize(squared, second)
        np.testing.assert_allclose(decrypt(a), values ** 2, atol=1e-3)
        np.testing.assert_allclose(decrypt(b), decrypt(a), atol=1e-3)

    def test_galois_keys_fresh(self, keygen):
        assert keygen.galois_keys_from_steps([1]).tobytes() != \
            keygen.galois_keys_from_steps([1]).tobytes()

    def test_other_context_is_mismatch(self, other_context, relin_keys):
        assert not is_metadata_valid_for(relin_keys, other_context)


class TestExport:
    """Tests for the export variants."""

    def test_seeded_export_halves_size(self, context, keygen):
        seeded = BufferSink()
        plain = BufferSink()
        n_seeded = keygen.relin_keys_export(seeded, CompressionMode.SEEDED)
        n_plain = keygen.relin_keys_export(plain, CompressionMode.NONE)
        assert n_seeded == len(seeded.getvalue())
        assert seeded.compression == CompressionMode.SEEDED
        assert n_seeded < 0.6 * n_plain

    def test_exported_relin_keys_load(self, context, keygen):
        sink = BufferSink()
        keygen.relin_keys_export(sink)
        keys = load_relin_keys(sink.getvalue(), context)
        assert is_valid_for(keys, context)

    def test_galois_export_variants(self, keygen):
        for export in (
            lambda sink: keygen.galois_keys_from_steps_export([1, -1], sink),
            lambda sink: keygen.galois_keys_from_elements_export([3, 5], sink),
        ):
            sink = BufferSink()
            assert export(sink) == len(sink.getvalue()) > 0

    def test_export_audited(self, context):
        keygen = KeyGenerator(context)
        keygen.relin_keys_export(BufferSink(), CompressionMode.FULL)
        events = [e['event'] for e in keygen.get_audit_log()]
        assert events[0] == "SECRET_KEY_GENERATED"
        assert "RELIN_KEYS_GENERATED" in events
        assert events[-1] == "KEYS_EXPORTED"

    def test_none_sink(self, keygen):
        with pytest.raises(InvalidArgumentError):
            keygen.relin_keys_export(None)


class TestLifecycle:
    """Tests for release and the audit switch."""

    def test_use_after_release(self, context):
        keygen = KeyGenerator(context)
        keygen.release()
        assert keygen.released
        for access in (
            lambda: keygen.secret_key,
            lambda: keygen.public_key,
            lambda: keygen.relin_keys(),
            lambda: keygen.galois_keys(),
            lambda: keygen.relin_keys_export(BufferSink()),
        ):
            with pytest.raises(InvalidStateError):
                access()

    def test_context_manager_releases(self, context):
        with KeyGenerator(context) as keygen:
            secret_key = keygen.secret_key
        assert keygen.released
        assert keygen.get_audit_log()[-1]['event'] == "KEYS_RELEASED"
        # Copies handed out earlier stay usable
        assert is_valid_for(secret_key, context)

    def test_release_is_idempotent(self, context):
        keygen = KeyGenerator(context)
        keygen.close()
        keygen.close()
        events = [e['event'] for e in keygen.get_audit_log()]
        assert events.count("KEYS_RELEASED") == 1

    def test_audit_disabled(self, context):
        config = EngineConfig(audit_key_events=False)
        keygen = KeyGenerator(context, config=config)
        keygen.public_key
        assert keygen.get_audit_log() == []

    def test_released_key_rejected(self, context, keygen):
        secret_key = keygen.secret_key
        secret_key.release()
        with pytest.raises(InvalidStateError):
            KeyGenerator(context, secret_key)

    def test_released_public_key_rejected(self, context, keygen):
        public_key = keygen.public_key
        public_key.release()
        with pytest.raises(InvalidStateError):
            KeyGenerator(context, keygen.secret_key, public_key)
