"""
Shared fixtures for the CKKS core tests.

The default context is deliberately small and insecure (N=1024, security
checks disabled) so that key generation and key switching stay fast.
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

POLY_DEGREE = 1024
BIT_SIZES = [50, 30, 30, 50]
SCALE = 2.0 ** 30


@pytest.fixture(scope="session")
def params():
    return EncryptionParameters.from_bit_sizes(
        POLY_DEGREE, BIT_SIZES, security_level=SecurityLevel.NONE,
    )


@pytest.fixture(scope="session")
def context(params):
    return CKKSContext(params)


@pytest.fixture(scope="session")
def other_context():
    """A valid context with a different modulus chain."""
    params = EncryptionParameters.from_bit_sizes(
        POLY_DEGREE, [50, 30, 50], security_level=SecurityLevel.NONE,
    )
    return CKKSContext(params)


@pytest.fixture(scope="session")
def keygen(context):
    return KeyGenerator(context)


@pytest.fixture(scope="session")
def relin_keys(keygen):
    return keygen.relin_keys()


@pytest.fixture(scope="session")
def galois_keys(keygen):
    return keygen.galois_keys_from_steps([1, 2, -1, 5, 0])


@pytest.fixture(scope="session")
def encoder(context):
    return CKKSEncoder(context)


@pytest.fixture(scope="session")
def encryptor(context, keygen):
    return Encryptor(context, keygen.public_key)


@pytest.fixture(scope="session")
def decryptor(context, keygen):
    return Decryptor(context, keygen.secret_key)


@pytest.fixture
def evaluator(context):
    return Evaluator(context)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def encrypt(encoder, encryptor):
    """Encrypt a vector at the given scale and level."""
    def _encrypt(values, scale=SCALE, parms_id=None):
        return encryptor.encrypt(encoder.encode(values, scale, parms_id))
    return _encrypt


@pytest.fixture
def decrypt(encoder, decryptor):
    """Decrypt and decode to real slot values."""
    def _decrypt(ciphertext):
        return encoder.decode(decryptor.decrypt(ciphertext))
    return _decrypt
