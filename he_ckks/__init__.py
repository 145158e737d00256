"""
he_ckks: leveled CKKS key management and evaluation core.

Generates a secret key and everything derived from it (public,
relinearization and Galois keys) and evaluates add, multiply,
relinearize, rescale, modulus-switch and rotate over a chain of
successively smaller parameter sets, rejecting every level, scale or
size mismatch instead of repairing it.

Typical flow:
    params = EncryptionParameters.from_bit_sizes(16384, [60, 40, 40, 60])
    context = CKKSContext(params)
    keygen = KeyGenerator(context)
    encoder = CKKSEncoder(context)
    encryptor = Encryptor(context, keygen.public_key)
    evaluator = Evaluator(context)
"""

__version__ = "0.1.0"

from .ciphertext import Ciphertext, Plaintext
from .config import EngineConfig, get_config, set_config
from .context import CKKSContext, ContextData, ContextQualifiers
from .encoder import CKKSEncoder
from .encryptor import Decryptor, Encryptor
from .errors import (
    CKKSError,
    ErrorKind,
    InvalidArgumentError,
    InvalidStateError,
    KeyMismatchError,
    LevelExhaustedError,
    LevelMismatchError,
    MissingKeyError,
    ScaleMismatchError,
    UnsupportedOperationError,
)
from .evaluator import Evaluator, OperationCounters
from .galois import GaloisTool
from .keygen import KeyGenerator
from .keys import (
    GaloisKeys,
    KeySwitchComponent,
    KeyType,
    PublicKey,
    RelinKeys,
    SecretKey,
    is_metadata_valid_for,
    is_valid_for,
)
from .params import (
    CKKSProfile,
    EncryptionParameters,
    SecurityLevel,
    get_profile,
)
from .serialization import (
    BufferSink,
    CompressionMode,
    KeySink,
    StreamSink,
    load_galois_keys,
    load_public_key,
    load_relin_keys,
    load_secret_key,
    save_galois_keys,
    save_public_key,
    save_relin_keys,
    save_secret_key,
)

__all__ = [
    # Parameters and context
    'EncryptionParameters',
    'SecurityLevel',
    'CKKSProfile',
    'get_profile',
    'CKKSContext',
    'ContextData',
    'ContextQualifiers',
    # Configuration
    'EngineConfig',
    'get_config',
    'set_config',
    # Data
    'Ciphertext',
    'Plaintext',
    'CKKSEncoder',
    'Encryptor',
    'Decryptor',
    # Keys
    'KeyGenerator',
    'KeyType',
    'SecretKey',
    'PublicKey',
    'RelinKeys',
    'GaloisKeys',
    'KeySwitchComponent',
    'is_valid_for',
    'is_metadata_valid_for',
    'GaloisTool',
    # Evaluation
    'Evaluator',
    'OperationCounters',
    # Serialization
    'CompressionMode',
    'KeySink',
    'StreamSink',
    'BufferSink',
    'save_secret_key',
    'save_public_key',
    'save_relin_keys',
    'save_galois_keys',
    'load_secret_key',
    'load_public_key',
    'load_relin_keys',
    'load_galois_keys',
    # Errors
    'ErrorKind',
    'CKKSError',
    'InvalidArgumentError',
    'InvalidStateError',
    'KeyMismatchError',
    'UnsupportedOperationError',
    'LevelMismatchError',
    'ScaleMismatchError',
    'LevelExhaustedError',
    'MissingKeyError',
]
