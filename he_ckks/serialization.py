"""
Binary key serialization.

Format:
  - Magic (8 bytes): b'HECKKS01'
  - Header: kind (uint8), compression (uint8), payload length (uint64)
  - Payload:
      parms_id (16 ASCII bytes), N (uint32), prime count (uint16),
      primes (uint64 each), then the key body.
    Polynomials are written residue after residue as little-endian uint64.
    Key-switching components are flagged: a seeded component stores its
    32-byte seed in place of the uniform polynomial `a`.

CompressionMode.SEEDED writes seeds where available (roughly halving
key-switching keys). CompressionMode.FULL additionally deflates the
payload with zlib.
"""

import io
import logging
import struct
import zlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import BinaryIO, Dict, List, Optional, Tuple

import numpy as np

from .context import CKKSContext
from .errors import InvalidArgumentError, KeyMismatchError
from .keys import (
    GaloisKeys,
    KeySwitchComponent,
    KSwitchKeys,
    PublicKey,
    RelinKeys,
    SecretKey,
    is_metadata_valid_for,
)
from .ring.rns import RNSPoly
from .ring.sampling import SEED_BYTES, expand_seed

logger = logging.getLogger(__name__)

MAGIC = b'HECKKS01'
_HEADER = struct.Struct('<BBQ')
_PARMS = struct.Struct('<16sIH')


class CompressionMode(Enum):
    """How key material is written."""
    NONE = 0
    SEEDED = 1
    FULL = 2


class _Kind(Enum):
    SECRET = 1
    PUBLIC = 2
    RELIN = 3
    GALOIS = 4


# =============================================================================
# SINKS
# =============================================================================

class KeySink(ABC):
    """Destination for exported key material."""

    @abstractmethod
    def write(self, data: bytes, compression: CompressionMode) -> int:
        """Write `data`; return the number of bytes written."""
        pass


class StreamSink(KeySink):
    """Writes to a binary file-like object."""

    def __init__(self, stream: BinaryIO):
        if stream is None:
            raise InvalidArgumentError("stream cannot be None")
        self._stream = stream

    def write(self, data: bytes, compression: CompressionMode) -> int:
        written = self._stream.write(data)
        return len(data) if written is None else written


class BufferSink(KeySink):
    """Collects exported bytes in memory."""

    def __init__(self):
        self._buffer = io.BytesIO()
        self.compression: Optional[CompressionMode] = None

    def write(self, data: bytes, compression: CompressionMode) -> int:
        self.compression = compression
        return self._buffer.write(data)

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()


# =============================================================================
# ENCODING
# =============================================================================

def _encode_poly(poly: RNSPoly) -> bytes:
    return b''.join(np.asarray(r, dtype='<u8').tobytes() for r in poly.residues)


def _encode_prefix(parms_id: str, poly_modulus_degree: int, moduli: Tuple[int, ...]) -> bytes:
    parts = [_PARMS.pack(parms_id.encode('ascii'), poly_modulus_degree, len(moduli))]
    parts.append(struct.pack(f'<{len(moduli)}Q', *moduli))
    return b''.join(parts)


def _encode_kswitch(keys: KSwitchKeys, seeded: bool) -> bytes:
    parts = [struct.pack('<I', len(keys))]
    for index in sorted(keys.keys):
        components = keys.components(index)
        parts.append(struct.pack('<QH', index, len(components)))
        for component in components:
            use_seed = seeded and component.seed is not None
            parts.append(struct.pack('<B', 1 if use_seed else 0))
            parts.append(_encode_poly(component.b))
            if use_seed:
                parts.append(component.seed)
            else:
                parts.append(_encode_poly(component.a))
    return b''.join(parts)


def _first_poly(key) -> RNSPoly:
    if isinstance(key, SecretKey):
        return key.poly
    if isinstance(key, PublicKey):
        return key.polys[0]
    if not len(key):
        raise InvalidArgumentError("cannot serialize an empty key set")
    return next(iter(key.keys.values()))[0].b


def _serialize(kind: _Kind, key, body: bytes, compression: CompressionMode) -> bytes:
    first = _first_poly(key)
    payload = _encode_prefix(key.parms_id, first.degree, first.moduli) + body
    if compression == CompressionMode.FULL:
        payload = zlib.compress(payload)
    return MAGIC + _HEADER.pack(kind.value, compression.value, len(payload)) + payload


def _check_mode(compression) -> CompressionMode:
    if not isinstance(compression, CompressionMode):
        raise InvalidArgumentError("unknown compression mode", actual=compression)
    return compression


def save_secret_key(key: SecretKey, compression: CompressionMode = CompressionMode.NONE) -> bytes:
    """Serialize a secret key. Secret material is never seeded."""
    compression = _check_mode(compression)
    return _serialize(_Kind.SECRET, key, _encode_poly(key.poly), compression)


def save_public_key(key: PublicKey, compression: CompressionMode = CompressionMode.NONE) -> bytes:
    compression = _check_mode(compression)
    body = b''.join(_encode_poly(p) for p in key.polys)
    return _serialize(_Kind.PUBLIC, key, body, compression)


def save_relin_keys(keys: RelinKeys, compression: CompressionMode = CompressionMode.SEEDED) -> bytes:
    compression = _check_mode(compression)
    body = _encode_kswitch(keys, compression != CompressionMode.NONE)
    return _serialize(_Kind.RELIN, keys, body, compression)


def save_galois_keys(keys: GaloisKeys, compression: CompressionMode = CompressionMode.SEEDED) -> bytes:
    compression = _check_mode(compression)
    body = _encode_kswitch(keys, compression != CompressionMode.NONE)
    return _serialize(_Kind.GALOIS, keys, body, compression)


# =============================================================================
# DECODING
# =============================================================================

class _Reader:
    """Bounds-checked cursor over a payload."""

    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0

    def take(self, count: int) -> bytes:
        end = self._offset + count
        if end > len(self._data):
            raise InvalidArgumentError("truncated key data")
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    def poly(self, degree: int, moduli: Tuple[int, ...]) -> RNSPoly:
        residues = []
        for _ in moduli:
            raw = np.frombuffer(self.take(8 * degree), dtype='<u8')
            residues.append(raw.astype(object))
        return RNSPoly(residues, moduli)

    def finish(self) -> None:
        if self._offset != len(self._data):
            raise InvalidArgumentError("trailing bytes after key data")


_U32 = struct.Struct('<I')
_INDEX = struct.Struct('<QH')
_FLAG = struct.Struct('<B')


def _open(data: bytes, kind: _Kind, context: CKKSContext) -> Tuple[_Reader, str, int, Tuple[int, ...]]:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise InvalidArgumentError("key data must be bytes", actual=type(data).__name__)
    data = bytes(data)
    if data[:len(MAGIC)] != MAGIC:
        raise InvalidArgumentError(f"Invalid magic number: {data[:len(MAGIC)]!r}")
    header = _Reader(data[len(MAGIC):len(MAGIC) + _HEADER.size])
    kind_value, mode_value, length = header.unpack(_HEADER)
    if kind_value != kind.value:
        raise InvalidArgumentError("unexpected key kind", expected=kind.name,
                                   actual=kind_value)
    try:
        mode = CompressionMode(mode_value)
    except ValueError:
        raise InvalidArgumentError("unknown compression mode", actual=mode_value) from None

    payload = data[len(MAGIC) + _HEADER.size:]
    if len(payload) != length:
        raise InvalidArgumentError("payload length mismatch", expected=length,
                                   actual=len(payload))
    if mode == CompressionMode.FULL:
        try:
            payload = zlib.decompress(payload)
        except zlib.error as e:
            raise InvalidArgumentError(f"corrupt compressed payload: {e}") from e

    reader = _Reader(payload)
    raw_id, degree, count = reader.unpack(_PARMS)
    moduli = struct.unpack(f'<{count}Q', reader.take(8 * count))
    parms_id = raw_id.decode('ascii')

    key_data = context.key_context_data
    if parms_id != key_data.parms_id or moduli != key_data.coeff_modulus:
        raise KeyMismatchError("key data belongs to a different context",
                               expected=key_data.parms_id, actual=parms_id)
    return reader, parms_id, degree, moduli


def _decode_kswitch(reader: _Reader, degree: int,
                    moduli: Tuple[int, ...]) -> Dict[int, List[KeySwitchComponent]]:
    keys = {}
    (count,) = reader.unpack(_U32)
    for _ in range(count):
        index, components = reader.unpack(_INDEX)
        decoded = []
        for _ in range(components):
            (seeded,) = reader.unpack(_FLAG)
            b = reader.poly(degree, moduli)
            if seeded:
                seed = reader.take(SEED_BYTES)
                decoded.append(KeySwitchComponent(b, expand_seed(seed, degree, moduli), seed))
            else:
                decoded.append(KeySwitchComponent(b, reader.poly(degree, moduli)))
        keys[index] = decoded
    return keys


def _validated(key, context: CKKSContext):
    if not is_metadata_valid_for(key, context):
        raise KeyMismatchError(f"{type(key).__name__} does not match the context layout")
    return key


def load_secret_key(data: bytes, context: CKKSContext) -> SecretKey:
    reader, parms_id, degree, moduli = _open(data, _Kind.SECRET, context)
    poly = reader.poly(degree, moduli)
    reader.finish()
    return _validated(SecretKey(poly, parms_id), context)


def load_public_key(data: bytes, context: CKKSContext) -> PublicKey:
    reader, parms_id, degree, moduli = _open(data, _Kind.PUBLIC, context)
    b = reader.poly(degree, moduli)
    a = reader.poly(degree, moduli)
    reader.finish()
    return _validated(PublicKey(b, a, parms_id), context)


def load_relin_keys(data: bytes, context: CKKSContext) -> RelinKeys:
    """Load relinearization keys, expanding seeded components."""
    reader, parms_id, degree, moduli = _open(data, _Kind.RELIN, context)
    keys = _decode_kswitch(reader, degree, moduli)
    reader.finish()
    return _validated(RelinKeys(keys, parms_id), context)


def load_galois_keys(data: bytes, context: CKKSContext) -> GaloisKeys:
    """Load Galois keys, expanding seeded components."""
    reader, parms_id, degree, moduli = _open(data, _Kind.GALOIS, context)
    keys = _decode_kswitch(reader, degree, moduli)
    reader.finish()
    logger.debug("Loaded %d Galois keys", len(keys))
    return _validated(GaloisKeys(keys, parms_id), context)
