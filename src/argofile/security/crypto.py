"""AES-256-GCM encryption of byte strings and streams.

Output layout is always ``ciphertext || tag`` (16-byte tag). The nonce is
supplied by the caller and must never repeat under the same key; the
container generates a fresh one per save.

The byte functions use :class:`AESGCM`; the stream functions drive the
lower level GCM encryptor/decryptor chunk by chunk so large payloads are
never held in memory as a whole.
"""
from __future__ import annotations

import threading
from typing import BinaryIO, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from argofile import config
from argofile.core.exceptions import (
    AuthenticationFailureError,
    CorruptDataError,
    InvalidArgumentError,
)
from argofile.core.tasks import raise_if_cancelled
from .kdf import KdfParams, Password, derive_key


TAG_SIZE = config.TAG_SIZE
NONCE_SIZE = config.NONCE_SIZE


def _check_key_and_nonce(key: bytes, nonce: bytes) -> None:
    if not key or len(key) != config.KEY_SIZE:
        raise InvalidArgumentError(f"Key must be {config.KEY_SIZE} bytes")
    if not nonce or len(nonce) != NONCE_SIZE:
        raise InvalidArgumentError(f"Nonce must be {NONCE_SIZE} bytes")


# ---------------------------------------------------------------------------
# Byte strings
# ---------------------------------------------------------------------------

def encrypt_with_key(
    plaintext: bytes, key: bytes, nonce: bytes, associated_data: Optional[bytes] = None
) -> bytes:
    if plaintext is None:
        raise InvalidArgumentError("Plaintext buffer is required")
    _check_key_and_nonce(key, nonce)
    return AESGCM(key).encrypt(nonce, bytes(plaintext), associated_data)


def decrypt_with_key(
    data: bytes, key: bytes, nonce: bytes, associated_data: Optional[bytes] = None
) -> bytes:
    if data is None:
        raise InvalidArgumentError("Ciphertext buffer is required")
    _check_key_and_nonce(key, nonce)
    if len(data) < TAG_SIZE:
        raise CorruptDataError("Ciphertext too short to contain an authentication tag")
    try:
        return AESGCM(key).decrypt(nonce, bytes(data), associated_data)
    except InvalidTag as exc:
        raise AuthenticationFailureError() from exc


def encrypt(
    plaintext: bytes,
    password: Password,
    salt: bytes,
    nonce: bytes,
    params: Optional[KdfParams] = None,
) -> bytes:
    """
    Derive a key from ``password`` and ``salt`` and encrypt ``plaintext``.

    Returns ``ciphertext || tag``. Empty plaintext is valid and yields just
    the 16-byte tag.
    """
    if plaintext is None:
        raise InvalidArgumentError("Plaintext buffer is required")
    key = derive_key(password, salt, params)
    return encrypt_with_key(plaintext, key, nonce)


def decrypt(
    data: bytes,
    password: Password,
    salt: bytes,
    nonce: bytes,
    params: Optional[KdfParams] = None,
) -> bytes:
    """
    Reverse :func:`encrypt`.

    Raises AuthenticationFailureError when the tag does not verify, whatever
    the cause (wrong password, wrong nonce, tampered bytes).
    """
    if data is None:
        raise InvalidArgumentError("Ciphertext buffer is required")
    if len(data) < TAG_SIZE:
        raise CorruptDataError("Ciphertext too short to contain an authentication tag")
    key = derive_key(password, salt, params)
    return decrypt_with_key(data, key, nonce)


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------

def encrypt_stream_with_key(
    source: BinaryIO,
    sink: BinaryIO,
    key: bytes,
    nonce: bytes,
    chunk_size: int = config.CHUNK_SIZE,
    cancel_event: Optional[threading.Event] = None,
    associated_data: Optional[bytes] = None,
) -> int:
    """
    Encrypt ``source`` into ``sink`` and return the number of bytes written.

    ``associated_data`` is authenticated by the tag but not written.
    """
    _check_key_and_nonce(key, nonce)
    encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
    if associated_data:
        encryptor.authenticate_additional_data(associated_data)
    written = 0
    while True:
        raise_if_cancelled(cancel_event)
        chunk = source.read(chunk_size)
        if not chunk:
            break
        out = encryptor.update(chunk)
        sink.write(out)
        written += len(out)
    tail = encryptor.finalize()
    sink.write(tail)
    sink.write(encryptor.tag)
    return written + len(tail) + TAG_SIZE


def _remaining_length(source: BinaryIO) -> int:
    if not source.seekable():
        raise InvalidArgumentError("length is required for non-seekable streams")
    pos = source.tell()
    end = source.seek(0, 2)
    source.seek(pos)
    return end - pos


def decrypt_stream_with_key(
    source: BinaryIO,
    sink: BinaryIO,
    key: bytes,
    nonce: bytes,
    length: Optional[int] = None,
    chunk_size: int = config.CHUNK_SIZE,
    cancel_event: Optional[threading.Event] = None,
    associated_data: Optional[bytes] = None,
) -> int:
    """
    Decrypt ``length`` bytes of ``source`` (``ciphertext || tag``) into ``sink``.

    When ``length`` is None the rest of a seekable ``source`` is used.
    Plaintext is written before the tag is checked, so ``sink`` must be
    discarded if this function raises.
    """
    _check_key_and_nonce(key, nonce)
    if length is None:
        length = _remaining_length(source)
    if length < TAG_SIZE:
        raise CorruptDataError("Ciphertext too short to contain an authentication tag")

    decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).decryptor()
    if associated_data:
        decryptor.authenticate_additional_data(associated_data)
    remaining = length - TAG_SIZE
    written = 0
    while remaining > 0:
        raise_if_cancelled(cancel_event)
        chunk = source.read(min(chunk_size, remaining))
        if not chunk:
            raise CorruptDataError("Truncated ciphertext")
        remaining -= len(chunk)
        out = decryptor.update(chunk)
        sink.write(out)
        written += len(out)

    tag = source.read(TAG_SIZE)
    if len(tag) != TAG_SIZE:
        raise CorruptDataError("Truncated authentication tag")
    try:
        tail = decryptor.finalize_with_tag(tag)
    except InvalidTag as exc:
        raise AuthenticationFailureError() from exc
    sink.write(tail)
    return written + len(tail)


def encrypt_stream(
    source: BinaryIO,
    sink: BinaryIO,
    password: Password,
    salt: bytes,
    nonce: bytes,
    params: Optional[KdfParams] = None,
    chunk_size: int = config.CHUNK_SIZE,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    if source is None:
        raise InvalidArgumentError("Source stream is required")
    key = derive_key(password, salt, params)
    return encrypt_stream_with_key(
        source, sink, key, nonce, chunk_size=chunk_size, cancel_event=cancel_event
    )


def decrypt_stream(
    source: BinaryIO,
    sink: BinaryIO,
    password: Password,
    salt: bytes,
    nonce: bytes,
    params: Optional[KdfParams] = None,
    length: Optional[int] = None,
    chunk_size: int = config.CHUNK_SIZE,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    if source is None:
        raise InvalidArgumentError("Source stream is required")
    key = derive_key(password, salt, params)
    return decrypt_stream_with_key(
        source,
        sink,
        key,
        nonce,
        length=length,
        chunk_size=chunk_size,
        cancel_event=cancel_event,
    )
