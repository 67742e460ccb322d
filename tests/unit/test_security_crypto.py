"""Unit tests for AES-GCM byte and stream encryption."""

import io
import os
import threading

import pytest

from argofile.core.exceptions import (
    AuthenticationFailureError,
    CorruptDataError,
    InvalidArgumentError,
    OperationCancelledError,
)
from argofile.security import crypto
from argofile.security.kdf import KdfParams, generate_nonce, generate_salt

FAST = KdfParams(iterations=1000)


class _NonSeekable(io.RawIOBase):
    def __init__(self, data: bytes):
        self._inner = io.BytesIO(data)

    def readable(self):
        return True

    def readinto(self, buffer):
        data = self._inner.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


@pytest.fixture
def key():
    return os.urandom(32)


@pytest.fixture
def nonce():
    return generate_nonce()


# ==============================================================================
# Byte strings
# ==============================================================================

def test_encrypt_with_key_roundtrip(key, nonce):
    data = b"ledger entries" * 100
    ct = crypto.encrypt_with_key(data, key, nonce)
    assert len(ct) == len(data) + crypto.TAG_SIZE
    assert ct[: len(data)] != data
    assert crypto.decrypt_with_key(ct, key, nonce) == data


def test_empty_plaintext_yields_only_tag(key, nonce):
    ct = crypto.encrypt_with_key(b"", key, nonce)
    assert len(ct) == 16
    assert crypto.decrypt_with_key(ct, key, nonce) == b""


# "invoice 42" is 10 bytes of ciphertext followed by the 16-byte tag
@pytest.mark.parametrize("position", range(10 + 16))
def test_any_flipped_bit_fails_authentication(key, nonce, position):
    ct = crypto.encrypt_with_key(b"invoice 42", key, nonce)
    for bit in range(8):
        tampered = bytearray(ct)
        tampered[position] ^= 1 << bit
        with pytest.raises(AuthenticationFailureError):
            crypto.decrypt_with_key(bytes(tampered), key, nonce)


def test_wrong_key_or_nonce_fails_authentication(key, nonce):
    ct = crypto.encrypt_with_key(b"payroll", key, nonce)
    with pytest.raises(AuthenticationFailureError):
        crypto.decrypt_with_key(ct, os.urandom(32), nonce)
    with pytest.raises(AuthenticationFailureError):
        crypto.decrypt_with_key(ct, key, generate_nonce())


def test_ciphertext_shorter_than_tag_is_corrupt(key, nonce):
    with pytest.raises(CorruptDataError):
        crypto.decrypt_with_key(b"short", key, nonce)


def test_invalid_key_and_nonce_sizes(nonce, key):
    with pytest.raises(InvalidArgumentError):
        crypto.encrypt_with_key(b"x", b"too short", nonce)
    with pytest.raises(InvalidArgumentError):
        crypto.encrypt_with_key(b"x", key, b"bad")
    with pytest.raises(InvalidArgumentError):
        crypto.encrypt_with_key(None, key, nonce)
    with pytest.raises(InvalidArgumentError):
        crypto.decrypt_with_key(None, key, nonce)


def test_password_encrypt_decrypt_roundtrip(nonce):
    salt = generate_salt()
    ct = crypto.encrypt(b"balance sheet", "Secret123", salt, nonce, FAST)
    assert crypto.decrypt(ct, "Secret123", salt, nonce, FAST) == b"balance sheet"


def test_password_decrypt_wrong_password(nonce):
    salt = generate_salt()
    ct = crypto.encrypt(b"balance sheet", "Secret123", salt, nonce, FAST)
    with pytest.raises(AuthenticationFailureError):
        crypto.decrypt(ct, "WrongPass1", salt, nonce, FAST)


def test_password_decrypt_wrong_salt(nonce):
    ct = crypto.encrypt(b"balance sheet", "Secret123", generate_salt(), nonce, FAST)
    with pytest.raises(AuthenticationFailureError):
        crypto.decrypt(ct, "Secret123", generate_salt(), nonce, FAST)


def test_password_encrypt_requires_password(nonce):
    with pytest.raises(InvalidArgumentError):
        crypto.encrypt(b"data", "", generate_salt(), nonce, FAST)


# ==============================================================================
# Streams
# ==============================================================================

@pytest.mark.parametrize("size", [0, 1, 1023, 1024, 5000])
def test_stream_roundtrip_across_chunk_boundaries(key, nonce, size):
    data = os.urandom(size)
    enc = io.BytesIO()
    written = crypto.encrypt_stream_with_key(io.BytesIO(data), enc, key, nonce, chunk_size=1024)
    assert written == size + 16

    enc.seek(0)
    dec = io.BytesIO()
    assert crypto.decrypt_stream_with_key(enc, dec, key, nonce, chunk_size=1024) == size
    assert dec.getvalue() == data


def test_stream_output_matches_byte_api(key, nonce):
    data = b"x" * 3000
    enc = io.BytesIO()
    crypto.encrypt_stream_with_key(io.BytesIO(data), enc, key, nonce, chunk_size=512)
    assert enc.getvalue() == crypto.encrypt_with_key(data, key, nonce)


def test_stream_decrypt_respects_length(key, nonce):
    ct = crypto.encrypt_with_key(b"payload", key, nonce)
    source = io.BytesIO(ct + b"TRAILING FOOTER")
    out = io.BytesIO()
    crypto.decrypt_stream_with_key(source, out, key, nonce, length=len(ct))
    assert out.getvalue() == b"payload"
    assert source.read() == b"TRAILING FOOTER"


def test_stream_tamper_detected(key, nonce):
    ct = bytearray(crypto.encrypt_with_key(b"a" * 2000, key, nonce))
    ct[1500] ^= 0xFF
    with pytest.raises(AuthenticationFailureError):
        crypto.decrypt_stream_with_key(io.BytesIO(bytes(ct)), io.BytesIO(), key, nonce)


def test_stream_associated_data_is_authenticated(key, nonce):
    enc = io.BytesIO()
    crypto.encrypt_stream_with_key(io.BytesIO(b"ledger"), enc, key, nonce, associated_data=b"footer-v1")
    assert enc.getvalue() == crypto.encrypt_with_key(b"ledger", key, nonce, associated_data=b"footer-v1")

    out = io.BytesIO()
    crypto.decrypt_stream_with_key(io.BytesIO(enc.getvalue()), out, key, nonce, associated_data=b"footer-v1")
    assert out.getvalue() == b"ledger"

    for other in (b"footer-v2", None):
        with pytest.raises(AuthenticationFailureError):
            crypto.decrypt_stream_with_key(
                io.BytesIO(enc.getvalue()), io.BytesIO(), key, nonce, associated_data=other
            )


def test_stream_truncated_is_corrupt(key, nonce):
    ct = crypto.encrypt_with_key(b"a" * 100, key, nonce)
    with pytest.raises(CorruptDataError):
        crypto.decrypt_stream_with_key(io.BytesIO(ct), io.BytesIO(), key, nonce, length=len(ct) + 10)
    with pytest.raises(CorruptDataError):
        crypto.decrypt_stream_with_key(io.BytesIO(ct[:10]), io.BytesIO(), key, nonce)


def test_stream_non_seekable_requires_length(key, nonce):
    ct = crypto.encrypt_with_key(b"abc", key, nonce)
    with pytest.raises(InvalidArgumentError):
        crypto.decrypt_stream_with_key(_NonSeekable(ct), io.BytesIO(), key, nonce)

    out = io.BytesIO()
    crypto.decrypt_stream_with_key(_NonSeekable(ct), out, key, nonce, length=len(ct))
    assert out.getvalue() == b"abc"


def test_stream_cancellation(key, nonce):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelledError):
        crypto.encrypt_stream_with_key(io.BytesIO(b"data"), io.BytesIO(), key, nonce, cancel_event=cancel)

    ct = crypto.encrypt_with_key(b"data", key, nonce)
    with pytest.raises(OperationCancelledError):
        crypto.decrypt_stream_with_key(io.BytesIO(ct), io.BytesIO(), key, nonce, cancel_event=cancel)


def test_password_stream_roundtrip(nonce):
    salt = generate_salt()
    enc = io.BytesIO()
    crypto.encrypt_stream(io.BytesIO(b"journal"), enc, "Secret123", salt, nonce, FAST)
    enc.seek(0)
    dec = io.BytesIO()
    crypto.decrypt_stream(enc, dec, "Secret123", salt, nonce, FAST)
    assert dec.getvalue() == b"journal"

    enc.seek(0)
    with pytest.raises(AuthenticationFailureError):
        crypto.decrypt_stream(enc, io.BytesIO(), "WrongPass1", salt, nonce, FAST)


def test_password_stream_requires_source(nonce):
    with pytest.raises(InvalidArgumentError):
        crypto.encrypt_stream(None, io.BytesIO(), "Secret123", generate_salt(), nonce, FAST)


def test_fresh_nonces_give_different_ciphertexts(key):
    data = b"same plaintext"
    assert crypto.encrypt_with_key(data, key, generate_nonce()) != crypto.encrypt_with_key(
        data, key, generate_nonce()
    )
