"""Password based key derivation for container files.

A password is stretched once with a deliberately slow function (PBKDF2-SHA256
by default, Argon2id optionally). The stretched secret is then expanded with
HKDF under a distinct ``info`` label per purpose, so the encryption key and
the stored password verifier are independent values.
"""

from __future__ import annotations

import hmac
import os
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional, Union

from argon2.exceptions import Argon2Error
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from argofile import config
from argofile.core.exceptions import InvalidArgumentError

ENCRYPTION_KEY_INFO = b"argofile-encryption-key"
VERIFIER_INFO = b"argofile-password-verifier"

Password = Union[str, bytes]


def default_iterations(algo: str) -> int:
    """PBKDF2 round count, or Argon2 time cost."""
    if algo == config.ARGON2_ALGO:
        return config.DEFAULT_ARGON2_TIME_COST
    return config.DEFAULT_ITERATIONS


@dataclass(frozen=True)
class KdfParams:
    """Stretching parameters, persisted with each file."""

    algo: str = config.DEFAULT_KDF_ALGO
    iterations: int = config.DEFAULT_ITERATIONS
    memory_cost: int = config.DEFAULT_ARGON2_MEMORY_COST
    parallelism: int = config.DEFAULT_ARGON2_PARALLELISM

    def __post_init__(self):
        if self.algo not in (config.PBKDF2_ALGO, config.ARGON2_ALGO):
            raise InvalidArgumentError(f"Unsupported KDF algorithm: {self.algo}")
        for name in ("iterations", "memory_cost", "parallelism"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidArgumentError(f"KDF {name} must be an integer")
        if self.iterations < 1:
            raise InvalidArgumentError("KDF iterations must be positive")
        if self.algo == config.PBKDF2_ALGO:
            if self.iterations > config.MAX_PBKDF2_ITERATIONS:
                raise InvalidArgumentError("KDF iterations are too large")
            return
        if self.iterations > config.MAX_ARGON2_TIME_COST:
            raise InvalidArgumentError("Argon2 time cost is too large")
        if not 1 <= self.parallelism <= config.MAX_ARGON2_PARALLELISM:
            raise InvalidArgumentError("Argon2 parallelism is out of range")
        # argon2 needs at least 8 KiB per lane
        if not 8 * self.parallelism <= self.memory_cost <= config.MAX_ARGON2_MEMORY_COST:
            raise InvalidArgumentError("Argon2 memory cost is out of range")

    def to_dict(self) -> Dict[str, Any]:
        data = {"algo": self.algo, "iterations": self.iterations}
        if self.algo == config.ARGON2_ALGO:
            data["memoryCost"] = self.memory_cost
            data["parallelism"] = self.parallelism
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "KdfParams":
        if not data:
            return cls()
        algo = data.get("algo", config.DEFAULT_KDF_ALGO)
        return cls(
            algo=algo,
            iterations=int(data.get("iterations", default_iterations(algo))),
            memory_cost=int(data.get("memoryCost", config.DEFAULT_ARGON2_MEMORY_COST)),
            parallelism=int(data.get("parallelism", config.DEFAULT_ARGON2_PARALLELISM)),
        )


class KeyMaterial(NamedTuple):
    key: bytes
    verifier: bytes


def generate_salt(length: int = config.SALT_SIZE) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def generate_nonce(length: int = config.NONCE_SIZE) -> bytes:
    """Return a fresh random nonce for AES-GCM."""
    return os.urandom(length)


def _check_inputs(password: Optional[Password], salt: Optional[bytes]) -> bytes:
    if password is None or len(password) == 0:
        raise InvalidArgumentError("Password must not be empty")
    if not salt:
        raise InvalidArgumentError("Salt is required")
    if isinstance(password, str):
        password = password.encode("utf-8")
    return password


def _stretch(password: bytes, salt: bytes, params: KdfParams) -> bytes:
    if params.algo == config.ARGON2_ALGO:
        try:
            return hash_secret_raw(
                secret=password,
                salt=salt,
                time_cost=params.iterations,
                memory_cost=params.memory_cost,
                parallelism=params.parallelism,
                hash_len=config.KEY_SIZE,
                type=Type.ID,
            )
        except Argon2Error as exc:
            raise InvalidArgumentError(f"Argon2 rejected the parameters: {exc}") from exc
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=config.KEY_SIZE,
        salt=salt,
        iterations=params.iterations,
    )
    return kdf.derive(password)


def _expand(secret: bytes, info: bytes, length: int) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info)
    return hkdf.derive(secret)


def derive_key_material(
    password: Password, salt: bytes, params: Optional[KdfParams] = None
) -> KeyMaterial:
    """
    Stretch ``password`` once and return both the encryption key and the
    verification value.
    """
    raw = _check_inputs(password, salt)
    secret = _stretch(raw, salt, params or KdfParams())
    return KeyMaterial(
        key=_expand(secret, ENCRYPTION_KEY_INFO, config.KEY_SIZE),
        verifier=_expand(secret, VERIFIER_INFO, config.VERIFIER_SIZE),
    )


def derive_key(password: Password, salt: bytes, params: Optional[KdfParams] = None) -> bytes:
    """Derive the 32-byte encryption key. Same inputs always give the same key."""
    return derive_key_material(password, salt, params).key


def compute_verification_value(
    password: Password, salt: bytes, params: Optional[KdfParams] = None
) -> bytes:
    """Derive the value stored for password checks; never equal to the key."""
    return derive_key_material(password, salt, params).verifier


def verify_password(
    password: Password,
    stored_verifier: bytes,
    salt: bytes,
    params: Optional[KdfParams] = None,
) -> bool:
    """Check ``password`` against a stored verifier in constant time."""
    if not password or not stored_verifier:
        return False
    computed = compute_verification_value(password, salt, params)
    return hmac.compare_digest(computed, stored_verifier)
