"""Security helpers: key derivation, password rules and AES-GCM for argofile.

This package provides:
- PBKDF2-SHA256 (default) or Argon2id password stretching, with HKDF
  separating the encryption key from the stored password verifier
- AES-256-GCM encryption of byte strings and streams
- password validation and strength scoring
- opt-in OS keystore storage through keyring
"""

from .kdf import (
    KdfParams,
    KeyMaterial,
    compute_verification_value,
    derive_key,
    derive_key_material,
    generate_nonce,
    generate_salt,
    verify_password,
)
from .crypto import (
    decrypt,
    decrypt_stream,
    decrypt_with_key,
    encrypt,
    encrypt_stream,
    encrypt_with_key,
)
from .password import strength_label, strength_score, validate

__all__ = [
    "KdfParams",
    "KeyMaterial",
    "compute_verification_value",
    "derive_key",
    "derive_key_material",
    "generate_nonce",
    "generate_salt",
    "verify_password",
    "encrypt",
    "decrypt",
    "encrypt_with_key",
    "decrypt_with_key",
    "encrypt_stream",
    "decrypt_stream",
    "validate",
    "strength_score",
    "strength_label",
]
