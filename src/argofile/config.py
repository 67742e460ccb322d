"""Project configuration settings.

Constants used across the container pipeline live here, together with a
small ``Settings`` object that picks up environment overrides.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

# Security / crypto
PBKDF2_ALGO = "pbkdf2-sha256"
ARGON2_ALGO = "argon2id"
DEFAULT_KDF_ALGO = PBKDF2_ALGO
DEFAULT_ITERATIONS = 100_000
DEFAULT_ARGON2_MEMORY_COST = 65536
DEFAULT_ARGON2_PARALLELISM = 1
DEFAULT_ARGON2_TIME_COST = 3

# Upper bounds for parameters read back from a footer
MAX_PBKDF2_ITERATIONS = 10_000_000
MAX_ARGON2_TIME_COST = 64
MAX_ARGON2_MEMORY_COST = 4 * 1024 * 1024  # KiB
MAX_ARGON2_PARALLELISM = 64

SALT_SIZE = 32
KEY_SIZE = 32
VERIFIER_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

# Streams
CHUNK_SIZE = 64 * 1024

# File format
MAGIC = b"ARGO"
FORMAT_VERSION = 1
APP_VERSION = "1.0.0"
MAX_SUPPORTED_MAJOR_VERSION = 1
MAX_FOOTER_SIZE = 1024 * 1024
COMPANY_FILE_EXTENSION = ".argo"
BACKUP_FILE_EXTENSION = ".argobk"

# Password rules
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

# Keystore
KEYRING_SERVICE = "argofile"

DEFAULT_HOME = Path.home() / ".argofile"


@dataclass
class Settings:
    """Runtime settings; defaults can be overridden from the environment."""

    home: Path = DEFAULT_HOME
    kdf_algo: str = DEFAULT_KDF_ALGO
    kdf_iterations: int = DEFAULT_ITERATIONS
    compression_level: int = 6
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls()
        if env.get("ARGOFILE_HOME"):
            settings.home = Path(env["ARGOFILE_HOME"]).expanduser()
        if env.get("ARGOFILE_KDF_ALGO"):
            settings.kdf_algo = env["ARGOFILE_KDF_ALGO"]
            if settings.kdf_algo == ARGON2_ALGO:
                settings.kdf_iterations = DEFAULT_ARGON2_TIME_COST
        if env.get("ARGOFILE_KDF_ITERATIONS"):
            settings.kdf_iterations = int(env["ARGOFILE_KDF_ITERATIONS"])
        if env.get("ARGOFILE_COMPRESSION_LEVEL"):
            settings.compression_level = int(env["ARGOFILE_COMPRESSION_LEVEL"])
        if env.get("ARGOFILE_LOG_LEVEL"):
            level = logging.getLevelName(env["ARGOFILE_LOG_LEVEL"].upper())
            if isinstance(level, int):
                settings.log_level = level
        return settings


__all__ = [
    "PBKDF2_ALGO",
    "ARGON2_ALGO",
    "DEFAULT_KDF_ALGO",
    "DEFAULT_ITERATIONS",
    "SALT_SIZE",
    "KEY_SIZE",
    "VERIFIER_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "CHUNK_SIZE",
    "MAGIC",
    "FORMAT_VERSION",
    "APP_VERSION",
    "COMPANY_FILE_EXTENSION",
    "BACKUP_FILE_EXTENSION",
    "Settings",
]
