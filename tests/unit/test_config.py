"""Unit tests for configuration defaults and environment overrides."""

import logging
from pathlib import Path

from argofile import config
from argofile.config import Settings


def test_constants():
    assert config.MAGIC == b"ARGO"
    assert config.SALT_SIZE == 32
    assert config.KEY_SIZE == 32
    assert config.NONCE_SIZE == 12
    assert config.TAG_SIZE == 16
    assert config.DEFAULT_ITERATIONS == 100_000
    assert config.COMPANY_FILE_EXTENSION == ".argo"
    assert config.BACKUP_FILE_EXTENSION == ".argobk"


def test_settings_defaults_from_empty_env():
    s = Settings.from_env({})
    assert s.home == config.DEFAULT_HOME
    assert s.kdf_algo == "pbkdf2-sha256"
    assert s.kdf_iterations == 100_000
    assert s.compression_level == 6
    assert s.log_level == logging.INFO


def test_settings_overrides(tmp_path):
    s = Settings.from_env(
        {
            "ARGOFILE_HOME": str(tmp_path),
            "ARGOFILE_KDF_ALGO": "argon2id",
            "ARGOFILE_KDF_ITERATIONS": "3",
            "ARGOFILE_COMPRESSION_LEVEL": "9",
            "ARGOFILE_LOG_LEVEL": "debug",
        }
    )
    assert s.home == Path(tmp_path)
    assert s.kdf_algo == "argon2id"
    assert s.kdf_iterations == 3
    assert s.compression_level == 9
    assert s.log_level == logging.DEBUG


def test_argon2_without_iterations_uses_argon2_time_cost():
    s = Settings.from_env({"ARGOFILE_KDF_ALGO": "argon2id"})
    assert s.kdf_iterations == config.DEFAULT_ARGON2_TIME_COST


def test_settings_ignores_unknown_log_level():
    assert Settings.from_env({"ARGOFILE_LOG_LEVEL": "chatty"}).log_level == logging.INFO
