"""
Platform service: filesystem locations, temp files, atomic replace and
secure password storage.

One instance is built at start-up and handed to the components that need it.

Structure Map for reference:
==============================
 - <home>/
      - logs/
      - tmp/
          - {random}/        (staging directories, removed after use)
==============================
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from .. import config
from ..security import keystore
from .exceptions import IOFailureError

logger = logging.getLogger(__name__)


class PlatformService:
    """Paths and filesystem primitives for the current machine."""

    def __init__(self, home: Optional[str | Path] = None, keyring_service: str = config.KEYRING_SERVICE):
        self.home = Path(home).expanduser() if home else config.DEFAULT_HOME
        self.keyring_service = keyring_service

    @property
    def app_data_path(self) -> Path:
        return self.home

    @property
    def temp_path(self) -> Path:
        return self.home / "tmp"

    @property
    def logs_path(self) -> Path:
        return self.home / "logs"

    def ensure_directory(self, path: str | Path) -> Path:
        p = Path(path)
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailureError(f"Cannot create directory {p}: {exc}") from exc
        return p

    @contextlib.contextmanager
    def make_temp_directory(self) -> Iterator[Path]:
        """Yield a private staging directory that is removed afterwards."""
        self.ensure_directory(self.temp_path)
        path = Path(tempfile.mkdtemp(prefix="stage-", dir=self.temp_path))
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)

    @contextlib.contextmanager
    def atomic_write(self, path: str | Path) -> Iterator[BinaryIO]:
        """
        Yield a binary file that replaces ``path`` only if the block succeeds.

        The temp file lives next to the destination so ``os.replace`` is a
        same-filesystem rename. Data is flushed and fsynced before the rename;
        on any exception the temp file is removed and ``path`` is untouched.
        """
        destination = Path(path)
        parent = destination.parent
        self.ensure_directory(parent)

        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=parent)
        except OSError as exc:
            raise IOFailureError(f"Cannot create temp file in {parent}: {exc}") from exc
        tmp_path = Path(tmp_name)

        committed = False
        try:
            with os.fdopen(fd, "wb") as f:
                yield f
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, destination)
            committed = True
            self._fsync_directory(parent)
            logger.debug("Committed %s", destination)
        except OSError as exc:
            raise IOFailureError(f"Failed to write {destination}: {exc}") from exc
        finally:
            if not committed:
                with contextlib.suppress(FileNotFoundError):
                    tmp_path.unlink()

    @staticmethod
    def _fsync_directory(directory: Path) -> None:
        # Directory fsync is not available on every platform (Windows).
        if not hasattr(os, "O_DIRECTORY"):
            return
        try:
            dir_fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
        except OSError:
            return
        try:
            os.fsync(dir_fd)
        except OSError:
            logger.debug("Directory fsync not supported for %s", directory)
        finally:
            os.close(dir_fd)

    # ------------------------------------------------------------------
    # Secure storage (OS keychain)
    # ------------------------------------------------------------------

    def store_password(self, file_id: str, secret: str) -> None:
        secure, msg = keystore.assess_keyring_backend()
        if not secure:
            raise RuntimeError(f"refusing to store password in OS keystore: {msg}")
        keystore.store_password(self.keyring_service, file_id, secret)

    def retrieve_password(self, file_id: str) -> Optional[str]:
        return keystore.retrieve_password(self.keyring_service, file_id)

    def delete_password(self, file_id: str) -> bool:
        return keystore.delete_password(self.keyring_service, file_id)
