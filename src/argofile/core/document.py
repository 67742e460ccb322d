"""The single open company document and its lifecycle.

One CompanyDocument exists per running application. It holds the decoded
dataset, the path it came from and, for encrypted files, the password in
memory so later saves can re-encrypt. Calling close() clears all of it.

State machine:

    UNOPENED -> READING_FOOTER -> PASSWORD_REQUIRED -> DECRYPTING -> OPEN
    OPEN -> SAVING -> OPEN
    any -> CLOSED
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .container import ContainerService
from .exceptions import ArgoFileError, InvalidArgumentError, PasswordRequiredError
from .footer import Footer
from .tasks import BackgroundRunner, TaskHandle

logger = logging.getLogger(__name__)


class DocumentState(Enum):
    UNOPENED = "unopened"
    READING_FOOTER = "reading_footer"
    PASSWORD_REQUIRED = "password_required"
    DECRYPTING = "decrypting"
    OPEN = "open"
    SAVING = "saving"
    CLOSED = "closed"


class CompanyDocument:
    def __init__(self, service: ContainerService, runner: Optional[BackgroundRunner] = None):
        self.service = service
        self.runner = runner
        self.state = DocumentState.UNOPENED
        self.path: Optional[Path] = None
        self.footer: Optional[Footer] = None
        self.dataset: Any = None
        self.has_unsaved_changes = False
        self._password: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self.state in (DocumentState.OPEN, DocumentState.SAVING)

    @property
    def is_encrypted(self) -> bool:
        return bool(self._password)

    @property
    def company_name(self) -> Optional[str]:
        return self.footer.company_name if self.footer else None

    def _require_open(self) -> None:
        if not self.is_open or self.path is None:
            raise InvalidArgumentError("No company is currently open.")

    def verify_current_password(self, password: Optional[str]) -> bool:
        """True when ``password`` matches the one the document was opened with."""
        if not self._password:
            return not password
        return password == self._password

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open(
        self,
        path: str | Path,
        password: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        """
        Open ``path``.

        When the file is encrypted and no password is given the document stays
        in PASSWORD_REQUIRED and PasswordRequiredError is raised; call
        provide_password() to continue.
        """
        with self._lock:
            previous = (self.state, self.path, self.footer)
            self.state = DocumentState.READING_FOOTER
            self.path = Path(path)
            try:
                self.footer = self.service.peek_footer(self.path)
                if self.footer.is_encrypted and not password:
                    self.state = DocumentState.PASSWORD_REQUIRED
                    raise PasswordRequiredError("Password is required for this file.")
                return self._decode(password, cancel_event)
            except PasswordRequiredError:
                raise
            except ArgoFileError:
                self.state, self.path, self.footer = previous
                raise

    def provide_password(self, password: str, cancel_event: Optional[threading.Event] = None) -> Any:
        with self._lock:
            if self.state is not DocumentState.PASSWORD_REQUIRED:
                raise InvalidArgumentError("No password is pending.")
            try:
                return self._decode(password, cancel_event)
            except ArgoFileError:
                # stay in PASSWORD_REQUIRED so the caller can prompt again
                self.state = DocumentState.PASSWORD_REQUIRED
                raise

    def _decode(self, password: Optional[str], cancel_event: Optional[threading.Event]) -> Any:
        self.state = DocumentState.DECRYPTING
        dataset = self.service.open(self.path, password, cancel_event=cancel_event)
        self.dataset = dataset
        self._password = password if self.footer and self.footer.is_encrypted else None
        self.has_unsaved_changes = False
        self.state = DocumentState.OPEN
        logger.info("Opened company %r", self.company_name)
        return dataset

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def mark_changed(self) -> None:
        if self.dataset is not None:
            self.has_unsaved_changes = True

    def save(self, cancel_event: Optional[threading.Event] = None) -> Footer:
        with self._lock:
            self._require_open()
            return self._save_to(self.path, self._password, cancel_event)

    def save_as(
        self,
        path: str | Path,
        password: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Footer:
        with self._lock:
            self._require_open()
            footer = self._save_to(Path(path), password, cancel_event)
            self.path = Path(path)
            self._password = password or None
            return footer

    def _save_to(self, path: Path, password: Optional[str], cancel_event: Optional[threading.Event]) -> Footer:
        self.state = DocumentState.SAVING
        try:
            self.footer = self.service.save(path, self.dataset, password, cancel_event=cancel_event)
            self.has_unsaved_changes = False
            return self.footer
        finally:
            self.state = DocumentState.OPEN

    def change_password(
        self,
        old_password: Optional[str],
        new_password: Optional[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> Footer:
        """Re-encrypt the open file; ``new_password=None`` removes encryption."""
        with self._lock:
            self._require_open()
            if not self.verify_current_password(old_password):
                raise InvalidArgumentError("Current password does not match.")
            self.state = DocumentState.SAVING
            try:
                self.footer = self.service.change_password(
                    self.path, old_password, new_password, cancel_event=cancel_event
                )
                self._password = new_password or None
                return self.footer
            finally:
                self.state = DocumentState.OPEN

    def export_backup(
        self,
        backup_path: str | Path,
        password: Optional[str] = None,
        attachments_dir: Optional[str | Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Footer:
        with self._lock:
            self._require_open()
            return self.service.create_backup_archive(
                backup_path,
                self.dataset,
                password,
                attachments_dir=attachments_dir,
                company_name=self.company_name,
                cancel_event=cancel_event,
            )

    def close(self) -> None:
        """Forget the dataset and the in-memory password."""
        with self._lock:
            self.dataset = None
            self.footer = None
            self.path = None
            self._password = None
            self.has_unsaved_changes = False
            self.state = DocumentState.CLOSED

    # ------------------------------------------------------------------
    # Background variants
    # ------------------------------------------------------------------

    def _require_runner(self) -> BackgroundRunner:
        if self.runner is None:
            raise RuntimeError("No BackgroundRunner configured for this document")
        return self.runner

    def open_async(self, path: str | Path, password: Optional[str] = None) -> TaskHandle:
        return self._require_runner().submit(self.open, path, password)

    def save_async(self) -> TaskHandle:
        return self._require_runner().submit(self.save)

    def change_password_async(self, old_password: Optional[str], new_password: Optional[str]) -> TaskHandle:
        return self._require_runner().submit(self.change_password, old_password, new_password)
