"""
ContainerService: the save / open / backup entry points for company files.

On save:  dataset -> serialize -> gzip -> AES-GCM (optional) -> footer -> atomic replace
On open:  footer -> (password?) -> verify -> decrypt -> gunzip -> deserialize

Payload layout in front of the footer:
    encrypted:   nonce (12) || ciphertext || tag (16)
    unencrypted: gzip stream

Backups (.argobk) use the same container, but the payload is a gzipped tar
of a staging directory holding ``dataset.json``, ``manifest.json`` and an
optional ``attachments/`` tree.
"""

from __future__ import annotations

import hmac
import io
import json
import logging
import shutil
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterable, List, Optional, Tuple

from .. import config
from ..security import password as password_rules
from ..security.crypto import decrypt_stream_with_key, encrypt_stream_with_key
from ..security.kdf import (
    KdfParams,
    KeyMaterial,
    derive_key_material,
    generate_nonce,
    generate_salt,
)
from .compression import (
    CompressionLevel,
    compress,
    create_archive,
    decompress,
    extract_archive,
    iter_archive_entries,
)
from .exceptions import (
    AuthenticationFailureError,
    CorruptDataError,
    InvalidArgumentError,
    IOFailureError,
    NotAContainerFileError,
    PasswordRequiredError,
    UnsupportedVersionError,
    WeakPasswordError,
)
from .footer import (
    KIND_BACKUP,
    KIND_COMPANY,
    Footer,
    content_length,
    is_version_compatible,
    read_footer,
    read_footer_file,
    write_footer,
)
from .hashing import calculate_sha256
from .platform_service import PlatformService
from .serialization import JsonSerializer
from .tasks import raise_if_cancelled

logger = logging.getLogger(__name__)

BACKUP_DATASET_NAME = "dataset.json"
BACKUP_MANIFEST_NAME = "manifest.json"
BACKUP_ATTACHMENTS_DIR = "attachments"


@dataclass
class RecentFileInfo:
    path: Path
    company_name: str
    is_encrypted: bool
    modified_at: datetime


def _lookup(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _check_new_password(password: Optional[str]) -> None:
    if password:
        errors = password_rules.validate(password)
        if errors:
            raise WeakPasswordError(errors)


def _copy_bounded(
    source: BinaryIO, sink: BinaryIO, length: int, cancel_event: Optional[threading.Event]
) -> None:
    remaining = length
    while remaining > 0:
        raise_if_cancelled(cancel_event)
        chunk = source.read(min(config.CHUNK_SIZE, remaining))
        if not chunk:
            raise CorruptDataError("Truncated payload")
        sink.write(chunk)
        remaining -= len(chunk)


class ContainerService:
    """High-level container operations over compression, encryption and the footer."""

    def __init__(
        self,
        platform: PlatformService,
        serializer: Optional[JsonSerializer] = None,
        kdf_params: Optional[KdfParams] = None,
        compression_level: int = CompressionLevel.OPTIMAL,
    ):
        self.platform = platform
        self.serializer = serializer or JsonSerializer()
        self.kdf_params = kdf_params or KdfParams()
        self.compression_level = compression_level

    # ------------------------------------------------------------------
    # Footer-only operations
    # ------------------------------------------------------------------

    def peek_footer(self, path: str | Path) -> Footer:
        """Read the unencrypted footer; no password needed."""
        return read_footer_file(path)

    def is_valid_container(self, path: str | Path) -> bool:
        try:
            self.peek_footer(path)
        except (NotAContainerFileError, IOFailureError):
            return False
        return True

    def is_encrypted(self, path: str | Path) -> bool:
        return self.peek_footer(path).is_encrypted

    def verify_password(self, path: str | Path, password: Optional[str]) -> bool:
        """
        Check ``password`` against the stored verifier without decrypting.

        Unencrypted files accept any password.
        """
        footer = self.peek_footer(path)
        if not footer.is_encrypted:
            return True
        if not password or not footer.salt or not footer.password_hash:
            return False
        material = self._footer_key_material(password, footer)
        return hmac.compare_digest(material.verifier, footer.password_hash)

    def recent_files(self, paths: Iterable[str | Path]) -> List[RecentFileInfo]:
        """Summaries for a recent files list, newest first; unreadable files are skipped."""
        result = []
        for p in paths:
            try:
                footer = self.peek_footer(p)
            except (NotAContainerFileError, IOFailureError) as exc:
                logger.warning("Skipping recent file %s: %s", p, exc)
                continue
            result.append(
                RecentFileInfo(
                    path=Path(p),
                    company_name=footer.company_name,
                    is_encrypted=footer.is_encrypted,
                    modified_at=footer.modified_at,
                )
            )
        result.sort(key=lambda info: info.modified_at, reverse=True)
        return result

    # ------------------------------------------------------------------
    # Company files
    # ------------------------------------------------------------------

    def open(
        self,
        path: str | Path,
        password: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        """
        Decode the dataset stored at ``path``.

        Raises PasswordRequiredError when the file is encrypted and no password
        is given; AuthenticationFailureError, CorruptDataError and
        UnsupportedVersionError (all OpenFailedError) when decoding fails.
        """
        logger.info("Opening %s", path)
        _, compressed = self._read_payload(path, password, KIND_COMPANY, cancel_event)
        data = decompress(compressed, cancel_event)
        dataset = self.serializer.loads(data.getvalue())
        logger.debug("Opened %s (%d bytes decoded)", path, len(data.getvalue()))
        return dataset

    def save(
        self,
        path: str | Path,
        dataset: Any,
        password: Optional[str] = None,
        *,
        company_name: Optional[str] = None,
        accountants: Optional[List[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Footer:
        """
        Write ``dataset`` to ``path``, encrypted when ``password`` is given.

        The file is replaced atomically; if anything fails, including
        cancellation, the previous file stays as it was.
        """
        _check_new_password(password)
        raw = self.serializer.dumps(dataset)

        if accountants is None:
            accountants = self._accountant_names(dataset)
        footer = Footer(
            company_name=self._company_name(dataset, company_name, path),
            accountants=[str(name) for name in accountants],
            biometric_enabled=bool(_lookup(dataset, "settings", "security", "biometricEnabled")),
            kind=KIND_COMPANY,
        )
        footer.created_at = self._existing_created_at(path) or footer.created_at

        logger.info("Saving %s (encrypted=%s)", path, bool(password))
        return self._write_container(path, io.BytesIO(raw), footer, password, cancel_event)

    def change_password(
        self,
        path: str | Path,
        old_password: Optional[str],
        new_password: Optional[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> Footer:
        """
        Re-encrypt ``path`` under ``new_password`` (None removes encryption).

        The payload is fully decrypted with the old password first; a fresh
        salt and nonce are generated and the result replaces the file
        atomically, so old and new key material never mix in one file.
        """
        _check_new_password(new_password)
        footer, compressed = self._read_payload(path, old_password, None, cancel_event)
        plain = decompress(compressed, cancel_event)

        new_footer = replace(footer, modified_at=datetime.now(timezone.utc))
        logger.info("Changing password of %s (encrypted=%s)", path, bool(new_password))
        return self._write_container(path, plain, new_footer, new_password, cancel_event)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def create_backup_archive(
        self,
        backup_path: str | Path,
        dataset: Any,
        password: Optional[str] = None,
        *,
        attachments_dir: Optional[str | Path] = None,
        company_name: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Footer:
        """Export ``dataset`` (and optional attachments) as a standalone backup file."""
        _check_new_password(password)
        raw = self.serializer.dumps(dataset)

        with self.platform.make_temp_directory() as stage:
            try:
                (stage / BACKUP_DATASET_NAME).write_bytes(raw)
                if attachments_dir is not None:
                    shutil.copytree(attachments_dir, stage / BACKUP_ATTACHMENTS_DIR, symlinks=True)
                files = {
                    entry.relative_path: calculate_sha256(entry.source)
                    for entry in iter_archive_entries(stage, include_root_directory=False)
                    if not entry.is_dir
                }
                manifest = {
                    "formatVersion": config.FORMAT_VERSION,
                    "createdAt": datetime.now(timezone.utc).isoformat(),
                    "files": files,
                }
                (stage / BACKUP_MANIFEST_NAME).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
            except OSError as exc:
                raise IOFailureError(f"Failed to stage backup: {exc}") from exc

            archive = create_archive(stage, include_root_directory=False, cancel_event=cancel_event)

        footer = Footer(
            company_name=self._company_name(dataset, company_name, backup_path),
            accountants=self._accountant_names(dataset),
            kind=KIND_BACKUP,
        )
        logger.info("Creating backup %s (%d files)", backup_path, len(files))
        return self._write_container(backup_path, archive, footer, password, cancel_event)

    def restore_from_backup_archive(
        self,
        backup_path: str | Path,
        password: Optional[str] = None,
        *,
        attachments_destination: Optional[str | Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        """Decode a backup file and return its dataset; attachments are copied out on request."""
        logger.info("Restoring backup %s", backup_path)
        _, compressed = self._read_payload(backup_path, password, KIND_BACKUP, cancel_event)
        archive = decompress(compressed, cancel_event)

        with self.platform.make_temp_directory() as stage:
            extract_archive(archive, stage, cancel_event)
            self._verify_manifest(stage)
            try:
                raw = (stage / BACKUP_DATASET_NAME).read_bytes()
            except FileNotFoundError as exc:
                raise CorruptDataError("Backup does not contain a dataset") from exc
            dataset = self.serializer.loads(raw)

            attachments = stage / BACKUP_ATTACHMENTS_DIR
            if attachments_destination is not None and attachments.is_dir():
                try:
                    shutil.copytree(attachments, attachments_destination, dirs_exist_ok=True)
                except OSError as exc:
                    raise IOFailureError(f"Failed to restore attachments: {exc}") from exc
        return dataset

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _footer_key_material(password: str, footer: Footer) -> KeyMaterial:
        """Derive keys with the parameters stored in an untrusted footer."""
        try:
            params = KdfParams.from_dict(footer.kdf)
            return derive_key_material(password, footer.salt, params)
        except (InvalidArgumentError, TypeError, ValueError) as exc:
            raise CorruptDataError(f"Unusable key derivation parameters: {exc}") from exc

    @staticmethod
    def _company_name(dataset: Any, explicit: Optional[str], path: str | Path) -> str:
        name = explicit or _lookup(dataset, "settings", "company", "name")
        return name if isinstance(name, str) and name else Path(path).stem

    @staticmethod
    def _accountant_names(dataset: Any) -> List[str]:
        accountants = _lookup(dataset, "accountants") or []
        names = []
        for item in accountants if isinstance(accountants, list) else []:
            name = item.get("name") if isinstance(item, dict) else item
            if isinstance(name, str) and name:
                names.append(name)
        return names

    def _existing_created_at(self, path: str | Path) -> Optional[datetime]:
        if not Path(path).exists():
            return None
        try:
            return self.peek_footer(path).created_at
        except (NotAContainerFileError, IOFailureError) as exc:
            logger.warning("Existing file %s has no readable footer: %s", path, exc)
            return None

    def _read_payload(
        self,
        path: str | Path,
        password: Optional[str],
        expected_kind: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> Tuple[Footer, io.BytesIO]:
        """Return the footer and the (decrypted) compressed payload of ``path``."""
        try:
            f = open(path, "rb")
        except OSError as exc:
            raise IOFailureError(f"Cannot open {path}: {exc}") from exc

        with f:
            try:
                footer = read_footer(f)
                payload_len = content_length(f)

                if not is_version_compatible(footer):
                    raise UnsupportedVersionError(f"File version {footer.version} is not supported.")
                if expected_kind is not None and footer.kind != expected_kind:
                    raise CorruptDataError(f"Expected a {expected_kind} file, found {footer.kind}")

                f.seek(0)
                out = io.BytesIO()
                if not footer.is_encrypted:
                    _copy_bounded(f, out, payload_len, cancel_event)
                else:
                    self._decrypt_payload(f, out, footer, payload_len, password, cancel_event)
            except OSError as exc:
                raise IOFailureError(f"Failed reading {path}: {exc}") from exc

        out.seek(0)
        return footer, out

    def _decrypt_payload(
        self,
        source: BinaryIO,
        sink: BinaryIO,
        footer: Footer,
        payload_len: int,
        password: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> None:
        if not password:
            raise PasswordRequiredError("Password is required for this file.")
        if not footer.salt:
            raise CorruptDataError("Encrypted file has no salt")
        if payload_len < config.NONCE_SIZE + config.TAG_SIZE:
            raise CorruptDataError("Encrypted payload is too short")

        material = self._footer_key_material(password, footer)
        raise_if_cancelled(cancel_event)
        if footer.password_hash is not None and not hmac.compare_digest(material.verifier, footer.password_hash):
            raise AuthenticationFailureError()

        nonce = source.read(config.NONCE_SIZE)
        decrypt_stream_with_key(
            source,
            sink,
            material.key,
            nonce,
            length=payload_len - config.NONCE_SIZE,
            cancel_event=cancel_event,
            associated_data=footer.associated_data(),
        )

    def _write_container(
        self,
        path: str | Path,
        plain: BinaryIO,
        footer: Footer,
        password: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> Footer:
        compressed = compress(plain, self.compression_level, cancel_event)

        material = None
        if password:
            salt = generate_salt()
            material = derive_key_material(password, salt, self.kdf_params)
            footer = replace(
                footer,
                is_encrypted=True,
                salt=salt,
                password_hash=material.verifier,
                kdf=self.kdf_params.to_dict(),
            )
        else:
            footer = replace(footer, is_encrypted=False, salt=None, password_hash=None, kdf=None)
        footer = replace(footer, modified_at=datetime.now(timezone.utc))
        raise_if_cancelled(cancel_event)

        with self.platform.atomic_write(path) as out:
            if material is not None:
                nonce = generate_nonce()
                out.write(nonce)
                encrypt_stream_with_key(
                    compressed,
                    out,
                    material.key,
                    nonce,
                    cancel_event=cancel_event,
                    associated_data=footer.associated_data(),
                )
            else:
                _copy_bounded(compressed, out, len(compressed.getbuffer()), cancel_event)
            raise_if_cancelled(cancel_event)
            write_footer(out, footer)

        logger.debug("Wrote %s (kind=%s, encrypted=%s)", path, footer.kind, footer.is_encrypted)
        return footer

    @staticmethod
    def _verify_manifest(stage: Path) -> None:
        try:
            manifest = json.loads((stage / BACKUP_MANIFEST_NAME).read_text(encoding="utf-8"))
            files = manifest["files"]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CorruptDataError(f"Backup manifest is missing or unreadable: {exc}") from exc

        root = stage.resolve()
        for rel, digest in files.items():
            target = (stage / rel).resolve()
            if root not in target.parents:
                raise CorruptDataError(f"Manifest entry outside the backup: {rel!r}")
            if not target.is_file() or calculate_sha256(target) != digest:
                raise CorruptDataError(f"Backup file failed its checksum: {rel}")
