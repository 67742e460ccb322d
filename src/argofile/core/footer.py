"""
Unencrypted footer appended to container files.

Layout at the end of every file (little-endian length):

    [payload][footer JSON bytes][footer length: 4 bytes][magic b"ARGO"]

The footer can be read without a password; it carries what the recent
files list needs and everything required to derive the key (salt, KDF
parameters, password verifier). Reading it takes two bounded reads from the
end of a seekable stream, so the payload is never loaded for a peek.
"""

from __future__ import annotations

import base64
import json
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

from .. import config
from .exceptions import InvalidArgumentError, IOFailureError, NotAContainerFileError


TRAILER_SIZE = 8
# magic + length + the smallest JSON object we ever write
MIN_FILE_SIZE = TRAILER_SIZE + 20

KIND_COMPANY = "company"
KIND_BACKUP = "backup"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _b64(data: Optional[bytes]) -> Optional[str]:
    return base64.b64encode(data).decode("ascii") if data is not None else None


def _unb64(text: Optional[str]) -> Optional[bytes]:
    if text is None:
        return None
    if not isinstance(text, str):
        raise ValueError("expected a base64 string")
    return base64.b64decode(text, validate=True) if text else None


def _parse_time(value: Optional[str]) -> datetime:
    if value is None or value == "":
        return _utcnow()
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO 8601 timestamp, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _typed(data: Dict[str, Any], key: str, kind: Any, default: Any = None) -> Any:
    """``data[key]`` if it has type ``kind``; missing or null gives ``default``."""
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass; a flag must not pass as a number or vice versa
    if isinstance(value, bool) and kind is not bool:
        raise ValueError(f"{key} has the wrong type")
    if not isinstance(value, kind):
        raise ValueError(f"{key} has the wrong type")
    return value


@dataclass
class Footer:
    """Metadata readable without the password."""

    company_name: str = ""
    is_encrypted: bool = False
    version: str = config.APP_VERSION
    format_version: int = config.FORMAT_VERSION
    kind: str = KIND_COMPANY
    salt: Optional[bytes] = None
    password_hash: Optional[bytes] = None
    kdf: Optional[Dict[str, Any]] = None
    accountants: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    modified_at: datetime = field(default_factory=_utcnow)
    biometric_enabled: bool = False
    logo_thumbnail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "formatVersion": self.format_version,
            "kind": self.kind,
            "isEncrypted": self.is_encrypted,
            "salt": _b64(self.salt),
            "passwordHash": _b64(self.password_hash),
            "kdf": self.kdf,
            "accountants": list(self.accountants),
            "companyName": self.company_name,
            "createdAt": self.created_at.isoformat(),
            "modifiedAt": self.modified_at.isoformat(),
            "biometricEnabled": self.biometric_enabled,
            "logoThumbnail": self.logo_thumbnail,
        }

    def associated_data(self) -> bytes:
        """
        Canonical bytes of the whole footer, authenticated alongside the
        encrypted payload. Editing any footer field of an encrypted file
        makes the tag check fail.
        """
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Footer":
        """Build a footer from parsed JSON; raises ValueError on wrongly typed fields."""
        accountants = _typed(data, "accountants", list, [])
        if not all(isinstance(name, str) for name in accountants):
            raise ValueError("accountants must be a list of names")
        return cls(
            company_name=_typed(data, "companyName", str, ""),
            is_encrypted=_typed(data, "isEncrypted", bool, False),
            version=_typed(data, "version", str, "") or config.APP_VERSION,
            format_version=_typed(data, "formatVersion", int, config.FORMAT_VERSION),
            kind=_typed(data, "kind", str, "") or KIND_COMPANY,
            salt=_unb64(data.get("salt")),
            password_hash=_unb64(data.get("passwordHash")),
            kdf=_typed(data, "kdf", dict),
            accountants=list(accountants),
            created_at=_parse_time(data.get("createdAt")),
            modified_at=_parse_time(data.get("modifiedAt")),
            biometric_enabled=_typed(data, "biometricEnabled", bool, False),
            logo_thumbnail=_typed(data, "logoThumbnail", str),
        )


def write_footer(stream: BinaryIO, footer: Footer) -> int:
    """Append ``footer`` plus trailer at the current position; returns bytes written."""
    body = json.dumps(footer.to_dict(), separators=(",", ":")).encode("utf-8")
    stream.write(body)
    stream.write(struct.pack("<I", len(body)))
    stream.write(config.MAGIC)
    return len(body) + TRAILER_SIZE


def _read_trailer(stream: BinaryIO) -> tuple[int, int]:
    """Return (total size, footer length) or raise NotAContainerFileError."""
    if not stream.seekable():
        raise InvalidArgumentError("Stream must be seekable")

    size = stream.seek(0, 2)
    if size < MIN_FILE_SIZE:
        raise NotAContainerFileError("File is too small to be a container")

    stream.seek(size - TRAILER_SIZE)
    trailer = stream.read(TRAILER_SIZE)
    if len(trailer) != TRAILER_SIZE or trailer[4:] != config.MAGIC:
        raise NotAContainerFileError("Missing container signature")

    (footer_len,) = struct.unpack("<I", trailer[:4])
    if footer_len <= 0 or footer_len > size - TRAILER_SIZE or footer_len > config.MAX_FOOTER_SIZE:
        raise NotAContainerFileError("Invalid footer length")
    return size, footer_len


def content_length(stream: BinaryIO) -> int:
    """Number of payload bytes in front of the footer."""
    size, footer_len = _read_trailer(stream)
    return size - footer_len - TRAILER_SIZE


def read_footer(stream: BinaryIO) -> Footer:
    size, footer_len = _read_trailer(stream)
    stream.seek(size - TRAILER_SIZE - footer_len)
    body = stream.read(footer_len)
    try:
        data = json.loads(body.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("footer is not an object")
        return Footer.from_dict(data)
    except (ValueError, TypeError) as exc:
        # json.JSONDecodeError, UnicodeDecodeError and binascii.Error are ValueErrors
        raise NotAContainerFileError(f"Unreadable footer: {exc}") from exc


def read_footer_file(path: str | Path) -> Footer:
    try:
        with open(path, "rb") as f:
            return read_footer(f)
    except OSError as exc:
        raise IOFailureError(f"Cannot read {path}: {exc}") from exc


def is_version_compatible(footer: Footer) -> bool:
    if footer.format_version > config.FORMAT_VERSION:
        return False
    try:
        major = int(footer.version.split(".")[0])
    except ValueError:
        return False
    return major <= config.MAX_SUPPORTED_MAJOR_VERSION
