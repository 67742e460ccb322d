"""
Compression and archive helpers.

- gzip compression / decompression of byte streams
- tar (PAX) archives of a directory tree, built with an explicit stack
- extraction that refuses any entry which would land outside the target

Every loop checks an optional ``threading.Event`` so long runs can be
cancelled; cancellation surfaces as OperationCancelledError.
"""

from __future__ import annotations

import gzip
import io
import logging
import os
import tarfile
import threading
import zlib
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, List, Optional

from ..config import CHUNK_SIZE
from .exceptions import (
    CorruptDataError,
    InvalidArgumentError,
    IOFailureError,
    UnsafeArchiveEntryError,
)
from .tasks import raise_if_cancelled

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


class CompressionLevel(IntEnum):
    NONE = 0
    FASTEST = 1
    OPTIMAL = 6
    SMALLEST = 9


@dataclass(frozen=True)
class ArchiveEntry:
    relative_path: str
    size_hint: int
    is_dir: bool
    source: Path


def _copy(source: BinaryIO, sink: BinaryIO, cancel_event: Optional[threading.Event]) -> None:
    while True:
        raise_if_cancelled(cancel_event)
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        sink.write(chunk)


# ---------------------------------------------------------------------------
# gzip
# ---------------------------------------------------------------------------

def compress(
    stream: BinaryIO,
    level: int = CompressionLevel.OPTIMAL,
    cancel_event: Optional[threading.Event] = None,
) -> io.BytesIO:
    """Gzip ``stream`` into a new in-memory stream positioned at 0."""
    if stream is None:
        raise InvalidArgumentError("Input stream is required")
    if not 0 <= int(level) <= 9:
        raise InvalidArgumentError(f"Compression level must be 0-9, got {level}")

    out = io.BytesIO()
    # mtime=0 keeps the output a pure function of the input
    with gzip.GzipFile(fileobj=out, mode="wb", compresslevel=int(level), mtime=0) as gz:
        _copy(stream, gz, cancel_event)
    out.seek(0)
    return out


def decompress(stream: BinaryIO, cancel_event: Optional[threading.Event] = None) -> io.BytesIO:
    """Reverse :func:`compress`; malformed input raises CorruptDataError."""
    if stream is None:
        raise InvalidArgumentError("Input stream is required")

    start = stream.tell() if stream.seekable() else None
    head = stream.read(2)
    if head != GZIP_MAGIC:
        raise CorruptDataError("Data is not a gzip stream")
    if start is not None:
        stream.seek(start)
        source = stream
    else:
        source = _Prefixed(head, stream)

    out = io.BytesIO()
    try:
        with gzip.GzipFile(fileobj=source, mode="rb") as gz:
            _copy(gz, out, cancel_event)
    except (OSError, EOFError, zlib.error) as exc:
        # gzip.BadGzipFile is an OSError subclass
        raise CorruptDataError(f"Compressed data is corrupt: {exc}") from exc
    out.seek(0)
    return out


class _Prefixed(io.RawIOBase):
    """Re-attach bytes already consumed from a non-seekable stream."""

    def __init__(self, prefix: bytes, stream: BinaryIO):
        self._prefix = prefix
        self._stream = stream

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._prefix:
            n = min(len(buffer), len(self._prefix))
            buffer[:n] = self._prefix[:n]
            self._prefix = self._prefix[n:]
            return n
        data = self._stream.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


# ---------------------------------------------------------------------------
# tar archives
# ---------------------------------------------------------------------------

def iter_archive_entries(
    directory: str | os.PathLike, include_root_directory: bool = True
) -> Iterator[ArchiveEntry]:
    """
    Lazily walk ``directory`` in a stable order.

    Files of a directory come first (sorted), then its subdirectories
    (sorted). An explicit stack replaces recursion so deep trees cannot hit
    the interpreter's recursion limit. Symlinks are skipped.
    """
    root = Path(directory)
    if not root.is_dir():
        raise InvalidArgumentError(f"Not a directory: {root}")
    base = root.parent if include_root_directory else root

    if include_root_directory:
        yield ArchiveEntry(root.name, 0, True, root)

    stack: List[Path] = [root]
    while stack:
        current = stack.pop()
        try:
            children = sorted(current.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            raise IOFailureError(f"Cannot list {current}: {exc}") from exc

        subdirs = []
        for child in children:
            if child.is_symlink():
                logger.debug("Skipping symlink %s", child)
                continue
            rel = child.relative_to(base).as_posix()
            if child.is_dir():
                subdirs.append(child)
            elif child.is_file():
                yield ArchiveEntry(rel, child.stat().st_size, False, child)

        for sub in subdirs:
            yield ArchiveEntry(sub.relative_to(base).as_posix(), 0, True, sub)
        # reversed so the first sorted subdirectory is walked first
        stack.extend(reversed(subdirs))


def create_archive(
    directory: str | os.PathLike,
    include_root_directory: bool = True,
    cancel_event: Optional[threading.Event] = None,
) -> io.BytesIO:
    """Tar ``directory`` into a new in-memory stream positioned at 0."""
    out = io.BytesIO()
    count = 0
    try:
        with tarfile.open(fileobj=out, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for entry in iter_archive_entries(directory, include_root_directory):
                raise_if_cancelled(cancel_event)
                info = tarfile.TarInfo(entry.relative_path)
                info.mtime = int(entry.source.stat().st_mtime)
                if entry.is_dir:
                    info.type = tarfile.DIRTYPE
                    info.mode = 0o755
                    tar.addfile(info)
                else:
                    info.size = entry.size_hint
                    info.mode = 0o644
                    with open(entry.source, "rb") as f:
                        tar.addfile(info, f)
                count += 1
    except OSError as exc:
        raise IOFailureError(f"Failed to archive {directory}: {exc}") from exc

    logger.debug("Archived %d entries from %s", count, directory)
    out.seek(0)
    return out


def _safe_target(destination: Path, name: str) -> Path:
    normalized = name.replace("\\", "/")
    pure = PurePosixPath(normalized)
    if (
        not normalized
        or pure.is_absolute()
        or ".." in pure.parts
        or (len(normalized) > 1 and normalized[1] == ":")
    ):
        raise UnsafeArchiveEntryError(name)

    target = (destination / Path(*pure.parts)).resolve()
    if target != destination and destination not in target.parents:
        raise UnsafeArchiveEntryError(name)
    return target


def extract_archive(
    stream: BinaryIO,
    destination: str | os.PathLike,
    cancel_event: Optional[threading.Event] = None,
) -> List[Path]:
    """
    Recreate the tree stored in ``stream`` under ``destination``.

    All members are checked before anything is written: an entry with ``..``
    segments, an absolute or drive-qualified path, or a link/device type
    raises UnsafeArchiveEntryError and leaves the destination untouched.
    """
    dest = Path(destination)
    try:
        dest.mkdir(parents=True, exist_ok=True)
        dest = dest.resolve()
    except OSError as exc:
        raise IOFailureError(f"Cannot create {dest}: {exc}") from exc

    written: List[Path] = []
    try:
        with tarfile.open(fileobj=stream, mode="r:") as tar:
            members = tar.getmembers()
            plan = []
            for member in members:
                raise_if_cancelled(cancel_event)
                if not (member.isfile() or member.isdir()):
                    raise UnsafeArchiveEntryError(member.name)
                plan.append((member, _safe_target(dest, member.name)))

            for member, target in plan:
                raise_if_cancelled(cancel_event)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                source = tar.extractfile(member)
                if source is None:
                    raise CorruptDataError(f"Archive entry has no data: {member.name}")
                with source, open(target, "wb") as f:
                    _copy(source, f, cancel_event)
                written.append(target)
    except tarfile.TarError as exc:
        raise CorruptDataError(f"Archive is corrupt: {exc}") from exc
    except OSError as exc:
        raise IOFailureError(f"Failed to extract into {dest}: {exc}") from exc

    logger.debug("Extracted %d files into %s", len(written), dest)
    return written
