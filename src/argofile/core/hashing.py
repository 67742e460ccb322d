""" SHA-256 helpers used for backup manifests. """

import hashlib
from pathlib import Path

from ..config import CHUNK_SIZE


def calculate_sha256(file_path: Path) -> str:

    # Streams the file so large attachments are not read into memory.

    sha256 = hashlib.sha256()
    with open(file_path, 'rb') as f:
        while True:
            data = f.read(CHUNK_SIZE)
            if not data:
                break
            sha256.update(data)
    return sha256.hexdigest()


def calculate_sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
