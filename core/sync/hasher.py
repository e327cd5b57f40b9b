"""
Content fingerprinting.

Fingerprints are lowercase hex SHA-256 digests of the exact file bytes.
"""

import hashlib
from pathlib import Path
from typing import Union

import aiofiles

CHUNK_SIZE = 8192


async def hash_file(file_path: Union[str, Path]) -> str:
    """
    Compute the SHA-256 fingerprint of a file without loading it whole.

    Args:
        file_path: Path to the file

    Returns:
        Hexadecimal digest

    Raises:
        OSError: If the file cannot be read (FileNotFoundError when it vanished)
    """
    hasher = hashlib.sha256()
    async with aiofiles.open(file_path, 'rb') as f:
        while chunk := await f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_bytes(data: bytes) -> str:
    """Fingerprint of an in-memory buffer."""
    return hashlib.sha256(data).hexdigest()


def hash_string(value: str) -> str:
    return hash_bytes(value.encode("utf-8"))
