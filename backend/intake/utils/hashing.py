import hashlib
from pathlib import Path

CHUNK_SIZE = 64 * 1024


def sha256_file(file_path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    h = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_bytes(data: bytes) -> str:
    """Content hash used for exact-duplicate detection."""
    return hashlib.sha256(data).hexdigest()


def short_hash(file_hash: str, length: int = 8) -> str:
    return file_hash[:length]
