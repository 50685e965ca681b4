from __future__ import annotations

import hashlib
from pathlib import Path

FNV64_OFFSET = 1469598103934665603
FNV64_PRIME = 1099511628211
_MASK64 = (1 << 64) - 1


def sha256_file(path: Path) -> str:
    """
    Compute SHA256 hash of a file (streamed, memory-safe).
    Returns lowercase hex digest.
    """
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def handshake_tag(app_name: str) -> int:
    """
    64-bit FNV-1a fold over the UTF-16 code units of `app_name`.

    Returned as a signed 64-bit integer so every peer renders the same decimal
    string in lobby metadata and discovery datagrams.
    """
    h = FNV64_OFFSET
    data = app_name.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * FNV64_PRIME) & _MASK64
    if h >= 1 << 63:
        h -= 1 << 64
    return h
