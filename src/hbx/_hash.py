"""Content fingerprints for the blob directory."""

from __future__ import annotations

import hashlib
import os

_HASH_CHUNK_SIZE = 65536


def fingerprint(path: str | os.PathLike[str]) -> str:
    """Return the lowercase hex MD5 of the file at *path*.

    The file is streamed in chunks to avoid loading entire contents into
    memory.  Used only as a deduplication key.
    """
    h = hashlib.md5(usedforsecurity=False)
    with open(path, "rb") as f:
        while True:
            chunk = f.read(_HASH_CHUNK_SIZE)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()
