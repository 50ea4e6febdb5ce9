"""Content fingerprints used as reuse keys for reputation lookups."""

from __future__ import annotations

import hashlib
import os

from .errors import InputReadError

_CHUNK_SIZE = 1 << 20


def fingerprint(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: str | os.PathLike[str]) -> str:
    """Hash an artifact on disk without loading it whole.

    Library entry point for callers holding a path; the HTTP surface
    receives bytes and uses ``fingerprint`` instead.
    """
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise InputReadError(f"Could not read {os.fspath(path)}: {exc}") from exc
    return digest.hexdigest()
