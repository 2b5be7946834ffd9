"""
Content-addressed memoization for zone builds.

The builder never owns cache state; it only calls `get_or_compute`. The
file-backed implementation keeps a JSON map of cache key -> md5 of the
output file. A hit requires the key to match and the output file on disk to
still hash to the recorded value.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union


logger = logging.getLogger(__name__)


class ZoneCache(Protocol):
    def get_or_compute(self, key: str, output_file: Path, compute_fn: Callable[[], Any]) -> bool:
        """Make sure `output_file` holds the value for `key`. Return True on a cache hit."""
        ...


def md5_file(path: Union[str, Path]) -> Optional[str]:
    """md5 of a file's bytes, or None if it does not exist."""
    digest = hashlib.md5()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1 << 20), b""):
                digest.update(chunk)
    except FileNotFoundError:
        return None
    return digest.hexdigest()


def fingerprint(*parts: Any) -> str:
    """Stable md5 of JSON-serializable parts."""
    payload = json.dumps(parts, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class FileLookupCache:
    """
    Cache whose values are files on disk.

    Call `load()` before use and `save()` once the run is done. Only entries
    touched during this run are written back.
    """

    def __init__(self, filename: Union[str, Path]):
        self.filename = Path(filename)
        self.old_cache: dict[str, str] = {}
        self.new_cache: dict[str, str] = {}

    def load(self) -> "FileLookupCache":
        try:
            self.old_cache = json.loads(self.filename.read_text(encoding="utf-8"))
        except FileNotFoundError:
            self.old_cache = {}
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable cache file %s", self.filename)
            self.old_cache = {}
        return self

    def save(self) -> None:
        self.filename.parent.mkdir(parents=True, exist_ok=True)
        self.filename.write_text(json.dumps(self.new_cache), encoding="utf-8")

    def get_or_compute(self, key: str, output_file: Path, compute_fn: Callable[[], Any]) -> bool:
        """
        Reuse `output_file` when it matches the hash recorded under `key`,
        otherwise call `compute_fn` (which must write `output_file`).

        Returns:
            True on a cache hit
        """
        cached = self.old_cache.get(key)
        current = md5_file(output_file)
        if cached is not None and cached == current:
            self.new_cache[key] = cached
            return True

        compute_fn()
        digest = md5_file(output_file)
        if digest is None:
            raise FileNotFoundError(f"{output_file} was not written by the computation")
        self.new_cache[key] = digest
        return False
