"""
On-disk memoisation of phylogeny test result lists

Each distinct key gets one file ``ham-cache-<seq>.bahm`` in the cache
directory. By default that is a fresh private (0o700) subdirectory of the
system temp directory. Entries are unpickled on read, so an explicit
``cache_dir`` must not be writable by other users. Files are claimed with
an exclusive create, so only one producer ever writes a given entry; later
lookups read it back. A file starts with a magic number, a format version and
a digest of the key, followed by the pickled payload.
"""

import atexit
import hashlib
import itertools
import os
import pickle
import shutil
import struct
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple, Union

from .errors import CacheCorrupt, IoError

CACHE_MAGIC = b'BAHM'
CACHE_VERSION = 1
_HEADER = struct.Struct('>4sH32s')

# Shared by all caches in the process so file names never collide
_SEQUENCE = itertools.count()
_SEQUENCE_LOCK = threading.Lock()


def _next_sequence() -> str:
    with _SEQUENCE_LOCK:
        return f"{os.getpid()}-{next(_SEQUENCE)}"


def make_cache_key(phenotype_name: str, genome_name: str, strains: Sequence[str],
                   chromosome: int) -> Tuple[str, str, Tuple[str, ...], int]:
    """Key for one (phenotype, genome, strain subset, chromosome) combination"""
    return (str(phenotype_name), str(genome_name), tuple(sorted(strains)), int(chromosome))


def key_digest(key: Hashable) -> bytes:
    return hashlib.sha256(repr(key).encode('utf-8')).digest()


class ResultCache:
    """
    Keyed, create-exclusive disk cache.

    Args:
        cache_dir: Directory for cache files (private temp subdirectory if None)
        delete_on_exit: Remove files created by this cache when the process exits
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None, delete_on_exit: bool = True):
        if cache_dir is None:
            # mkdtemp creates the directory with mode 0o700
            self.cache_dir = Path(tempfile.mkdtemp(prefix="haplomap-cache-"))
            self._owns_dir = True
        else:
            self.cache_dir = Path(cache_dir)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._owns_dir = False
        self._paths: Dict[Hashable, Path] = {}
        self._created: List[Path] = []
        self._lock = threading.Lock()
        if delete_on_exit:
            atexit.register(self.remove_directory)

    def path_for(self, key: Hashable) -> Path:
        with self._lock:
            path = self._paths.get(key)
            if path is None:
                path = self.cache_dir / f"ham-cache-{_next_sequence()}.bahm"
                self._paths[key] = path
            return path

    def contains(self, key: Hashable) -> bool:
        with self._lock:
            path = self._paths.get(key)
            return path is not None and path.exists()

    def get_or_compute(self, key: Hashable, producer: Callable[[], Any]) -> Any:
        """
        Return the cached value for ``key``, running ``producer`` on a miss.

        Raises:
            CacheCorrupt: If an existing entry cannot be read back
            IoError: If the cache file cannot be written
        """
        path = self.path_for(key)
        with self._lock:
            try:
                fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                return self._read(path, key)
            except OSError as exc:
                raise IoError(f"Failed to create cache file {path}: {exc}") from exc

            self._created.append(path)
            try:
                value = producer()
                with os.fdopen(fd, 'wb') as handle:
                    fd = None
                    handle.write(_HEADER.pack(CACHE_MAGIC, CACHE_VERSION, key_digest(key)))
                    pickle.dump(value, handle, protocol=pickle.HIGHEST_PROTOCOL)
            except BaseException:
                if fd is not None:
                    os.close(fd)
                self._discard(path)
                raise
            return value

    def _read(self, path: Path, key: Hashable) -> Any:
        try:
            with open(path, 'rb') as handle:
                header = handle.read(_HEADER.size)
                if len(header) != _HEADER.size:
                    raise CacheCorrupt(f"Cache file {path} is truncated")
                magic, version, digest = _HEADER.unpack(header)
                if magic != CACHE_MAGIC or version != CACHE_VERSION:
                    raise CacheCorrupt(f"Cache file {path} has an unknown format")
                if digest != key_digest(key):
                    raise CacheCorrupt(f"Cache file {path} belongs to a different key")
                try:
                    return pickle.load(handle)
                except Exception as exc:
                    raise CacheCorrupt(f"Cache file {path} could not be decoded: {exc}") from exc
        except OSError as exc:
            raise IoError(f"Failed to read cache file {path}: {exc}") from exc

    def _discard(self, path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        if path in self._created:
            self._created.remove(path)

    def clear(self):
        """Delete every file this cache created"""
        with self._lock:
            for path in self._created:
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
            self._created = []

    def remove_directory(self):
        """Clear, then delete the private directory if this cache made one"""
        self.clear()
        if self._owns_dir:
            shutil.rmtree(self.cache_dir, ignore_errors=True)
