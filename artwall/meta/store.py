"""Metadata store: one JSON document per image base.

All writes go through ``update`` (``merge`` is a shallow-union update), which
holds an exclusive per-document lock around read-modify-write. The file store
publishes through a temp file and ``os.replace`` so readers only ever see a
complete document.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List

from artwall.errors import StorageCorrupt
from artwall.meta.library import Library

log = logging.getLogger(__name__)

Document = Dict[str, Any]


class MetadataStore(ABC):
    """Read/merge access to per-image metadata documents."""

    @abstractmethod
    def load(self, key: str) -> Document:
        """Return the current document for ``key``, or {} if none exists."""
        pass

    @abstractmethod
    def update(self, key: str, mutator: Callable[[Document], Any]) -> Any:
        """
        Run ``mutator`` on the latest document under the document lock, then persist it.

        The mutator edits the document in place; its return value is passed through.
        If it raises, nothing is written.
        """
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """Keys of every stored document."""
        pass

    def merge(self, key: str, patch: Document) -> Document:
        """Shallow-union ``patch`` into the document and return the result."""
        def _apply(doc):
            doc.update(patch)
            return copy.deepcopy(doc)

        return self.update(key, _apply)


class MemoryMetadataStore(MetadataStore):
    """In-memory store with the same locking semantics, for tests and embedding."""

    def __init__(self, documents: Dict[str, Document] = None):
        self._docs = copy.deepcopy(documents) if documents else {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Document:
        with self._lock:
            return copy.deepcopy(self._docs.get(key, {}))

    def update(self, key: str, mutator: Callable[[Document], Any]) -> Any:
        with self._lock:
            doc = copy.deepcopy(self._docs.get(key, {}))
            result = mutator(doc)
            self._docs[key] = doc
            return result

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._docs)


# Process-local locks keyed by document path; flock covers other processes.
# Entries are never evicted: one small lock per document touched by this process.
_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _thread_lock_for(path: Path) -> threading.Lock:
    with _path_locks_guard:
        lock = _path_locks.get(str(path))
        if lock is None:
            lock = threading.Lock()
            _path_locks[str(path)] = lock
        return lock


class FileMetadataStore(MetadataStore):
    """JSON documents on disk, laid out by a Library."""

    def __init__(self, library: Library):
        self.library = library

    def path_for(self, key: str) -> Path:
        return self.library.metadata_path(key)

    @contextmanager
    def locked(self, key: str):
        """Hold the exclusive lock for one document; yields its path."""
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_name(path.name + ".lock")
        with _thread_lock_for(path):
            with open(lock_path, "a+") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    yield path
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read(self, path: Path) -> Document:
        """Read a document, raising StorageCorrupt if it can't be decoded."""
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageCorrupt(f"{path.name}: {e}", path=str(path))
        if not isinstance(data, dict):
            raise StorageCorrupt(
                f"{path.name}: expected a JSON object, got {type(data).__name__}",
                path=str(path),
            )
        return data

    def _read_or_empty(self, path: Path) -> Document:
        try:
            return self._read(path)
        except StorageCorrupt as e:
            log.warning("Treating corrupt metadata as absent: %s", e)
            return {}

    def _write(self, path: Path, doc: Document) -> None:
        body = json.dumps(doc, indent=2, ensure_ascii=False)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _quarantine(self, path: Path, error: StorageCorrupt) -> Document:
        """Move a corrupt document aside as ``<name>.corrupt`` so a rewrite keeps the evidence."""
        corrupt = path.with_name(path.name + ".corrupt")
        os.replace(path, corrupt)
        log.warning("Moved corrupt metadata to %s: %s", corrupt.name, error)
        return {}

    def load(self, key: str) -> Document:
        return self._read_or_empty(self.path_for(key))

    def update(self, key: str, mutator: Callable[[Document], Any]) -> Any:
        with self.locked(key) as path:
            try:
                doc = self._read(path)
            except StorageCorrupt as e:
                doc = self._quarantine(path, e)
            result = mutator(doc)
            self._write(path, doc)
            log.debug("Wrote metadata %s", path.name)
            return result

    def keys(self) -> List[str]:
        return self.library.list_bases()
