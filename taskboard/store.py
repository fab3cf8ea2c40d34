"""
Task Board Entity Store

Pluggable persistence behind a narrow interface:
- get(collection, id)          -> document or None
- put(collection, id, doc)     -> insert or replace
- delete(collection, id)       -> remove one document
- query(collection, predicate) -> documents in insertion order
- append(collection, doc)      -> append-only collections (activity log)
- iter_log(collection)         -> append-only documents in append order

Documents are the serialized (to_dict) form of entities. Stores hand out
copies, so callers can never mutate stored state except through put()
and delete().

Every store exposes atomic(), a re-entrant lock that managers hold while
they read, check and write. That makes compare-and-write sequences
(optimistic concurrency, suggestion acceptance) atomic within a process.

Implementations:
- InMemoryStore: dictionaries, for tests and ephemeral use
- JsonFileStore: one JSON document per collection, replaced atomically
  (temp file + fsync + rename), and fsync'd JSONL files for append-only
  collections
"""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import InternalError

logger = logging.getLogger("entity_store")

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]


class EntityStore(ABC):
    """Abstract persistence interface used by every manager."""

    def __init__(self):
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self) -> Iterator["EntityStore"]:
        """Hold the store lock for a read-check-write sequence."""
        with self._lock:
            yield self

    @abstractmethod
    def get(self, collection: str, entity_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    def put(self, collection: str, entity_id: str, document: Document) -> None:
        ...

    @abstractmethod
    def delete(self, collection: str, entity_id: str) -> bool:
        """Remove one document. Returns False when it did not exist."""
        ...

    @abstractmethod
    def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Document]:
        ...

    @abstractmethod
    def append(self, collection: str, document: Document) -> None:
        ...

    @abstractmethod
    def iter_log(self, collection: str) -> List[Document]:
        ...

    def count(self, collection: str) -> int:
        return len(self.query(collection))


# -----------------------------------------------------------------------------
# In-Memory Store
# -----------------------------------------------------------------------------
class InMemoryStore(EntityStore):

    def __init__(self):
        super().__init__()
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._logs: Dict[str, List[Document]] = {}

    def get(self, collection: str, entity_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(entity_id)
            return copy.deepcopy(doc) if doc is not None else None

    def put(self, collection: str, entity_id: str, document: Document) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[entity_id] = copy.deepcopy(document)

    def delete(self, collection: str, entity_id: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(entity_id, None) is not None

    def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Document]:
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collections.get(collection, {}).values()]
        if predicate is None:
            return docs
        return [d for d in docs if predicate(d)]

    def append(self, collection: str, document: Document) -> None:
        with self._lock:
            self._logs.setdefault(collection, []).append(copy.deepcopy(document))

    def iter_log(self, collection: str) -> List[Document]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._logs.get(collection, [])]


# -----------------------------------------------------------------------------
# JSON File Store
# -----------------------------------------------------------------------------
class JsonFileStore(EntityStore):
    """
    File-backed store.

    Collections are cached in memory after first load. Every put() rewrites
    the collection file atomically; append() adds one fsync'd line to the
    collection's JSONL log.
    """

    def __init__(self, data_dir: Path):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._logs: Dict[str, List[Document]] = {}

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _collection_file(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _log_file(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.jsonl"

    def _load_collection(self, collection: str) -> Dict[str, Document]:
        if collection in self._collections:
            return self._collections[collection]
        path = self._collection_file(collection)
        docs: Dict[str, Document] = {}
        if path.exists():
            try:
                with open(path) as f:
                    docs = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load collection {collection}: {e}")
                raise InternalError(f"Failed to load collection '{collection}'", cause=e)
        self._collections[collection] = docs
        return docs

    def _load_log(self, collection: str) -> List[Document]:
        if collection in self._logs:
            return self._logs[collection]
        path = self._log_file(collection)
        entries: List[Document] = []
        if path.exists():
            try:
                with open(path) as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            entries.append(json.loads(line))
                        except json.JSONDecodeError as e:
                            logger.warning(f"Skipping malformed {collection} entry: {e}")
            except OSError as e:
                logger.error(f"Failed to read log {collection}: {e}")
                raise InternalError(f"Failed to read log '{collection}'", cause=e)
        self._logs[collection] = entries
        return entries

    def _write_collection(self, collection: str, docs: Dict[str, Document]) -> None:
        path = self._collection_file(collection)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(docs, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist collection {collection}: {e}")
            raise InternalError(f"Failed to persist collection '{collection}'", cause=e)

    def get(self, collection: str, entity_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._load_collection(collection).get(entity_id)
            return copy.deepcopy(doc) if doc is not None else None

    def put(self, collection: str, entity_id: str, document: Document) -> None:
        with self._lock:
            docs = dict(self._load_collection(collection))
            docs[entity_id] = copy.deepcopy(document)
            # Write first; the cache only changes once the file is durable
            self._write_collection(collection, docs)
            self._collections[collection] = docs

    def delete(self, collection: str, entity_id: str) -> bool:
        with self._lock:
            docs = dict(self._load_collection(collection))
            if docs.pop(entity_id, None) is None:
                return False
            self._write_collection(collection, docs)
            self._collections[collection] = docs
            return True

    def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Document]:
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._load_collection(collection).values()]
        if predicate is None:
            return docs
        return [d for d in docs if predicate(d)]

    def append(self, collection: str, document: Document) -> None:
        with self._lock:
            entries = self._load_log(collection)
            try:
                self._data_dir.mkdir(parents=True, exist_ok=True)
                with open(self._log_file(collection), "a") as f:
                    f.write(json.dumps(document) + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to append to {collection}: {e}")
                raise InternalError(f"Failed to append to '{collection}'", cause=e)
            entries.append(copy.deepcopy(document))

    def iter_log(self, collection: str) -> List[Document]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._load_log(collection)]

    def get_storage_stats(self) -> Dict[str, Any]:
        """Read-only file statistics for observability."""
        stats: Dict[str, Any] = {"data_dir": str(self._data_dir), "files": {}}
        if not self._data_dir.exists():
            return stats
        for path in sorted(self._data_dir.iterdir()):
            if path.suffix in (".json", ".jsonl"):
                stats["files"][path.name] = path.stat().st_size
        return stats


def create_store(backend: str, data_dir: Optional[Path] = None) -> EntityStore:
    """Build a store for the configured backend ('memory' or 'json')."""
    if backend == "memory":
        return InMemoryStore()
    if backend == "json":
        if data_dir is None:
            raise ValueError("JsonFileStore requires a data directory")
        return JsonFileStore(data_dir)
    raise ValueError(f"Unknown store backend: {backend}")


logger.info("Entity Store module loaded")
