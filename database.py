"""
Flat-file storage

Each collection lives in one JSON file that is always loaded and saved whole.
Writes go to a temporary file in the same directory and are moved into place
with os.replace, and every read-modify-write runs under a per-file lock so
requests inside one process cannot lose each other's updates.
"""
import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)

_locks: Dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _locks_guard:
        if key not in _locks:
            _locks[key] = threading.RLock()
        return _locks[key]


class JsonDocument:
    """A whole JSON document stored at ``path``; missing or corrupt files read as ``default``."""

    def __init__(self, path: Path, default: Any):
        self.path = Path(path)
        self.default = default
        self.lock = _lock_for(self.path)

    def load(self) -> Any:
        with self.lock:
            if not self.path.exists():
                return copy.deepcopy(self.default)
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Error reading JSON %s: %s", self.path, e)
                return copy.deepcopy(self.default)

    def save(self, data: Any) -> None:
        with self.lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=self.path.name, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                os.replace(tmp, self.path)
            except (OSError, TypeError, ValueError) as e:
                logger.error("Error writing JSON %s: %s", self.path, e)
                raise PersistenceError(f"Unable to save {self.path.name}") from e

    def ensure(self) -> None:
        """Write the default document if the file does not exist yet."""
        with self.lock:
            if not self.path.exists():
                self.save(copy.deepcopy(self.default))

    def delete(self) -> bool:
        with self.lock:
            try:
                self.path.unlink()
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise PersistenceError(f"Unable to delete {self.path.name}") from e


class Repository:
    """Entities addressed by their ``id`` field."""

    def get(self, _id: str) -> Optional[Dict]:
        raise NotImplementedError

    def list(self) -> List[Dict]:
        raise NotImplementedError

    def put(self, item: Dict) -> Dict:
        raise NotImplementedError

    def delete(self, _id: str) -> Optional[Dict]:
        raise NotImplementedError

    def update(self, _id: str, updater: Callable[[Dict], Dict], label: str = "Item") -> Dict:
        raise NotImplementedError

    def require(self, _id: str, label: str = "Item") -> Dict:
        found = self.get(_id)
        if found is None:
            raise NotFound(f"{label} not found")
        return found


class JsonRepository(Repository):
    """
    Repository over a document shaped ``{"<key>": [ {...}, ... ]}``, the layout
    the catalog files have always used (``{"products": [...]}`` and so on).
    """

    def __init__(self, path: Path, key: str):
        self.key = key
        self.document = JsonDocument(path, {key: []})

    def _read_all(self) -> List[Dict]:
        data = self.document.load()
        items = data.get(self.key) if isinstance(data, dict) else None
        return items if isinstance(items, list) else []

    def _write_all(self, items: List[Dict]) -> None:
        self.document.save({self.key: items})

    def list(self) -> List[Dict]:
        return self._read_all()

    def get(self, _id: str) -> Optional[Dict]:
        for item in self._read_all():
            if item.get("id") == _id:
                return item
        return None

    def put(self, item: Dict) -> Dict:
        if not item.get("id"):
            raise ValueError("item needs an id")
        with self.document.lock:
            items = self._read_all()
            for i, existing in enumerate(items):
                if existing.get("id") == item["id"]:
                    items[i] = item
                    break
            else:
                items.append(item)
            self._write_all(items)
        return item

    def delete(self, _id: str) -> Optional[Dict]:
        with self.document.lock:
            items = self._read_all()
            for i, existing in enumerate(items):
                if existing.get("id") == _id:
                    removed = items.pop(i)
                    self._write_all(items)
                    return removed
        return None

    def update(self, _id: str, updater: Callable[[Dict], Dict], label: str = "Item") -> Dict:
        """Apply ``updater`` to the stored item under the file lock; the id is kept."""
        with self.document.lock:
            items = self._read_all()
            for i, existing in enumerate(items):
                if existing.get("id") == _id:
                    updated = updater(dict(existing))
                    updated["id"] = _id
                    items[i] = updated
                    self._write_all(items)
                    return updated
        raise NotFound(f"{label} not found")


class Database:
    """All collections of the store, rooted at one data directory."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.products = JsonRepository(self.data_dir / "products.json", "products")
        self.orders = JsonRepository(self.data_dir / "orders.json", "orders")
        self.customers = JsonRepository(self.data_dir / "customers.json", "customers")
        self.offers = JsonRepository(self.data_dir / "offers.json", "offers")
        self.carts = JsonRepository(self.data_dir / "carts.json", "carts")
        self.posters = JsonDocument(self.data_dir / "posters.json", [1, 3, 5, 4, 7, 9])
        self.subscribers = JsonDocument(self.data_dir / "subscribers.json", [])

    def documents(self) -> Dict[str, JsonDocument]:
        return {
            "products": self.products.document,
            "orders": self.orders.document,
            "customers": self.customers.document,
            "offers": self.offers.document,
            "carts": self.carts.document,
            "posters": self.posters,
            "subscribers": self.subscribers,
        }

    def initialize(self) -> None:
        for document in self.documents().values():
            document.ensure()

    def collection_names(self) -> List[str]:
        return [name for name, doc in self.documents().items() if doc.path.exists()]
