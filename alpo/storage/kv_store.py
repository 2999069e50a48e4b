"""Local persisted key-value store.

String keys map to JSON-serializable values. Two implementations share the
`KeyValueStore` protocol:
- InMemoryKeyValueStore: process-local dict, used in tests and when no
  `local_store_path` is configured
- JsonFileKeyValueStore: a single JSON document on disk, rewritten
  atomically on every change

Backend failures are raised as StoreUnavailableError; callers decide whether
to degrade or surface them.
"""

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from alpo.exceptions import StoreUnavailableError
from alpo.utils.logger import LoggerManager


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so values behave like the file-backed store
        self._data[key] = json.loads(json.dumps(value))

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """Key-value store persisted as one JSON file.

    Attributes:
        path: Location of the JSON document (created on first write)
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.logger = LoggerManager.get_logger(__name__)
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(
                "kv_store.load.fail",
                extra={"extra_data": {"path": str(self.path), "error": str(e)}},
            )
            raise StoreUnavailableError.from_backend_error("load", e) from e
        if not isinstance(data, dict):
            error = ValueError(f"Expected a JSON object in {self.path}")
            raise StoreUnavailableError.from_backend_error("load", error)
        self._data = data
        return self._data

    def _flush(self, data: Dict[str, Any]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            self.logger.error(
                "kv_store.write.fail",
                extra={"extra_data": {"path": str(self.path), "error": str(e)}},
            )
            raise StoreUnavailableError.from_backend_error("write", e) from e

    def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._load().get(key))

    def set(self, key: str, value: Any) -> None:
        data = dict(self._load())
        data[key] = value
        self._flush(data)
        self._data = data

    def remove(self, key: str) -> None:
        data = dict(self._load())
        if key not in data:
            return
        del data[key]
        self._flush(data)
        self._data = data
