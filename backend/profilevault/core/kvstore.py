import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from profilevault.core.errors import CorruptedDataError, StorageIOError

logger = logging.getLogger(__name__)


class JsonFileStore:
    """
    Persistent string key -> JSON value store kept in a single document.

    Every mutation rewrites the whole document through a tmp file and
    os.replace, so a multi-key `transaction` lands completely or not at all.
    Calls block on file I/O; async callers go through asyncio.to_thread.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as exc:
            raise StorageIOError(f"cannot read {self.path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptedDataError(f"store file {self.path} is not valid JSON") from exc
        if not isinstance(data, dict):
            raise CorruptedDataError(f"store file {self.path} is not a JSON object")
        return data

    def _atomic_write(self, data: Dict[str, Any]):
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(data, indent=2)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error("Write to %s failed: %s", self.path, exc)
            raise StorageIOError(f"cannot write {self.path}: {exc}") from exc

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def snapshot(self, *keys: str) -> Dict[str, Any]:
        """Read several keys from one consistent view of the document."""
        data = self._read_all()
        return {k: data[k] for k in keys if k in data}

    def contains(self, key: str) -> bool:
        return key in self._read_all()

    def keys(self) -> list:
        return list(self._read_all().keys())

    def set(self, key: str, value: Any):
        self.transaction(set_items={key: value})

    def delete(self, key: str):
        self.transaction(delete_keys=[key])

    def transaction(
        self,
        set_items: Optional[Mapping[str, Any]] = None,
        delete_keys: Optional[Iterable[str]] = None,
    ) -> bool:
        data = self._read_all()
        before = dict(data)
        for key in delete_keys or ():
            data.pop(key, None)
        for key, value in (set_items or {}).items():
            data[key] = value
        if data == before:
            return False
        self._atomic_write(data)
        return True
