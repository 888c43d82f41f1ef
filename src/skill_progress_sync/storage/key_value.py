"""Key/value storage backends for the local fallback mirror."""

import fcntl
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()


class KeyValueStorage(Protocol):
    """String key/value surface, modelled on browser localStorage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class InMemoryStorage:
    """Process-local storage, used in tests and when no directory is configured."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


def origin_filename(origin: str) -> str:
    """Turn an origin such as ``http://localhost:3001`` into a safe file name."""
    slug = re.sub(r"[^A-Za-z0-9]+", "_", origin).strip("_").lower()
    return f"{slug or 'default'}.json"


class JsonFileStorage:
    """Origin-scoped storage persisted as one JSON object per origin.

    Reads take a shared lock, writes hold an exclusive lock on a sidecar
    lock file for the whole read-modify-write and replace the data file
    atomically.

    Args:
        storage_dir: Directory holding one file per origin.
        origin: Remote API origin the stored data belongs to.
    """

    def __init__(self, storage_dir: Path, origin: str):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.origin = origin
        self.path = self.storage_dir / origin_filename(origin)
        self._lock_path = self.path.with_name(self.path.name + ".lock")

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                data = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                # Next write replaces the file
                logger.warning("local_storage_corrupt", path=str(self.path), error=str(e))
                return {}
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        if not isinstance(data, dict):
            logger.warning("local_storage_not_object", path=str(self.path))
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _update(self, mutate) -> None:
        with open(self._lock_path, "w") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX)
            data = self._read()
            if not mutate(data):
                return
            with tempfile.NamedTemporaryFile(
                "w", dir=self.storage_dir, delete=False, suffix=".json", encoding="utf-8"
            ) as tmp:
                tmp_path = Path(tmp.name)
                try:
                    json.dump(data, tmp, indent=2)
                except Exception:
                    tmp.close()
                    tmp_path.unlink(missing_ok=True)
                    raise
            os.replace(tmp_path, self.path)

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        def _set(data: dict[str, str]) -> bool:
            data[key] = value
            return True

        self._update(_set)

    def delete(self, key: str) -> None:
        def _delete(data: dict[str, str]) -> bool:
            return data.pop(key, None) is not None

        self._update(_delete)

    def keys(self) -> list[str]:
        return list(self._read())
