"""File system storage backend."""

import asyncio
import fcntl
import hashlib
import json
import os
import tempfile
import threading
from pathlib import Path

from .base import BackendKind, BaseBackend


class FileSystemBackend(BaseBackend):
    """One file per key plus a JSON index, written atomically."""

    def __init__(
        self,
        data_dir: Path,
        kind: BackendKind = BackendKind.LOCAL,
        quota_bytes: int | None = None,
    ):
        super().__init__(kind, quota_bytes)
        self.data_dir = Path(data_dir)
        self.values_dir = self.data_dir / "values"
        self.index_file = self.data_dir / "index.json"
        self._index: dict[str, str] = {}
        self._index_lock = threading.RLock()
        self._initialized = False

    def probe(self) -> bool:
        """Create the directory layout and check it is writable."""
        try:
            self._initialize()
        except OSError:
            return False
        return os.access(self.values_dir, os.W_OK)

    def _initialize(self) -> None:
        if self._initialized:
            return
        self.values_dir.mkdir(parents=True, exist_ok=True)
        self._load_index()
        if not self.index_file.exists():
            self._save_index()
        self._initialized = True

    def _load_index(self) -> None:
        """Load the index mapping keys to filenames."""
        if self.index_file.exists():
            try:
                with open(self.index_file) as f:
                    self._index = json.load(f)
            except (OSError, json.JSONDecodeError):
                self._index = {}

    def _save_index(self) -> None:
        """Save the index atomically."""
        temp_fd, temp_path = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
        try:
            with open(temp_fd, "w") as f:
                json.dump(self._index, f, indent=2, sort_keys=True)

            Path(temp_path).replace(self.index_file)
        except Exception:
            Path(temp_path).unlink(missing_ok=True)
            raise

    def _key_to_filename(self, key: str) -> str:
        """Convert key to a safe, collision-free filename."""
        safe_key = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
        return f"{safe_key}-{digest}.json"

    def _path_for(self, key: str) -> Path:
        with self._index_lock:
            return self.values_dir / self._index.get(key, self._key_to_filename(key))

    def _used_by_others(self, key: str) -> int:
        total = 0
        with self._index_lock:
            entries = [(k, name) for k, name in self._index.items() if k != key]
        for _, name in entries:
            try:
                total += (self.values_dir / name).stat().st_size
            except OSError:
                continue
        return total

    def _read_sync(self, key: str) -> bytes | None:
        self._initialize()
        with self._index_lock:
            if key not in self._index:
                return None

        path = self._path_for(key)
        if not path.exists():
            return None

        with open(path, "rb") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_SH)
            try:
                return f.read()
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _write_sync(self, key: str, data: bytes) -> None:
        self._initialize()
        self._check_quota(key, len(data), self._used_by_others(key))
        path = self._path_for(key)

        temp_fd, temp_path = tempfile.mkstemp(dir=self.values_dir, suffix=".tmp")
        try:
            with open(temp_fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            Path(temp_path).replace(path)

            with self._index_lock:
                self._index[key] = path.name
                self._save_index()

        except Exception:
            Path(temp_path).unlink(missing_ok=True)
            raise

    def _delete_sync(self, key: str) -> bool:
        self._initialize()
        with self._index_lock:
            if key not in self._index:
                return False

            path = self._path_for(key)
            path.unlink(missing_ok=True)
            del self._index[key]
            self._save_index()
            return True

    def _keys_sync(self) -> list[str]:
        self._initialize()
        with self._index_lock:
            index_keys = list(self._index.keys())
        return [key for key in index_keys if self._path_for(key).exists()]

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read_sync, key)

    async def set(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write_sync, key, data)

    async def remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, key)

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys_sync)
