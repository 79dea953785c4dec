"""Per-origin key-value persistence backends

The credential store only ever needs string values under a handful of fixed
keys. Backends apply multi-key updates and deletes as one operation so a
reader never sees half of a change.
"""

import json
import logging
import os
import platform
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract string key-value store"""

    @abstractmethod
    def get_many(self, keys: Iterable[str]) -> Dict[str, str]:
        """Read several keys in one consistent read

        Returns:
            Mapping of the requested keys that are present
        """

    @abstractmethod
    def update(self, values: Mapping[str, str]) -> None:
        """Set every key in ``values`` in a single write"""

    @abstractmethod
    def delete(self, keys: Iterable[str]) -> None:
        """Remove every key in ``keys`` in a single write (missing keys are ignored)"""

    def get(self, key: str) -> Optional[str]:
        return self.get_many([key]).get(key)


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, used by tests and embedders that persist elsewhere"""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_many(self, keys: Iterable[str]) -> Dict[str, str]:
        return {key: self._data[key] for key in keys if key in self._data}

    def update(self, values: Mapping[str, str]) -> None:
        self._data.update(values)

    def delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def dump(self) -> Dict[str, str]:
        """Copy of everything stored (debugging and tests)"""
        return dict(self._data)


class FileKeyValueStore(KeyValueStore):
    """JSON file store with owner-only permissions

    Every write replaces the whole file through a temporary file and
    ``os.replace`` so the document on disk is always complete.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._ensure_secure_directory()

    @classmethod
    def for_origin(cls, base_url: str, directory: Path, file_name: str = "session.json") -> "FileKeyValueStore":
        """Create the store scoped to the origin of ``base_url``

        ``https://soc.example.com:8443/api/v1`` maps to
        ``<directory>/https_soc.example.com_8443/<file_name>``.
        """
        return cls(Path(directory).expanduser() / origin_slug(base_url) / file_name)

    def _ensure_secure_directory(self):
        """Create parent directory with secure permissions"""
        parent_dir = self.path.parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)
            # Set directory permissions to 700 on Unix-like systems
            if platform.system() != "Windows":
                os.chmod(parent_dir, 0o700)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable credential file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed credential file {self.path}")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        self._ensure_secure_directory()
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            # Set file permissions to 600 on Unix-like systems
            if platform.system() != "Windows":
                os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get_many(self, keys: Iterable[str]) -> Dict[str, str]:
        data = self._load()
        return {key: data[key] for key in keys if key in data}

    def update(self, values: Mapping[str, str]) -> None:
        data = self._load()
        data.update(values)
        self._write(data)

    def delete(self, keys: Iterable[str]) -> None:
        data = self._load()
        removed = [key for key in keys if data.pop(key, None) is not None]
        if not removed:
            return
        if data:
            self._write(data)
        else:
            self.path.unlink(missing_ok=True)


def origin_slug(base_url: str) -> str:
    """Filesystem-safe name for the scheme/host/port of a URL"""
    parts = urlsplit(base_url)
    scheme = parts.scheme or "http"
    host = parts.hostname or "localhost"
    slug = f"{scheme}_{host}"
    if parts.port:
        slug += f"_{parts.port}"
    return re.sub(r"[^A-Za-z0-9._-]", "_", slug)
