"""
Session persistence.

Opaque key-value store for interview sessions, keyed by session id. The value
is the session's JSON-compatible dict (InterviewSession.to_dict()).

- InMemorySessionStore: process memory; default, and used in tests.
- JsonFileSessionStore: one <id>.json file per session, written atomically.
"""

import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import config

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class SessionStore(ABC):
    @abstractmethod
    def save(self, session_id: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored dict, or None when the id is unknown."""
        pass

    @abstractmethod
    def list_ids(self) -> List[str]:
        pass

    def exists(self, session_id: str) -> bool:
        return self.load(session_id) is not None


class InMemorySessionStore(SessionStore):
    """Thread-safe dict store. Values are deep-copied through JSON on the way in and out."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, session_id: str, data: Dict[str, Any]) -> None:
        encoded = json.dumps(data)
        with self._lock:
            self._data[session_id] = encoded

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            encoded = self._data.get(session_id)
        return json.loads(encoded) if encoded is not None else None

    def list_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class JsonFileSessionStore(SessionStore):
    """One JSON document per session under a directory."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = config.get_store_dir(directory)
        os.makedirs(self.directory, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, session_id: str) -> str:
        if not _SAFE_ID.match(session_id or ""):
            raise ValueError("Invalid session id: %r" % session_id)
        return os.path.join(self.directory, session_id + ".json")

    def save(self, session_id: str, data: Dict[str, Any]) -> None:
        path = self._path(session_id)
        with self._lock:
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, path)
            finally:
                if os.path.exists(tmp):
                    os.remove(tmp)

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            path = self._path(session_id)
        except ValueError:
            return None
        if not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def list_ids(self) -> List[str]:
        return sorted(name[:-5] for name in os.listdir(self.directory) if name.endswith(".json"))


def build_session_store(kind: Optional[str] = None) -> SessionStore:
    """
    Construct the store named by kind (default config.SESSION_STORE).

    Raises:
        ValueError: For an unknown store kind
    """
    kind = (kind or config.SESSION_STORE).strip().lower()
    if kind == "memory":
        return InMemorySessionStore()
    if kind == "file":
        return JsonFileSessionStore()
    raise ValueError("Unknown session store: %s" % kind)


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Return the shared session store, creating it on first call (lazy init)."""
    global _session_store
    if _session_store is None:
        _session_store = build_session_store()
        logger.info("Session store: %s", type(_session_store).__name__)
    return _session_store
