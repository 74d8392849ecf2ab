from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from typing import Any, AsyncIterator

from msal_extensions import CrossPlatLock, FilePersistence, FilePersistenceWithDataProtection

from b256_client.models import Session

logger = logging.getLogger(__name__)


def build_persistence(path: str, protect: bool = False):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if protect:
        try:
            return FilePersistenceWithDataProtection(path)
        except Exception:
            # Data protection is only available on Windows.
            pass
    return FilePersistence(path)


class _JsonDocument:
    """A JSON object stored through a msal_extensions persistence.

    Threads of this process are serialized by ``_lock``; other processes by the
    lock file next to the document.
    """

    def __init__(self, persistence):
        self._persistence = persistence
        self._lock = threading.Lock()
        self._lock_path = persistence.get_location() + ".lockfile"

    def read(self) -> dict[str, Any]:
        with self._lock:
            return self._read_unlocked()

    def update(self, change) -> dict[str, Any]:
        with self._lock, CrossPlatLock(self._lock_path):
            document = self._read_unlocked()
            document = change(document)
            self._persistence.save(json.dumps(document))
            return document

    def _read_unlocked(self) -> dict[str, Any]:
        try:
            raw = self._persistence.load()
        except OSError:
            # PersistenceNotFound is an OSError: nothing stored yet.
            return {}

        if not raw:
            return {}
        try:
            document = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt store %s", self._persistence.get_location())
            return {}
        return document if isinstance(document, dict) else {}


class CookieStore:
    def __init__(self, path: str, persistence=None):
        self._document = _JsonDocument(persistence or build_persistence(path))

    def all(self) -> dict[str, list[str]]:
        entries = self._document.read()
        return {
            str(host): [str(value) for value in values]
            for host, values in entries.items()
            if isinstance(values, list)
        }

    def save(self, host: str, values: list[str]) -> None:
        def change(document: dict[str, Any]) -> dict[str, Any]:
            document[host] = list(values)
            return document

        self._document.update(change)

    def clear(self) -> None:
        self._document.update(lambda _: {})


class PreferenceManager:
    """Persistent session preference with a synchronously readable cache.

    ``current_session()`` never touches the disk; the cache is filled by
    ``load()`` and replaced on every write, so readers observe either the old
    or the new session.
    """

    def __init__(self, path: str, persistence=None):
        self._document = _JsonDocument(persistence or build_persistence(path, protect=True))
        self._lock = threading.Lock()
        self._session: Session | None = None
        self._loaded = False
        self._writes = 0
        self._watchers: set[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = set()

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> Session | None:
        with self._lock:
            writes = self._writes
        session = _session_from_document(self._document.read())
        if not self._publish(session, unless_written_since=writes):
            # A set_session or clean finished after the read; it is newer.
            return self.current_session()
        return session

    def current_session(self) -> Session | None:
        with self._lock:
            return self._session

    def set_session(self, session: Session) -> None:
        self._document.update(lambda _: {"session": {"token": session.token}})
        self._publish(session, count_write=True)

    def clean(self) -> None:
        self._document.update(lambda _: {})
        self._publish(None, count_write=True)
        logger.info("Session cleared")

    async def get_session(self) -> AsyncIterator[Session | None]:
        if not self._loaded:
            await asyncio.to_thread(self.load)

        changed = asyncio.Event()
        watcher = (asyncio.get_running_loop(), changed)
        with self._lock:
            self._watchers.add(watcher)
        try:
            last = self.current_session()
            yield last
            while True:
                await changed.wait()
                changed.clear()
                value = self.current_session()
                if value != last:
                    last = value
                    yield value
        finally:
            with self._lock:
                self._watchers.discard(watcher)

    def _publish(
        self,
        session: Session | None,
        unless_written_since: int | None = None,
        count_write: bool = False,
    ) -> bool:
        with self._lock:
            if unless_written_since is not None and self._writes != unless_written_since:
                return False
            if count_write:
                self._writes += 1
            self._session = session
            self._loaded = True
            watchers = list(self._watchers)

        for loop, event in watchers:
            try:
                loop.call_soon_threadsafe(event.set)
            except RuntimeError:
                # Loop already closed; the subscriber is gone.
                with self._lock:
                    self._watchers.discard((loop, event))
        return True


def _session_from_document(document: dict[str, Any]) -> Session | None:
    payload = document.get("session")
    if not isinstance(payload, dict):
        return None
    token = str(payload.get("token") or "").strip()
    if not token:
        return None
    return Session(token=token)
