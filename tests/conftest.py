from __future__ import annotations

import threading

import pytest

from b256_client.background import BackgroundScope
from b256_client.config import AppSettings
from b256_client.stores import CookieStore, PreferenceManager

BASE_URL = "https://api.b256.test/"


def make_settings(tmp_path, **overrides) -> AppSettings:
    values = dict(
        base_url=BASE_URL,
        ping_path="client/v4/ping",
        timeout_seconds=5,
        user_agent="b256-tests",
        login_marker="login",
        data_dir=str(tmp_path / "data"),
        http_log_level="none",
        connectivity_host="127.0.0.1",
        connectivity_port=9,
        connectivity_interval_seconds=0.05,
    )
    values.update(overrides)
    return AppSettings(**values)


class FakeConnectivity:
    """Connectivity manager driven by the test."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.callbacks = []
        self._lock = threading.Lock()

    def register_network_callback(self, callback) -> None:
        with self._lock:
            self.callbacks.append(callback)

    def unregister_network_callback(self, callback) -> None:
        with self._lock:
            self.callbacks.remove(callback)

    def is_currently_connected(self) -> bool:
        return self.connected

    def available(self, network="wifi") -> None:
        self.connected = True
        for callback in list(self.callbacks):
            callback.on_available(network)

    def lost(self, network="wifi") -> None:
        for callback in list(self.callbacks):
            callback.on_lost(network)


async def collect(stream) -> list:
    return [item async for item in stream]


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return make_settings(tmp_path)


@pytest.fixture
def background():
    scope = BackgroundScope(name="b256-test")
    yield scope
    scope.close(wait=True)


@pytest.fixture
def preference(tmp_path) -> PreferenceManager:
    return PreferenceManager(str(tmp_path / "data" / "session.json"))


@pytest.fixture
def cookie_store(tmp_path) -> CookieStore:
    return CookieStore(str(tmp_path / "data" / "cookies.json"))


def drain(scope: BackgroundScope) -> None:
    pending = scope.pending()
    while pending:
        for future in pending:
            future.result(timeout=5)
        pending = [future for future in scope.pending() if not future.done()]
