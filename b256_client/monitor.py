from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging
import socket
import threading
import time
from typing import AsyncIterator, Callable, Hashable, Protocol, TypeVar

from opentelemetry import trace

logger = logging.getLogger(__name__)

T = TypeVar("T")

_tracer = trace.get_tracer("b256_client")


class NetworkCallback:
    """Tracks the networks currently reported as having internet access."""

    def __init__(self, send: Callable[[bool], None]):
        self._send = send
        self._networks: set[Hashable] = set()
        self._lock = threading.Lock()

    def on_available(self, network: Hashable) -> None:
        with self._lock:
            self._networks.add(network)
        self._send(True)

    def on_lost(self, network: Hashable) -> None:
        with self._lock:
            self._networks.discard(network)
            connected = bool(self._networks)
        self._send(connected)


class ConnectivityManager(Protocol):
    def register_network_callback(self, callback: NetworkCallback) -> None:
        ...

    def unregister_network_callback(self, callback: NetworkCallback) -> None:
        ...

    def is_currently_connected(self) -> bool:
        ...


class SocketConnectivityManager:
    """Connectivity from periodic TCP connects to the API host.

    A result is reused for one interval, so back-to-back subscriptions share a
    single connect. The watch thread only runs while at least one callback is
    registered and reports transitions as a single network named
    ``"default"``; its first check happens one interval after it starts.
    """

    NETWORK = "default"

    def __init__(self, host: str, port: int = 443, interval_seconds: float = 5.0, timeout_seconds: float = 3.0):
        self._address = (host, port)
        self._interval_seconds = interval_seconds
        self._timeout_seconds = timeout_seconds
        self._callbacks: list[NetworkCallback] = []
        self._lock = threading.Lock()
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._checked: tuple[float, bool] | None = None

    def is_currently_connected(self) -> bool:
        with self._lock:
            checked = self._checked
        if checked is not None and time.monotonic() - checked[0] < self._interval_seconds:
            return checked[1]
        return self._check()

    def register_network_callback(self, callback: NetworkCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)
            if self._thread is None:
                self._stop = threading.Event()
                self._thread = threading.Thread(
                    target=self._run, args=(self._stop,), name="b256-connectivity", daemon=True
                )
                self._thread.start()

    def unregister_network_callback(self, callback: NetworkCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
            if not self._callbacks and self._thread is not None:
                self._stop.set()
                self._stop = None
                self._thread = None

    def _check(self) -> bool:
        try:
            with socket.create_connection(self._address, timeout=self._timeout_seconds):
                connected = True
        except OSError:
            connected = False
        with self._lock:
            self._checked = (time.monotonic(), connected)
        return connected

    def _run(self, stop: threading.Event) -> None:
        with self._lock:
            connected = self._checked[1] if self._checked is not None else None
        while not stop.wait(self._interval_seconds):
            current = self._check()
            if current == connected:
                continue
            connected = current
            with self._lock:
                callbacks = list(self._callbacks)
            for callback in callbacks:
                if current:
                    callback.on_available(self.NETWORK)
                else:
                    callback.on_lost(self.NETWORK)


class NetworkMonitor:
    """Observable connectivity state.

    Every subscription starts with the current state, then yields only
    changes; values produced faster than the subscriber reads are conflated.
    """

    def __init__(self, connectivity: ConnectivityManager | None):
        self._connectivity = connectivity

    async def is_available(self) -> AsyncIterator[bool]:
        connectivity = self._connectivity
        if connectivity is None:
            yield False
            return

        loop = asyncio.get_running_loop()
        changed = asyncio.Event()
        latest: list[bool] = []

        def publish(value: bool) -> None:
            latest[:] = [value]
            changed.set()

        def send(value: bool) -> None:
            try:
                loop.call_soon_threadsafe(publish, value)
            except RuntimeError:
                logger.debug("Connectivity change after the subscriber's loop closed")

        callback = NetworkCallback(send)
        with _tracer.start_as_current_span("NetworkMonitor.registerNetworkCallback"):
            connectivity.register_network_callback(callback)
        try:
            current = await asyncio.to_thread(connectivity.is_currently_connected)
            if not latest:
                # A callback that fired during the check is newer than its result.
                publish(current)

            last: bool | None = None
            while True:
                await changed.wait()
                changed.clear()
                value = latest[0]
                if value != last:
                    last = value
                    yield value
        finally:
            connectivity.unregister_network_callback(callback)

    async def is_unavailable(self) -> AsyncIterator[bool]:
        async with aclosing(self.is_available()) as available:
            async for connected in available:
                yield not connected


async def first_value(stream: AsyncIterator[T]) -> T:
    async with aclosing(stream) as values:
        async for value in values:
            return value
    raise LookupError("Stream finished without a value")
