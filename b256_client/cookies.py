from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
import logging
import threading
import time
from typing import Protocol
from urllib.parse import urlsplit

from b256_client.background import BackgroundScope
from b256_client.stores import CookieStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires_at: float | None = None
    secure: bool = False
    http_only: bool = False
    host_only: bool = True

    @staticmethod
    def parse(url: str, raw: str) -> "Cookie | None":
        """Parse a ``Set-Cookie`` value received from ``url``.

        Returns None when the line has no ``name=value`` pair, when ``url`` has
        no host, or when the Domain attribute does not cover the host.
        """
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        if not host:
            return None

        pieces = raw.split(";")
        pair = pieces[0].strip()
        if "=" not in pair:
            return None
        name, value = (item.strip() for item in pair.split("=", 1))
        if not name:
            return None

        domain: str | None = None
        path: str | None = None
        expires_at: float | None = None
        max_age: int | None = None
        secure = False
        http_only = False

        for attribute in pieces[1:]:
            key, _, attr_value = attribute.strip().partition("=")
            key = key.strip().lower()
            attr_value = attr_value.strip()

            if key == "expires":
                expires_at = _parse_http_date(attr_value)
            elif key == "max-age":
                try:
                    max_age = int(attr_value)
                except ValueError:
                    continue
            elif key == "domain":
                candidate = attr_value.lstrip(".").lower()
                if candidate:
                    domain = candidate
            elif key == "path":
                if attr_value.startswith("/"):
                    path = attr_value
            elif key == "secure":
                secure = True
            elif key == "httponly":
                http_only = True

        if max_age is not None:
            expires_at = time.time() + max_age if max_age > 0 else 0.0

        if domain is not None and not _domain_match(host, domain):
            return None

        return Cookie(
            name=name,
            value=value,
            domain=domain or host,
            path=path or _default_path(parts.path),
            expires_at=expires_at,
            secure=secure,
            http_only=http_only,
            host_only=domain is None,
        )

    def expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (time.time() if now is None else now)

    def matches(self, url: str) -> bool:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        if self.host_only:
            domain_ok = host == self.domain
        else:
            domain_ok = _domain_match(host, self.domain)
        if not domain_ok:
            return False
        if self.secure and parts.scheme != "https":
            return False
        return _path_match(parts.path or "/", self.path)

    def __str__(self) -> str:
        rendered = [f"{self.name}={self.value}"]
        if self.expires_at is not None:
            rendered.append(f"expires={formatdate(self.expires_at, usegmt=True)}")
        if not self.host_only:
            rendered.append(f"domain={self.domain}")
        rendered.append(f"path={self.path}")
        if self.secure:
            rendered.append("secure")
        if self.http_only:
            rendered.append("httponly")
        return "; ".join(rendered)


class CookieJar(Protocol):
    def save_from_response(self, url: str, cookies: list[Cookie]) -> None:
        ...

    def load_for_request(self, url: str) -> list[Cookie]:
        ...


class CookieManager:
    """Per-host cookie cache persisted through a :class:`CookieStore`.

    The jar methods are called from transport threads and never do I/O; the
    store is read once at start-up and written after every save, both on the
    background scope.
    """

    def __init__(self, store: CookieStore, background: BackgroundScope):
        self._store = store
        self._background = background
        self._cache: dict[str, list[Cookie]] = {}
        self._lock = threading.Lock()
        self._initial_load = background.launch(self._load_persisted)

    def load(self) -> Future:
        return self._initial_load

    def _load_persisted(self) -> None:
        restored = 0
        for host, values in self._store.all().items():
            url = f"https://{host}/"
            if not urlsplit(url).hostname:
                continue
            cookies = [cookie for cookie in (Cookie.parse(url, value) for value in values) if cookie]
            if not cookies:
                continue
            with self._lock:
                # A response may already have replaced this host's cookies.
                self._cache.setdefault(host, cookies)
            restored += 1
        logger.debug("Restored cookies for %d host(s)", restored)

    def save_from_response(self, url: str, cookies: list[Cookie]) -> None:
        host = (urlsplit(url).hostname or "").lower()
        if not host:
            return

        snapshot = list(cookies)
        with self._lock:
            self._cache[host] = snapshot

        self._background.launch(self._store.save, host, [str(cookie) for cookie in snapshot])

    def load_for_request(self, url: str) -> list[Cookie]:
        host = (urlsplit(url).hostname or "").lower()
        with self._lock:
            return list(self._cache.get(host, ()))

    def clear(self) -> Future:
        with self._lock:
            self._cache.clear()
        return self._background.launch(self._store.clear)


def _parse_http_date(value: str) -> float | None:
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError, IndexError):
        return None


def _domain_match(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def _default_path(request_path: str) -> str:
    if not request_path.startswith("/"):
        return "/"
    last_slash = request_path.rfind("/")
    if last_slash <= 0:
        return "/"
    return request_path[:last_slash]


def _path_match(request_path: str, cookie_path: str) -> bool:
    if request_path == cookie_path:
        return True
    if request_path.startswith(cookie_path):
        return cookie_path.endswith("/") or request_path[len(cookie_path)] == "/"
    return False
