from __future__ import annotations

from http import HTTPStatus
from http.cookiejar import DefaultCookiePolicy
from typing import Any, Callable, Sequence
from urllib.parse import urljoin

import requests

from b256_client.config import AppSettings
from b256_client.cookies import Cookie, CookieJar

Interceptor = Callable[[requests.PreparedRequest, "Chain"], requests.Response]


class Chain:
    """Position of a request inside the interceptor list.

    ``proceed`` hands the (possibly rewritten) request to the next interceptor,
    or to the terminal stage once the list is exhausted.
    """

    def __init__(
        self,
        interceptors: Sequence[Interceptor],
        index: int,
        request: requests.PreparedRequest,
        terminal: Callable[[requests.PreparedRequest], requests.Response],
    ):
        self._interceptors = interceptors
        self._index = index
        self._request = request
        self._terminal = terminal

    @property
    def request(self) -> requests.PreparedRequest:
        return self._request

    def proceed(self, request: requests.PreparedRequest) -> requests.Response:
        if self._index >= len(self._interceptors):
            return self._terminal(request)

        interceptor = self._interceptors[self._index]
        following = Chain(self._interceptors, self._index + 1, request, self._terminal)
        return interceptor(request, following)


class HttpClient:
    def __init__(
        self,
        settings: AppSettings,
        interceptors: Sequence[Interceptor] = (),
        cookie_jar: CookieJar | None = None,
        session: requests.Session | None = None,
    ):
        self._settings = settings
        self._interceptors = tuple(interceptors)
        self._cookie_jar = cookie_jar
        self._session = session or requests.Session()
        # The cookie jar owns cookies; keep requests from storing its own copy.
        self._session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self._session.headers.update({"Accept": "application/json"})

    def url_for(self, path: str) -> str:
        return urljoin(self._settings.base_url, path)

    def get(self, path: str, params: dict[str, Any] | None = None) -> requests.Response:
        return self.execute("GET", self.url_for(path), params=params)

    def execute(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        request = requests.Request(method, url, params=params, json=json, headers=headers)
        prepared = self._session.prepare_request(request)
        chain = Chain(self._interceptors, 0, prepared, self._send)
        return chain.proceed(prepared)

    def _send(self, request: requests.PreparedRequest) -> requests.Response:
        url = request.url or ""
        if self._cookie_jar is not None:
            header = cookie_header(self._cookie_jar.load_for_request(url), url)
            if header:
                request.headers["Cookie"] = header

        response = self._session.send(
            request,
            timeout=self._settings.timeout_seconds,
        )

        if self._cookie_jar is not None:
            # Cookies belong to the URL that finally answered.
            url = response.url or url
            cookies = [
                cookie
                for cookie in (Cookie.parse(url, raw) for raw in set_cookie_headers(response))
                if cookie is not None
            ]
            if cookies:
                self._cookie_jar.save_from_response(url, cookies)

        return response

    def close(self) -> None:
        self._session.close()


def cookie_header(cookies: Sequence[Cookie], url: str) -> str:
    return "; ".join(
        f"{cookie.name}={cookie.value}"
        for cookie in cookies
        if not cookie.expired() and cookie.matches(url)
    )


def set_cookie_headers(response: requests.Response) -> list[str]:
    raw_headers = getattr(getattr(response, "raw", None), "headers", None)
    getlist = getattr(raw_headers, "getlist", None)
    if getlist is not None:
        return list(getlist("Set-Cookie"))

    value = response.headers.get("Set-Cookie")
    return [value] if value else []


def error_response(
    status_code: int,
    message: str,
    request: requests.PreparedRequest | None = None,
) -> requests.Response:
    """Build a plain-text response for a call that never reached the server."""
    response = requests.Response()
    response.status_code = status_code
    response._content = message.encode("utf-8")
    response.encoding = "utf-8"
    response.headers["Content-Type"] = "text/plain; charset=utf-8"
    try:
        response.reason = HTTPStatus(status_code).phrase
    except ValueError:
        response.reason = ""
    response.request = request
    response.url = request.url if request is not None and request.url else ""
    return response
