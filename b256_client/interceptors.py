from __future__ import annotations

from http import HTTPStatus
import json
import logging
import time
from urllib.parse import urlsplit

import requests

from b256_client.background import BackgroundScope
from b256_client.http import Chain
from b256_client.stores import PreferenceManager

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "Erro desconhecido"


class AuthorizationInterceptor:
    """Adds the bearer token and user agent; drops the session on 401."""

    def __init__(
        self,
        preference: PreferenceManager,
        user_agent: str,
        background: BackgroundScope,
        login_marker: str = "login",
    ):
        self._preference = preference
        self._user_agent = user_agent
        self._background = background
        self._login_marker = login_marker

    def _token(self) -> str:
        session = self._preference.current_session()
        return session.token if session else ""

    def __call__(self, request: requests.PreparedRequest, chain: Chain) -> requests.Response:
        request.headers["Authorization"] = f"Bearer {self._token()}"
        # Browser user agent keeps the WAF in front of the API from flagging us as a bot.
        request.headers["User-Agent"] = self._user_agent

        response = chain.proceed(request)

        path = urlsplit(request.url or "").path
        if response.status_code == HTTPStatus.UNAUTHORIZED and self._login_marker not in path:
            logger.info("Unauthorized response for %s, clearing session", path)
            self._background.launch(self._preference.clean)

        return response


class ExceptionInterceptor:
    """Replaces the reason phrase of failed responses with the server's message."""

    def __call__(self, request: requests.PreparedRequest, chain: Chain) -> requests.Response:
        response = chain.proceed(request)
        if response.ok:
            return response

        try:
            response.reason = _error_message(response)
        except Exception:
            logger.exception("Could not normalize error response for %s", request.url)
        return response


def _error_message(response: requests.Response) -> str:
    try:
        payload = json.loads(response.content or b"")
    except ValueError:
        return UNKNOWN_ERROR_MESSAGE
    if not isinstance(payload, dict):
        return UNKNOWN_ERROR_MESSAGE

    message = payload.get("message")
    if message is None:
        return UNKNOWN_ERROR_MESSAGE
    return str(message)


class LoggingInterceptor:
    """Debug logging of every exchange: ``basic`` logs lines, ``body`` adds payloads."""

    def __init__(self, level: str = "basic", http_logger: logging.Logger | None = None):
        self._level = level
        self._logger = http_logger or logger

    def __call__(self, request: requests.PreparedRequest, chain: Chain) -> requests.Response:
        if self._level == "none":
            return chain.proceed(request)

        self._logger.debug("--> %s %s", request.method, request.url)
        if self._level == "body" and request.body:
            self._logger.debug("%s", _printable(request.body))

        started = time.perf_counter()
        response = chain.proceed(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        self._logger.debug(
            "<-- %d %s %s (%.1fms)",
            response.status_code,
            response.reason or "",
            request.url,
            elapsed_ms,
        )
        if self._level == "body" and response.content:
            self._logger.debug("%s", _printable(response.content))
        return response


def _printable(body) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return str(body)
