from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import aclosing
import logging
from operator import methodcaller
from typing import AsyncIterator, Callable, Sequence, TypeVar

import requests

from b256_client.apis import PongResponse, ServerApi
from b256_client.background import BackgroundScope
from b256_client.config import AppSettings
from b256_client.cookies import CookieManager
from b256_client.http import HttpClient, Interceptor
from b256_client.interceptors import AuthorizationInterceptor, ExceptionInterceptor, LoggingInterceptor
from b256_client.mapper import resource_flow
from b256_client.models import Failure, Pong, Resource
from b256_client.monitor import ConnectivityManager, NetworkMonitor, SocketConnectivityManager, first_value
from b256_client.stores import CookieStore, PreferenceManager
from b256_client.tracer import NetworkTracer

logger = logging.getLogger(__name__)

NO_CONNECTION_MESSAGE = "Sem conexão com a internet"

A = TypeVar("A")
T = TypeVar("T")


class Service(ABC):
    @abstractmethod
    def ping(self) -> AsyncIterator[Resource[Pong]]:
        raise NotImplementedError


class ServiceManager(Service):
    """Entry point for remote operations.

    Every operation checks connectivity first; when offline the stream is a
    single Failure and nothing is sent. Otherwise it is ``Loading(True)``, one
    Success or Failure, ``Loading(False)``.
    """

    def __init__(
        self,
        network: NetworkMonitor,
        server_api: ServerApi,
        tracer: NetworkTracer | None = None,
        closeables: Sequence[Callable[[], None]] = (),
    ):
        self._network = network
        self._server_api = server_api
        self._tracer = tracer or NetworkTracer()
        self._closeables = list(closeables)

    async def ping(self) -> AsyncIterator[Resource[Pong]]:
        async with aclosing(
            self._api_flow(self._server_api, methodcaller("ping"), _pong_from_body)
        ) as flow:
            async for resource in flow:
                yield resource

    async def _api_flow(
        self,
        api: A,
        block: Callable[[A], requests.Response],
        mapper: Callable[..., T],
    ) -> AsyncIterator[Resource[T]]:
        if await self._is_offline():
            yield Failure(NO_CONNECTION_MESSAGE)
            return

        async with aclosing(resource_flow(lambda: self._tracer.trace(api, block), mapper)) as flow:
            async for resource in flow:
                yield resource

    async def _is_offline(self) -> bool:
        try:
            return await first_value(self._network.is_unavailable())
        except Exception as exc:
            # An unknown state must not block requests.
            logger.warning("Connectivity check failed, dispatching anyway: %s", exc)
            return False

    def close(self) -> None:
        for close in self._closeables:
            close()


def _pong_from_body(body) -> Pong:
    return PongResponse.from_dict(body).as_model()


def build_interceptors(
    settings: AppSettings,
    preference: PreferenceManager,
    background: BackgroundScope,
) -> list[Interceptor]:
    interceptors: list[Interceptor] = []
    if settings.http_log_level != "none":
        interceptors.append(LoggingInterceptor(settings.http_log_level))
    interceptors.append(
        AuthorizationInterceptor(
            preference=preference,
            user_agent=settings.user_agent,
            background=background,
            login_marker=settings.login_marker,
        )
    )
    interceptors.append(ExceptionInterceptor())
    return interceptors


def build_service(
    settings: AppSettings | None = None,
    connectivity: ConnectivityManager | None = None,
    session: requests.Session | None = None,
    background: BackgroundScope | None = None,
) -> ServiceManager:
    settings = settings or AppSettings.from_env()
    closeables: list[Callable[[], None]] = []
    if background is None:
        background = BackgroundScope()
        closeables.append(background.close)

    preference = PreferenceManager(settings.session_store_path)
    background.launch(preference.load)

    cookie_manager = CookieManager(CookieStore(settings.cookie_store_path), background)
    http_client = HttpClient(
        settings,
        interceptors=build_interceptors(settings, preference, background),
        cookie_jar=cookie_manager,
        session=session,
    )

    if connectivity is None:
        connectivity = SocketConnectivityManager(
            host=settings.connectivity_host,
            port=settings.connectivity_port,
            interval_seconds=settings.connectivity_interval_seconds,
        )

    return ServiceManager(
        network=NetworkMonitor(connectivity),
        server_api=ServerApi(settings, http_client),
        closeables=[http_client.close, *closeables],
    )
