from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

import pytest
import requests
import responses

from b256_client.models import Failure, Loading, Pong, Session, Success
from b256_client.monitor import NetworkMonitor
from b256_client.services import NO_CONNECTION_MESSAGE, ServiceManager, build_service
from b256_client.stores import PreferenceManager

from conftest import BASE_URL, FakeConnectivity, collect, drain

PING_URL = BASE_URL + "client/v4/ping"


@pytest.fixture
def connectivity():
    return FakeConnectivity(connected=True)


@pytest.fixture
def service(settings, connectivity, background):
    service = build_service(settings, connectivity=connectivity, background=background)
    yield service
    service.close()


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.mark.asyncio
async def test_ping_success(service, mocked):
    mocked.add(responses.GET, PING_URL, json={"result": "ok", "success": "true", "extra": 1}, status=200)

    items = await collect(service.ping())

    assert items == [Loading(True), Success(Pong(result="ok", success="true")), Loading(False)]


@pytest.mark.asyncio
async def test_ping_server_error_message(service, mocked):
    mocked.add(responses.GET, PING_URL, json={"message": "server down"}, status=500)

    items = await collect(service.ping())

    assert items == [Loading(True), Failure("server down"), Loading(False)]


@pytest.mark.asyncio
async def test_ping_error_without_body_uses_normalized_reason(service, mocked):
    mocked.add(responses.GET, PING_URL, body="", status=503)

    items = await collect(service.ping())

    assert items == [Loading(True), Failure("Erro desconhecido"), Loading(False)]


@pytest.mark.asyncio
async def test_ping_transport_failure(service, mocked):
    mocked.add(responses.GET, PING_URL, body=requests.ConnectionError("connection reset"))

    items = await collect(service.ping())

    assert items == [Loading(True), Failure("connection reset"), Loading(False)]


@pytest.mark.asyncio
async def test_ping_malformed_body(service, mocked):
    mocked.add(responses.GET, PING_URL, json={"result": "ok"}, status=200)

    items = await collect(service.ping())

    assert items[0] == Loading(True)
    assert isinstance(items[1], Failure)
    assert items[1].message.startswith("Erro inesperado: ")
    assert items[2] == Loading(False)


@pytest.mark.asyncio
async def test_ping_offline_is_a_single_failure(service, connectivity, mocked):
    connectivity.connected = False

    items = await collect(service.ping())

    assert items == [Failure(NO_CONNECTION_MESSAGE)]
    assert len(mocked.calls) == 0


@pytest.mark.asyncio
async def test_ping_sends_session_token_and_user_agent(settings, background, mocked):
    mocked.add(responses.GET, PING_URL, json={"result": "ok", "success": "true"}, status=200)
    preference = PreferenceManager(settings.session_store_path)
    preference.set_session(Session("tok-9"))

    fresh = build_service(settings, connectivity=FakeConnectivity(), background=background)
    try:
        drain(background)
        await collect(fresh.ping())
    finally:
        fresh.close()

    headers = mocked.calls[0].request.headers
    assert headers["Authorization"] == "Bearer tok-9"
    assert headers["User-Agent"] == settings.user_agent


@pytest.mark.asyncio
async def test_unauthorized_clears_persisted_session(settings, background, mocked):
    preference = PreferenceManager(settings.session_store_path)
    preference.set_session(Session("expired"))
    mocked.add(responses.GET, PING_URL, json={"message": "token expired"}, status=401)

    service = build_service(settings, connectivity=FakeConnectivity(), background=background)
    try:
        drain(background)
        items = await collect(service.ping())
        drain(background)
    finally:
        service.close()

    assert items == [Loading(True), Failure("token expired"), Loading(False)]
    assert PreferenceManager(settings.session_store_path).load() is None


@pytest.mark.asyncio
async def test_cookies_are_replayed_on_next_request(service, mocked):
    mocked.add(
        responses.GET,
        PING_URL,
        json={"result": "ok", "success": "true"},
        status=200,
        headers={"Set-Cookie": "sid=abc; Path=/"},
    )
    mocked.add(responses.GET, PING_URL, json={"result": "ok", "success": "true"}, status=200)

    await collect(service.ping())
    await collect(service.ping())

    assert mocked.calls[1].request.headers["Cookie"] == "sid=abc"


@pytest.mark.asyncio
async def test_concurrent_pings_are_independent(service, mocked):
    mocked.add(responses.GET, PING_URL, json={"result": "ok", "success": "true"}, status=200)

    results = await asyncio.gather(*(collect(service.ping()) for _ in range(5)))

    for items in results:
        assert items == [Loading(True), Success(Pong("ok", "true")), Loading(False)]


@pytest.mark.asyncio
async def test_cancelled_ping_emits_no_failure():
    started = threading.Event()
    release = threading.Event()

    class SlowApi:
        def ping(self):
            started.set()
            release.wait(5)
            response = requests.Response()
            response.status_code = 200
            return response

    service = ServiceManager(NetworkMonitor(FakeConnectivity()), SlowApi())
    seen = []

    async def consume():
        async for item in service.ping():
            seen.append(item)

    task = asyncio.create_task(consume())
    try:
        await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    finally:
        release.set()

    assert seen == [Loading(True)]


@pytest.mark.asyncio
async def test_broken_connectivity_check_does_not_block(mocked):
    connectivity = MagicMock()
    connectivity.is_currently_connected.side_effect = RuntimeError("no permission")
    api = MagicMock()
    response = requests.Response()
    response.status_code = 200
    response._content = b'{"result": "ok", "success": "true"}'
    api.ping.return_value = response

    service = ServiceManager(NetworkMonitor(connectivity), api)

    assert await collect(service.ping()) == [Loading(True), Success(Pong("ok", "true")), Loading(False)]

