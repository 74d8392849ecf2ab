from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, TypeVar

import requests

from b256_client.models import Failure, Loading, Resource, Success

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Erro inesperado"

T = TypeVar("T")
O = TypeVar("O")


def unexpected_error(exc: BaseException) -> str:
    return f"{UNEXPECTED_ERROR_MESSAGE}: {exc}"


def error_message(response: requests.Response) -> str:
    """Message for a failed response.

    A ``message`` field of a JSON error body wins, then the raw body text when
    it is not blank, then the reason phrase.
    """
    text = response.text or ""
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message

    if text.strip():
        return text
    return response.reason or ""


def response_body(response: requests.Response) -> Any:
    if not response.content or not response.content.strip():
        return None
    return response.json()


def to_resource(
    response: requests.Response,
    mapper: Callable[..., O] | None = None,
    with_headers: bool = False,
) -> Resource[O]:
    """Convert a finished response into Success or Failure; never raises.

    With ``with_headers`` the mapper is called as ``mapper(headers, body)``.
    An empty successful body yields ``Success(None)`` without calling it.
    """
    try:
        if not response.ok:
            return Failure(error_message(response))

        body = response_body(response)
        if body is None:
            return Success(None)
        if mapper is None:
            return Success(body)
        if with_headers:
            return Success(mapper(response.headers, body))
        return Success(mapper(body))
    except Exception as exc:
        logger.debug("Mapping %s failed: %s", response.url, exc)
        return Failure(unexpected_error(exc))


async def as_resource_flow(
    response: requests.Response,
    mapper: Callable[..., O] | None = None,
    with_headers: bool = False,
) -> AsyncIterator[Resource[O]]:
    yield Loading(True)
    yield to_resource(response, mapper, with_headers)
    yield Loading(False)


async def resource_flow(
    fetch: Callable[[], Awaitable[requests.Response]],
    mapper: Callable[..., O] | None = None,
    with_headers: bool = False,
) -> AsyncIterator[Resource[O]]:
    """Fetch inside the stream: ``Loading(True)``, one terminal state, ``Loading(False)``.

    Anything ``fetch`` raises becomes a Failure, except cancellation.
    """
    yield Loading(True)
    try:
        response = await fetch()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.debug("Request failed before a response: %s", exc)
        resource: Resource[O] = Failure(unexpected_error(exc))
    else:
        resource = to_resource(response, mapper, with_headers)
    yield resource
    yield Loading(False)


async def as_resource(stream: AsyncIterable[T]) -> AsyncIterator[Resource[T]]:
    """Wrap every value of ``stream`` as Success, bracketed by Loading states.

    An error from the stream ends it with a single Failure.
    """
    yield Loading(True)
    try:
        async for value in stream:
            yield Success(value)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        yield Failure(str(exc) or unexpected_error(exc))
    yield Loading(False)
