from __future__ import annotations

import asyncio
import logging
from typing import Callable, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import requests

from b256_client.http import error_response
from b256_client.interceptors import UNKNOWN_ERROR_MESSAGE

logger = logging.getLogger(__name__)

A = TypeVar("A")


class NetworkTracer:
    """Runs API stub calls inside a named span and never lets them raise.

    The blocking stub call runs on a worker thread. Transport and unexpected
    errors come back as a synthetic 500 response carrying the error text, so
    the caller only ever deals with responses. Cancellation is re-raised.
    """

    def __init__(self, tracer: trace.Tracer | None = None):
        self._tracer = tracer or trace.get_tracer("b256_client")

    async def trace(self, api: A, block: Callable[[A], requests.Response]) -> requests.Response:
        label = f"Network.{type(api).__name__}"
        with self._tracer.start_as_current_span(label, record_exception=False, set_status_on_exception=False) as span:
            try:
                response = await asyncio.to_thread(block, api)
            except asyncio.CancelledError:
                logger.debug("%s cancelled", label)
                raise
            except Exception as exc:
                # Transport errors (requests exceptions are OSErrors) need no traceback.
                logger.debug("%s failed: %s", label, exc, exc_info=not isinstance(exc, OSError))
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                return _failure(exc)

            span.set_attribute("http.status_code", response.status_code)
            return response


def _failure(exc: BaseException) -> requests.Response:
    return error_response(500, str(exc) or UNKNOWN_ERROR_MESSAGE)
