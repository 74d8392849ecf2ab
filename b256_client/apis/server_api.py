from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from b256_client.config import AppSettings
from b256_client.http import HttpClient
from b256_client.models import Pong


@dataclass(frozen=True)
class PongResponse:
    result: str
    success: str

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "PongResponse":
        # Unknown keys are ignored; missing ones are a mapping error.
        if not isinstance(payload, dict):
            raise ValueError("Ping response must be a JSON object")
        try:
            return PongResponse(result=str(payload["result"]), success=str(payload["success"]))
        except KeyError as exc:
            raise ValueError(f"Ping response is missing {exc.args[0]!r}") from exc

    def as_model(self) -> Pong:
        return Pong(result=self.result, success=self.success)


class ServerApi:
    def __init__(self, settings: AppSettings, http_client: HttpClient):
        self._settings = settings
        self._http_client = http_client

    def ping(self) -> requests.Response:
        return self._http_client.get(self._settings.ping_path)
