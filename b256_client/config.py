from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import sys
from urllib.parse import urlsplit


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.6 Safari/605.1.15"
)

HTTP_LOG_LEVELS = ("none", "basic", "body")


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class AppSettings:
    base_url: str
    ping_path: str
    timeout_seconds: int
    user_agent: str
    login_marker: str
    data_dir: str
    http_log_level: str
    connectivity_host: str
    connectivity_port: int
    connectivity_interval_seconds: float

    @property
    def session_store_path(self) -> str:
        return os.path.join(self.data_dir, "session.json")

    @property
    def cookie_store_path(self) -> str:
        return os.path.join(self.data_dir, "cookies.json")

    @staticmethod
    def from_env() -> "AppSettings":
        _load_dotenv_if_present()

        base_url = os.getenv("B256_BASE_URL", "").strip()
        ping_path = os.getenv("B256_PING_PATH", "client/v4/ping").strip()

        timeout_seconds = int(os.getenv("B256_TIMEOUT_SECONDS", "30"))
        user_agent = os.getenv("B256_USER_AGENT", DEFAULT_USER_AGENT).strip()
        login_marker = os.getenv("B256_LOGIN_MARKER", "login").strip()

        default_data_dir = os.path.join(
            os.getenv("XDG_DATA_HOME", os.path.join(os.path.expanduser("~"), ".local", "share")),
            "b256",
        )
        data_dir = os.getenv("B256_DATA_DIR", default_data_dir)
        http_log_level = os.getenv("B256_HTTP_LOG_LEVEL", "none").strip().lower()

        # Reachability is checked against the API host unless told otherwise.
        default_host, default_port = _host_and_port(base_url)
        connectivity_host = os.getenv("B256_CONNECTIVITY_HOST", "").strip() or default_host
        connectivity_port = int(os.getenv("B256_CONNECTIVITY_PORT", "").strip() or default_port)
        connectivity_interval = float(os.getenv("B256_CONNECTIVITY_INTERVAL", "5"))

        settings = AppSettings(
            base_url=base_url,
            ping_path=ping_path,
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
            login_marker=login_marker,
            data_dir=data_dir,
            http_log_level=http_log_level,
            connectivity_host=connectivity_host,
            connectivity_port=connectivity_port,
            connectivity_interval_seconds=connectivity_interval,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        missing = []
        if not self.base_url:
            missing.append("B256_BASE_URL")
        if not self.user_agent:
            missing.append("B256_USER_AGENT")
        if not self.login_marker:
            missing.append("B256_LOGIN_MARKER")

        if missing:
            raise ConfigurationError(
                "Missing required settings: " + ", ".join(missing)
            )

        # Paths are resolved relative to the base URL, like Retrofit's baseUrl.
        if not self.base_url.endswith("/"):
            raise ConfigurationError("B256_BASE_URL must end with '/'")

        if self.ping_path.startswith("/"):
            raise ConfigurationError("B256_PING_PATH must be relative (no leading '/')")

        if self.timeout_seconds <= 0:
            raise ConfigurationError("B256_TIMEOUT_SECONDS must be greater than 0")

        if self.http_log_level not in HTTP_LOG_LEVELS:
            raise ConfigurationError(
                "B256_HTTP_LOG_LEVEL must be one of: " + ", ".join(HTTP_LOG_LEVELS)
            )

        if not self.connectivity_host:
            raise ConfigurationError("B256_CONNECTIVITY_HOST must not be empty")

        if not 0 < self.connectivity_port < 65536:
            raise ConfigurationError("B256_CONNECTIVITY_PORT must be a valid TCP port")

        if self.connectivity_interval_seconds <= 0:
            raise ConfigurationError("B256_CONNECTIVITY_INTERVAL must be greater than 0")


def _host_and_port(url: str) -> tuple[str, int]:
    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is None:
        port = 80 if parts.scheme == "http" else 443
    return parts.hostname or "", port

def _load_dotenv_if_present(file_name: str = ".env") -> None:
    for candidate in _candidate_env_files(file_name):
        _load_env_file(candidate)


def _candidate_env_files(file_name: str) -> list[Path]:
    candidates: list[Path] = []

    explicit = os.getenv("B256_ENV_FILE", "").strip()
    if explicit:
        candidates.append(Path(explicit).expanduser())

    candidates.append(Path.cwd() / file_name)

    if getattr(sys, "frozen", False):
        candidates.append(Path(sys.executable).resolve().parent / file_name)
    else:
        candidates.append(Path(__file__).resolve().parent.parent / file_name)

    unique_candidates: list[Path] = []
    seen: set[str] = set()
    for path in candidates:
        normalized = str(path.resolve()) if path.exists() else str(path)
        if normalized in seen:
            continue
        seen.add(normalized)
        unique_candidates.append(path)
    return unique_candidates


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return

    try:
        with path.open("r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")

                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError:
        return
