"""Helpers shared by the clients that talk to the OpenAI HTTP API."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

import httpx

from .config import require_api_key
from .errors import ConfigurationError
from .models import PLACEHOLDER_API_KEY

DEFAULT_BASE_URL = "https://api.openai.com/v1"


def auth_headers(api_key: Optional[str]) -> Dict[str, str]:
    if not api_key or api_key == PLACEHOLDER_API_KEY:
        raise ConfigurationError("No OpenAI API key configured. Set OPENAI_API_KEY before recording.")
    return {"Authorization": f"Bearer {api_key}"}


def api_error_message(payload: Any) -> Optional[str]:
    """Extract ``error.message`` from an OpenAI error payload, if there is one."""

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return None


class RemoteClient:
    """Base for API clients: owns the HTTP client and a single-worker executor.

    One worker means at most one request from this client is in flight; extra
    submissions wait their turn.
    """

    thread_name = "lazi-remote"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 20.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def _key_from_config(cls, config) -> Optional[str]:
        try:
            return require_api_key(config)
        except ConfigurationError:
            return None

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=self.thread_name)
        return self._executor.submit(fn, *args, **kwargs)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._owns_client:
            self._client.close()
