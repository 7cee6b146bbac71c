"""
api/transport.py -- Request/response values passed through the pipeline.

ApiRequest is deliberately mutable: stages rewrite base_url and headers in
place, and the auth stage's replay must carry the refreshed token into any
later retry of the same request.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import requests

from core.exceptions import RequestCancelledException


class CancelToken:
    """Cooperative cancellation for one request (or one logical operation).

    Cancelling a token only affects requests that were given that token.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Request was cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledException(self.reason or "Request was cancelled")


def is_absolute_url(path: str) -> bool:
    return path.startswith(("http://", "https://"))


@dataclass
class ApiRequest:
    method: str
    path: str
    base_url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    json: Any = None
    data: Any = None
    files: dict[str, Any] | None = None
    timeout: tuple[float, float] | None = None
    stream: bool = False
    cancel_token: CancelToken | None = None
    # Attach the stored bearer token and take part in 401 refresh-and-replay.
    authenticate: bool = True
    # Allow the retry stage to re-send on transient failures.
    retry: bool = True
    # Set once the auth stage has spent this request's single refresh.
    refresh_attempted: bool = False

    @property
    def url(self) -> str:
        if is_absolute_url(self.path):
            return self.path
        return urljoin(self.base_url.rstrip("/") + "/", self.path.lstrip("/"))

    def rewind(self) -> None:
        """Seek every upload stream back to its start before a replay."""
        for value in (self.files or {}).values():
            stream = value[1] if isinstance(value, tuple) else value
            if hasattr(stream, "seek") and getattr(stream, "seekable", lambda: True)():
                stream.seek(0)


@dataclass
class ApiResponse:
    status_code: int
    data: Any
    headers: dict[str, str]
    request: ApiRequest
    raw: requests.Response | None = None


def decode_body(response: requests.Response) -> Any:
    """Return the JSON body, the text body, or None for an empty response."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
