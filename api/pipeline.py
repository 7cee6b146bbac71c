"""
api/pipeline.py -- Runs a request through the ordered stage chain.

    request phase:   stage[0].on_request -> ... -> stage[n].on_request -> send
    error phase:     stage[0].on_error   -> ... -> stage[n].on_error
    response phase:  stage[0].on_response -> ... -> stage[n].on_response

In the error phase a stage either resolves the call by returning a response
(remaining error hooks are skipped) or raises, and whatever it raises is the
error the next stage sees. If no stage resolves, the last error propagates.

resend() is how stages replay a request: it goes straight to the transport
and routes a failure only through the stages *before* the caller, so a stage
never re-enters itself.

No knowledge of auth, buildings or retries lives here -- that is all in
api/interceptors.py.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import requests

from api.interceptors import Stage
from api.transport import ApiRequest, ApiResponse, CancelToken, decode_body
from core.exceptions import CoreException

logger = logging.getLogger("automatedlife.pipeline")

# Failures the error phase is allowed to see. Anything else is a bug in a
# stage or in the caller and propagates untouched.
_HANDLED = (requests.RequestException, CoreException)


class Pipeline:
    def __init__(
        self,
        http: requests.Session,
        stages: Sequence[Stage],
        base_url: str,
        timeout: tuple[float, float] | None = None,
    ) -> None:
        self.http = http
        self.stages = list(stages)
        self.base_url = base_url
        self.timeout = timeout

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        files: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        stream: bool = False,
        cancel_token: CancelToken | None = None,
        authenticate: bool = True,
        retry: bool = True,
    ) -> ApiResponse:
        return self.execute(
            ApiRequest(
                method=method.upper(),
                path=path,
                base_url=self.base_url,
                headers=dict(headers or {}),
                params=params,
                json=json,
                data=data,
                files=files,
                timeout=self.timeout,
                stream=stream,
                cancel_token=cancel_token,
                authenticate=authenticate,
                retry=retry,
            )
        )

    def execute(self, request: ApiRequest) -> ApiResponse:
        for stage in self.stages:
            request = stage.on_request(request)
        response = self._dispatch(request, self.stages)
        for stage in self.stages:
            response = stage.on_response(response)
        return response

    def resend(self, request: ApiRequest, after: Stage) -> ApiResponse:
        """Re-send request; failures pass through the stages preceding `after`."""
        request.rewind()
        return self._dispatch(request, self.stages[: self.stages.index(after)])

    def send(self, request: ApiRequest) -> ApiResponse:
        """One transport round trip. Raises requests exceptions for 4xx/5xx."""
        if request.cancel_token is not None:
            request.cancel_token.raise_if_cancelled()
        raw = self.http.request(
            request.method,
            request.url,
            params=request.params,
            json=request.json,
            data=request.data,
            files=request.files,
            headers=dict(request.headers),
            timeout=request.timeout,
            stream=request.stream,
        )
        try:
            raw.raise_for_status()
        except requests.HTTPError:
            if request.stream:
                raw.close()
            raise
        data = None if request.stream else decode_body(raw)
        if request.cancel_token is not None and request.cancel_token.is_cancelled:
            raw.close()
            request.cancel_token.raise_if_cancelled()
        return ApiResponse(
            status_code=raw.status_code,
            data=data,
            headers=dict(raw.headers),
            request=request,
            raw=raw,
        )

    def _dispatch(self, request: ApiRequest, stages: Sequence[Stage]) -> ApiResponse:
        try:
            return self.send(request)
        except _HANDLED as exc:
            error: Exception = exc
        for stage in stages:
            try:
                return stage.on_error(error, request, self)
            except _HANDLED as exc:
                error = exc
        raise error
