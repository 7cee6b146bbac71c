"""
api/client.py -- Typed facade over the request pipeline.

ApiClient builds the stage chain, attaches the pipeline to the
SessionManager, and exposes one method per backend operation. Each domain
method builds a path and payload, sends it, and parses the one envelope
field it expects ({"user": ...}, {"building": ...}, {"aliases": [...]}, ...)
into a typed model.

A missing or empty envelope field, or a body that does not match the
model, is an ApiException carrying the status and the raw body. Transport
and HTTP failures arrive already normalized by the pipeline.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Optional

import requests
from pydantic import TypeAdapter, ValidationError

from api.interceptors import (
    AuthStage,
    BuildingContextStage,
    ErrorStage,
    LoggingStage,
    RetryStage,
    Stage,
    normalize_error,
)
from api.pipeline import Pipeline
from api.transport import ApiResponse, CancelToken
from auth.session import SessionManager
from core.config import Settings, get_settings
from core.exceptions import ApiException, CoreException, StorageException
from core.models import Building, BuildingBranding, BuildingCapabilities, Capability, User, UserAlias

logger = logging.getLogger("automatedlife.api")

_DOWNLOAD_CHUNK = 64 * 1024

ProgressCallback = Callable[[int, Optional[int]], None]


def default_stages(
    session: SessionManager,
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Stage]:
    stages: list[Stage] = [
        BuildingContextStage(session),
        AuthStage(session),
        ErrorStage(),
        RetryStage(max_retries=settings.max_retries, delays=settings.retry_delays, sleep=sleep),
    ]
    if settings.enable_request_logging:
        stages.append(LoggingStage())
    return stages


def _field(response: ApiResponse, name: str) -> Any:
    body = response.data
    value = body.get(name) if isinstance(body, dict) else None
    if value is None or (isinstance(value, (list, dict)) and not value):
        raise ApiException(
            f"No {name} data in response",
            status_code=response.status_code,
            response_data=body,
        )
    return value


def _parse(response: ApiResponse, name: str, model: Any) -> Any:
    """Pull `name` out of the envelope and validate it as `model`."""
    value = _field(response, name)
    try:
        return TypeAdapter(model).validate_python(value)
    except ValidationError as exc:
        raise ApiException(
            f"Malformed {name} data in response",
            original_error=exc,
            status_code=response.status_code,
            response_data=response.data,
        ) from exc


class ApiClient:
    def __init__(
        self,
        session: SessionManager,
        settings: Settings | None = None,
        http: requests.Session | None = None,
        stages: Sequence[Stage] | None = None,
        retry_sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.session = session
        if http is None:
            http = requests.Session()
            # API hosts are known; a long redirect chain is never legitimate.
            http.max_redirects = 3
        self.http = http
        self.pipeline = Pipeline(
            http,
            stages if stages is not None else default_stages(session, self.settings, retry_sleep),
            base_url=self.settings.api_base_url,
            timeout=self.settings.timeout,
        )
        session.attach(self.pipeline)

    # ------------------------------------------------------------------
    # Generic verbs
    # ------------------------------------------------------------------

    def get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> ApiResponse:
        return self.pipeline.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs: Any) -> ApiResponse:
        return self.pipeline.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs: Any) -> ApiResponse:
        return self.pipeline.request("PUT", path, json=json, **kwargs)

    def patch(self, path: str, json: Any = None, **kwargs: Any) -> ApiResponse:
        return self.pipeline.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        return self.pipeline.request("DELETE", path, **kwargs)

    def upload(
        self,
        path: str,
        file_path: str | os.PathLike,
        file_key: str,
        data: dict[str, Any] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> ApiResponse:
        """Multipart POST of one file plus optional form fields.

        Transient failures are not retried. A 401 refresh replays the upload
        with the file rewound to its start.
        """
        file_path = Path(file_path)
        try:
            fh = file_path.open("rb")
        except OSError as exc:
            raise StorageException(f"Cannot read {file_path}: {exc}", original_error=exc) from exc
        with fh:
            return self.pipeline.request(
                "POST",
                path,
                data=data,
                files={file_key: (file_path.name, fh)},
                cancel_token=cancel_token,
                retry=False,
            )

    def download(
        self,
        url_path: str,
        save_path: str | os.PathLike,
        params: dict[str, Any] | None = None,
        cancel_token: CancelToken | None = None,
        delete_on_error: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Stream a response body to save_path and return the path.

        on_progress(received, total) is called after each chunk; total is
        None when the server sends no Content-Length.
        """
        target = Path(save_path)
        response = self.pipeline.request(
            "GET", url_path, params=params, stream=True, cancel_token=cancel_token
        )
        raw = response.raw
        length = raw.headers.get("Content-Length")
        total = int(length) if length and length.isdigit() else None
        received = 0
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as out:
                for chunk in raw.iter_content(chunk_size=_DOWNLOAD_CHUNK):
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    if not chunk:
                        continue
                    out.write(chunk)
                    received += len(chunk)
                    if on_progress is not None:
                        on_progress(received, total)
        except (CoreException, OSError, requests.RequestException) as exc:
            if delete_on_error:
                target.unlink(missing_ok=True)
            if isinstance(exc, CoreException):
                raise
            # requests exceptions are OSError subclasses, so test them first.
            if isinstance(exc, requests.RequestException):
                raise normalize_error(exc) from exc
            raise StorageException(f"Cannot write {target}: {exc}", original_error=exc) from exc
        finally:
            raw.close()

        logger.info("Downloaded %s (%d bytes) to %s", url_path, received, target)
        return target

    def set_base_url(self, base_url: str) -> None:
        """Change the default host used while no building is selected."""
        self.pipeline.base_url = base_url

    def close(self) -> None:
        self.http.close()

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_user_profile(self) -> User:
        return _parse(self.get("/me"), "user", User)

    def update_user_profile(
        self,
        name: str | None = None,
        email: str | None = None,
        preferred_name: str | None = None,
    ) -> User:
        payload: dict[str, Any] = {}
        if name is not None:
            payload["name"] = name
        if email is not None:
            payload["email"] = email
        if preferred_name is not None:
            payload["preferred_name"] = preferred_name
        user = _parse(self.put("/me", json=payload), "user", User)
        self.session.set_current_user(user)
        return user

    def change_password(self, current_password: str, new_password: str, confirm_password: str) -> None:
        self.put(
            "/auth/password",
            json={
                "current_password": current_password,
                "password": new_password,
                "password_confirmation": confirm_password,
            },
        )

    # ------------------------------------------------------------------
    # Buildings
    # ------------------------------------------------------------------

    def get_user_buildings(self) -> list[Building]:
        response = self.get("/buildings")
        body = response.data if isinstance(response.data, dict) else {}
        field = "payload" if isinstance(body.get("payload"), list) else "buildings"
        return _parse(response, field, list[Building])

    def get_building_details(self, building_id: int) -> Building:
        return _parse(self.get(f"/buildings/{building_id}"), "building", Building)

    def get_building_capabilities(self, building_id: int) -> BuildingCapabilities:
        return _parse(self.get(f"/buildings/{building_id}/capabilities"), "data", BuildingCapabilities)

    def update_building_branding(self, building_id: int, branding: BuildingBranding) -> BuildingBranding:
        response = self.put(
            f"/buildings/{building_id}/branding",
            json=branding.model_dump(mode="json", exclude_none=True),
        )
        return _parse(response, "branding", BuildingBranding)

    def toggle_capability(
        self,
        building_id: int,
        capability_id: int,
        enabled: bool,
        config_data: dict[str, Any] | None = None,
    ) -> Capability:
        payload: dict[str, Any] = {"is_enabled": enabled}
        if config_data is not None:
            payload["config_data"] = config_data
        response = self.patch(f"/buildings/{building_id}/capabilities/{capability_id}", json=payload)
        return _parse(response, "capability", Capability)

    def test_capability(self, building_id: int, capability_key: str) -> None:
        """Ask the building to send a test notification through a capability."""
        self.post(f"/buildings/{building_id}/capabilities/{capability_key}/test")

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    def get_user_aliases(self) -> list[UserAlias]:
        response = self.get("/me/aliases")
        body = response.data if isinstance(response.data, dict) else {}
        if isinstance(body.get("aliases"), list) and not body["aliases"]:
            return []
        return _parse(response, "aliases", list[UserAlias])

    def create_user_alias(self, alias: str, type: str, is_public: bool = True) -> UserAlias:
        response = self.post("/me/aliases", json={"alias": alias, "type": type, "isPublic": is_public})
        return _parse(response, "alias", UserAlias)

    def update_user_alias(
        self,
        alias_id: str,
        alias: str | None = None,
        type: str | None = None,
        is_public: bool | None = None,
    ) -> UserAlias:
        payload: dict[str, Any] = {}
        if alias is not None:
            payload["alias"] = alias
        if type is not None:
            payload["type"] = type
        if is_public is not None:
            payload["isPublic"] = is_public
        return _parse(self.put(f"/me/aliases/{alias_id}", json=payload), "alias", UserAlias)

    def delete_user_alias(self, alias_id: str) -> None:
        self.delete(f"/me/aliases/{alias_id}")

    def set_primary_alias(self, alias_id: str) -> UserAlias:
        return _parse(self.post(f"/me/aliases/{alias_id}/set-primary"), "alias", UserAlias)
