"""
services.py -- Composition root for the client core.

CoreServices.create() wires one credential store, one SessionManager, one
ApiClient and one BiometricGate together and hydrates the session from
storage. Applications hold the returned object for the process lifetime and
pass its parts to whatever needs them; nothing here is a module-level global.

Usage:
    configure_logging()
    services = CoreServices.create()
    services.session.auth_state_stream.subscribe(render)
    services.session.login("me@example.com", "secret")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from api.client import ApiClient
from auth.biometric import BiometricAuthenticator, BiometricGate
from auth.session import SessionManager
from core.config import Settings, get_settings
from storage.credentials import CredentialStore

logger = logging.getLogger("automatedlife.services")


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@dataclass
class CoreServices:
    settings: Settings
    store: CredentialStore
    session: SessionManager
    api: ApiClient
    biometric: BiometricGate

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        http: requests.Session | None = None,
        authenticator: BiometricAuthenticator | None = None,
        store: CredentialStore | None = None,
    ) -> CoreServices:
        settings = settings or get_settings()
        if store is None:
            store = CredentialStore(settings.credential_db_url, key=settings.credential_key or None)
        session = SessionManager(store)
        api = ApiClient(session, settings=settings, http=http)
        biometric = BiometricGate(store, authenticator)
        state = session.hydrate()
        logger.info("Client core ready (state=%s, api=%s)", state.value, settings.api_base_url)
        return cls(settings=settings, store=store, session=session, api=api, biometric=biometric)

    def close(self) -> None:
        self.session.dispose()
        self.api.close()
        self.store.close()
