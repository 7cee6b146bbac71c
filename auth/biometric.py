"""
auth/biometric.py -- Opt-in biometric unlock for a stored session.

The platform sensor is reached through a BiometricAuthenticator supplied by
the host application. This module only owns the user's preference (kept in
the credential store) and the rule that enabling requires one successful
verification first.

Platform failures never propagate: an authenticator that raises is logged
and treated as "not available" or "not verified".
"""

from __future__ import annotations

import logging
from typing import Protocol

from storage.credentials import CredentialStore

logger = logging.getLogger("automatedlife.biometric")

ENABLE_REASON = "Please verify your identity to enable biometric login"


class BiometricAuthenticator(Protocol):
    def is_available(self) -> bool: ...

    def authenticate(self, reason: str) -> bool: ...


class BiometricGate:
    def __init__(self, store: CredentialStore, authenticator: BiometricAuthenticator | None = None) -> None:
        self._store = store
        self._authenticator = authenticator

    def is_available(self) -> bool:
        if self._authenticator is None:
            return False
        try:
            return bool(self._authenticator.is_available())
        except Exception as exc:
            logger.warning("Biometric availability check failed: %s", exc)
            return False

    def is_biometric_enabled(self) -> bool:
        return self._store.is_biometric_enabled()

    def authenticate(self, reason: str) -> bool:
        if not self.is_available():
            return False
        try:
            return bool(self._authenticator.authenticate(reason))
        except Exception as exc:
            logger.warning("Biometric authentication failed: %s", exc)
            return False

    def set_biometric_enabled(self, enabled: bool) -> bool:
        """Persist the preference. Returns False if verification was refused."""
        if enabled and not self.authenticate(ENABLE_REASON):
            logger.info("Biometric login not enabled: identity was not verified")
            return False
        self._store.set_biometric_enabled(enabled)
        return True

    def should_prompt(self) -> bool:
        return self.is_biometric_enabled() and self.is_available()

    def disable(self) -> None:
        self._store.delete_biometric_preference()
