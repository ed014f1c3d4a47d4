"""Per-instance AEM credentials kept in the operating system's secret store."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import CredentialError

LOGGER = logging.getLogger(__name__)

DEFAULT_SERVICE = "aem-env-manager"


@dataclass(slots=True, frozen=True)
class Credentials:
    """Username/password pair for one instance."""

    username: str
    password: str

    def to_dict(self, *, reveal: bool = False) -> dict[str, object]:
        """Return a serialisable representation; the password is masked unless *reveal*."""
        return {
            "username": self.username,
            "password": self.password if reveal else "********",
        }


class CredentialVault:
    """Store instance credentials under one keyring service, keyed by instance id."""

    def __init__(
        self,
        service: str = DEFAULT_SERVICE,
        *,
        backend: KeyringBackend | None = None,
    ) -> None:
        """Use *backend* when given, otherwise the platform default keyring."""
        self.service = service
        self._backend = backend

    @property
    def backend(self) -> KeyringBackend:
        """The keyring backend in use."""
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    def store(self, instance_id: str, username: str, password: str) -> None:
        """Save (or replace) the credentials for *instance_id*."""
        if not username:
            raise ValueError("Username must not be empty.")
        payload = json.dumps({"username": username, "password": password})
        try:
            self.backend.set_password(self.service, instance_id, payload)
        except KeyringError as exc:
            raise CredentialError(
                f"Failed to store credentials for instance '{instance_id}': {exc}"
            ) from exc
        LOGGER.debug("Stored credentials for %s in %s", instance_id, self.service)

    def get(self, instance_id: str) -> Credentials | None:
        """Return the credentials for *instance_id*, or ``None`` when none are stored."""
        try:
            raw = self.backend.get_password(self.service, instance_id)
        except KeyringError as exc:
            raise CredentialError(
                f"Failed to read credentials for instance '{instance_id}': {exc}"
            ) from exc
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CredentialError(
                f"Stored credentials for instance '{instance_id}' are corrupt."
            ) from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("username"), str):
            raise CredentialError(f"Stored credentials for instance '{instance_id}' are corrupt.")
        return Credentials(username=payload["username"], password=str(payload.get("password", "")))

    def delete(self, instance_id: str) -> bool:
        """Remove stored credentials; returns ``False`` when nothing was stored."""
        try:
            self.backend.delete_password(self.service, instance_id)
        except PasswordDeleteError:
            return False
        except KeyringError as exc:
            raise CredentialError(
                f"Failed to delete credentials for instance '{instance_id}': {exc}"
            ) from exc
        return True

    def has(self, instance_id: str) -> bool:
        """Return ``True`` when credentials exist for *instance_id*."""
        return self.get(instance_id) is not None


__all__ = ["DEFAULT_SERVICE", "CredentialVault", "Credentials"]
