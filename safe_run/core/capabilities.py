"""OS capabilities consumed by the placeholder resolver.

The resolver never talks to the OS directly. It is handed:

- a read-only snapshot of the launcher's environment (see composer)
- ``read_text_file`` for ``file:`` references
- a ``CredentialStore`` for ``keyring:`` references

The credential store is chosen once at startup by ``select_credential_store``.
When no usable OS keyring backend exists, an ``UnavailableCredentialStore`` is
injected instead, so keyring lookups fail with a clear reason while env/file
references keep working.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

import keyring
from keyring.backend import KeyringBackend
from keyring.backends import fail
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Credential store backend failed or is not available."""

    pass


class CredentialStore(ABC):
    """Lookup-only view of an OS credential store."""

    @abstractmethod
    def get_password(self, service: str, account: str) -> str | None:
        """Return the secret for (service, account), or None if absent.

        Raises:
            CredentialStoreError: If the store cannot be queried.
        """


class KeyringCredentialStore(CredentialStore):
    """Credential store backed by the ``keyring`` library's active backend."""

    def __init__(self, backend: KeyringBackend | None = None):
        self._backend = backend

    @property
    def name(self) -> str:
        backend = self._backend or keyring.get_keyring()
        return type(backend).__name__

    def get_password(self, service: str, account: str) -> str | None:
        try:
            if self._backend is not None:
                return self._backend.get_password(service, account)
            return keyring.get_password(service, account)
        except KeyringError as e:
            raise CredentialStoreError(str(e) or type(e).__name__) from e
        except Exception as e:
            # Platform backends raise their own types (D-Bus, Keychain, ...)
            raise CredentialStoreError(f"{type(e).__name__}: {e}") from e


class UnavailableCredentialStore(CredentialStore):
    """Stand-in used when no OS credential store can be reached."""

    def __init__(self, reason: str = "no OS credential store backend is available"):
        self.reason = reason

    def get_password(self, service: str, account: str) -> str | None:
        raise CredentialStoreError(self.reason)


def select_credential_store() -> CredentialStore:
    """Pick the credential store for this process.

    Called once at startup. Keyring falls back to its ``fail`` backend when
    no platform store (macOS Keychain, Secret Service, Windows Credential
    Locker, ...) is usable; that case maps to ``UnavailableCredentialStore``.
    """
    backend = keyring.get_keyring()
    if isinstance(backend, fail.Keyring):
        logger.warning(
            "No usable keyring backend found. keyring: placeholders will not work."
        )
        return UnavailableCredentialStore(
            "no OS credential store backend is available (keyring fail backend active)"
        )
    logger.debug(f"Using keyring backend {type(backend).__name__}")
    return KeyringCredentialStore(backend)


def read_text_file(path: Path) -> str:
    """Read a whole file as UTF-8 text.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        OSError: On any other I/O failure.
        UnicodeDecodeError: If the content is not valid UTF-8.
    """
    data = path.read_bytes()
    return data.decode("utf-8")
