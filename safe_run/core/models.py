"""Data models for placeholder references and resolution errors.

An instruction pairs a target environment variable name with a raw string.
The raw string is classified purely by prefix:

- ``env:NAME``                 -> value of NAME in the launcher's own environment
- ``file:PATH``                -> trimmed contents of PATH (``~`` expanded)
- ``keyring:SERVICE:ACCOUNT``  -> secret from the OS credential store
- anything else                -> the string itself, unchanged

Parsing is syntax only. No capability is consulted here, so a malformed
reference is rejected before any lookup can happen.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

ENV_PREFIX = "env:"
FILE_PREFIX = "file:"
KEYRING_PREFIX = "keyring:"


class ReferenceKind(str, Enum):
    """Source a placeholder resolves from."""

    ENV = "env"
    FILE = "file"
    KEYRING = "keyring"
    LITERAL = "literal"


class ResolutionErrorKind(str, Enum):
    """Category of a placeholder resolution failure."""

    INVALID_REFERENCE = "invalid_reference"
    UNSET = "unset"
    NOT_FOUND = "not_found"
    READ_FAILED = "read_failed"
    SECRET_NOT_FOUND = "secret_not_found"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    UNEXPECTED = "unexpected"


# --- Errors ---


class ResolutionError(Exception):
    """A placeholder could not be turned into a value.

    ``variable`` is filled in when the failure is surfaced from aggregate
    resolution, so the message names the env var being built.
    """

    kind: ResolutionErrorKind = ResolutionErrorKind.INVALID_REFERENCE
    verb = "resolution failed"

    def __init__(self, placeholder: str, reason: str, variable: str | None = None):
        self.placeholder = placeholder
        self.reason = reason
        self.variable = variable
        super().__init__(self._format())

    def _format(self) -> str:
        target = f'Placeholder "{self.placeholder}"'
        if self.variable is not None:
            target += f' for env var "{self.variable}"'
        return f"{target} {self.verb}: {self.reason}"

    def for_variable(self, variable: str) -> ResolutionError:
        """Return a copy of this error annotated with the variable name."""
        annotated = type(self)(self.placeholder, self.reason, variable=variable)
        annotated.__cause__ = self.__cause__
        return annotated


class InvalidReferenceError(ResolutionError):
    """Placeholder syntax is malformed (empty name/path, bad keyring fields)."""

    kind = ResolutionErrorKind.INVALID_REFERENCE
    verb = "invalid"


class UnsetVariableError(ResolutionError):
    """Referenced environment variable is not set."""

    kind = ResolutionErrorKind.UNSET


class SecretFileNotFoundError(ResolutionError):
    """Referenced file does not exist."""

    kind = ResolutionErrorKind.NOT_FOUND


class SecretFileReadError(ResolutionError):
    """Referenced file exists but could not be read."""

    kind = ResolutionErrorKind.READ_FAILED


class SecretNotFoundError(ResolutionError):
    """Credential store has no secret for the service/account pair."""

    kind = ResolutionErrorKind.SECRET_NOT_FOUND


class CredentialStoreUnavailableError(ResolutionError):
    """Credential store could not be queried at all."""

    kind = ResolutionErrorKind.CAPABILITY_UNAVAILABLE


class UnexpectedResolutionError(ResolutionError):
    """Resolution failed with an error no other kind describes."""

    kind = ResolutionErrorKind.UNEXPECTED
    verb = "failed unexpectedly"


# --- References ---


@dataclass(frozen=True)
class EnvRef:
    """``env:NAME`` reference."""

    var_name: str
    kind = ReferenceKind.ENV

    def describe(self) -> str:
        return f"{ENV_PREFIX}{self.var_name}"


@dataclass(frozen=True)
class FileRef:
    """``file:PATH`` reference. ``path`` is kept unexpanded."""

    path: str
    kind = ReferenceKind.FILE

    def expanded_path(self) -> Path:
        return Path(self.path).expanduser()

    def describe(self) -> str:
        return f"{FILE_PREFIX}{self.path}"


@dataclass(frozen=True)
class KeyringRef:
    """``keyring:SERVICE:ACCOUNT`` reference."""

    service: str
    account: str
    kind = ReferenceKind.KEYRING

    def describe(self) -> str:
        return f"{KEYRING_PREFIX}{self.service}:{self.account}"


@dataclass(frozen=True)
class LiteralRef:
    """Plain value passed through unchanged."""

    value: str
    kind = ReferenceKind.LITERAL

    def describe(self) -> str:
        # Literals may themselves be secrets
        return "<literal>"


Reference = EnvRef | FileRef | KeyringRef | LiteralRef


@dataclass(frozen=True)
class Instruction:
    """Target env var name paired with its unresolved raw value."""

    variable: str
    raw: str

    @property
    def reference(self) -> Reference:
        return parse_reference(self.raw)


def parse_reference(raw: str) -> Reference:
    """Classify a raw instruction value by prefix.

    Prefixes are case-sensitive and checked in order env, file, keyring.

    Raises:
        InvalidReferenceError: If a recognised prefix is followed by a
            malformed remainder.
    """
    if raw.startswith(ENV_PREFIX):
        name = raw[len(ENV_PREFIX):]
        if not name:
            raise InvalidReferenceError(raw, "environment variable name cannot be empty.")
        return EnvRef(var_name=name)

    if raw.startswith(FILE_PREFIX):
        path = raw[len(FILE_PREFIX):]
        if not path:
            raise InvalidReferenceError(raw, "file path cannot be empty.")
        return FileRef(path=path)

    if raw.startswith(KEYRING_PREFIX):
        parts = raw[len(KEYRING_PREFIX):].split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise InvalidReferenceError(
                raw, 'expected format "keyring:service:account".'
            )
        return KeyringRef(service=parts[0], account=parts[1])

    return LiteralRef(value=raw)


def describe_instructions(instructions: dict[str, str]) -> str:
    """Render instructions for logs without exposing literal values.

    Malformed placeholders are shown as ``<invalid>``; the resolver reports
    the details.
    """
    labels = []
    for variable, raw in instructions.items():
        try:
            label = parse_reference(raw).describe()
        except InvalidReferenceError:
            label = "<invalid>"
        labels.append(f"{variable}={label}")
    return ", ".join(labels) if labels else "(none)"
