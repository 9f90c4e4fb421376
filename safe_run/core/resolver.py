"""Placeholder resolver.

Turns instruction values into concrete strings. Every instruction is resolved
as its own asyncio task; the aggregate succeeds only when all of them do.

FAILURE SEMANTICS:
- The first failing task decides the error that is raised.
- All sibling tasks still pending at that point are cancelled and awaited
  before the error propagates, so nothing keeps running after the resolve
  phase has failed.
- Blocking reads (files, keyring) run via ``asyncio.to_thread``. A cancelled
  task abandons its thread's result; those threads only read.

Usage:
    resolver = PlaceholderResolver(environ=snapshot, credential_store=store)
    resolved = resolve_placeholders({"API_KEY": "keyring:svc:me"}, resolver)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from pathlib import Path

from safe_run.core.capabilities import (
    CredentialStore,
    CredentialStoreError,
    read_text_file,
)
from safe_run.core.models import (
    CredentialStoreUnavailableError,
    EnvRef,
    FileRef,
    InvalidReferenceError,
    KeyringRef,
    LiteralRef,
    Reference,
    ResolutionError,
    SecretFileNotFoundError,
    SecretFileReadError,
    SecretNotFoundError,
    UnexpectedResolutionError,
    UnsetVariableError,
    parse_reference,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CredentialStoreUnavailableError",
    "InvalidReferenceError",
    "PlaceholderResolver",
    "ResolutionError",
    "SecretFileNotFoundError",
    "SecretFileReadError",
    "SecretNotFoundError",
    "UnexpectedResolutionError",
    "UnsetVariableError",
    "resolve_placeholders",
]


class PlaceholderResolver:
    """Resolve env/file/keyring/literal placeholders against injected capabilities."""

    def __init__(
        self,
        environ: Mapping[str, str],
        credential_store: CredentialStore,
        read_file: Callable[[Path], str] = read_text_file,
    ):
        """Create a resolver.

        Args:
            environ: The launcher's inherited environment snapshot. ``env:``
                lookups read only from here, never from the env being built.
            credential_store: Store used for ``keyring:`` lookups.
            read_file: Reads a whole file as text. Runs in a worker thread.
        """
        self.environ = environ
        self.credential_store = credential_store
        self.read_file = read_file

    async def resolve_single(self, raw: str) -> str:
        """Resolve one raw instruction value.

        Raises:
            ResolutionError: Subclass describing why resolution failed.
        """
        reference = parse_reference(raw)
        return await self._resolve_reference(raw, reference)

    async def resolve_all(self, instructions: Mapping[str, str]) -> dict[str, str]:
        """Resolve every instruction concurrently.

        Returns:
            Mapping of variable name to resolved value, one entry per instruction.

        Raises:
            ResolutionError: The first unit failure, annotated with its variable.
        """
        if not instructions:
            return {}

        tasks: dict[asyncio.Task[str], str] = {
            asyncio.create_task(self.resolve_single(raw), name=f"resolve:{variable}"): variable
            for variable, raw in instructions.items()
        }

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        failed = [task for task in done if not task.cancelled() and task.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            # Wait for cancellation to be acknowledged before reporting
            await asyncio.gather(*pending, return_exceptions=True)

            first = failed[0]
            variable = tasks[first]
            error = first.exception()
            logger.debug(f"Resolution failed for {variable}; cancelled {len(pending)} pending")
            if isinstance(error, ResolutionError):
                raise error.for_variable(variable) from error.__cause__
            raise _unexpected(instructions[variable], variable, error) from error

        return {variable: task.result() for task, variable in tasks.items()}

    async def check_all(
        self, instructions: Mapping[str, str]
    ) -> dict[str, ResolutionError | None]:
        """Try every instruction and report each outcome without failing fast.

        Values are discarded; only the error (or None on success) is kept.
        """
        variables = list(instructions)
        outcomes = await asyncio.gather(
            *[self.resolve_single(instructions[v]) for v in variables],
            return_exceptions=True,
        )
        report: dict[str, ResolutionError | None] = {}
        for variable, outcome in zip(variables, outcomes):
            if isinstance(outcome, ResolutionError):
                report[variable] = outcome.for_variable(variable)
            elif isinstance(outcome, Exception):
                report[variable] = _unexpected(instructions[variable], variable, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report[variable] = None
        return report

    async def _resolve_reference(self, raw: str, reference: Reference) -> str:
        if isinstance(reference, EnvRef):
            return self._resolve_env(raw, reference)
        if isinstance(reference, FileRef):
            return await self._resolve_file(raw, reference)
        if isinstance(reference, KeyringRef):
            return await self._resolve_keyring(raw, reference)
        if isinstance(reference, LiteralRef):
            return reference.value
        raise TypeError(f"Unknown reference type: {type(reference).__name__}")

    def _resolve_env(self, raw: str, ref: EnvRef) -> str:
        value = self.environ.get(ref.var_name)
        if value is None:
            raise UnsetVariableError(
                raw, f'environment variable "{ref.var_name}" is not set.'
            )
        return value

    async def _resolve_file(self, raw: str, ref: FileRef) -> str:
        path = ref.expanded_path()
        try:
            content = await asyncio.to_thread(self.read_file, path)
        except FileNotFoundError as e:
            raise SecretFileNotFoundError(raw, f'file not found at "{path}".') from e
        except (OSError, UnicodeDecodeError) as e:
            raise SecretFileReadError(raw, f'failed to read file "{path}": {e}') from e
        # Only the ends are trimmed; interior whitespace is part of the secret
        return content.strip()

    async def _resolve_keyring(self, raw: str, ref: KeyringRef) -> str:
        try:
            secret = await asyncio.to_thread(
                self.credential_store.get_password, ref.service, ref.account
            )
        except CredentialStoreError as e:
            raise CredentialStoreUnavailableError(
                raw,
                f'could not query credential store for service="{ref.service}", '
                f'account="{ref.account}": {e}',
            ) from e
        if secret is None:
            raise SecretNotFoundError(
                raw,
                f'secret not found in credential store for service="{ref.service}", '
                f'account="{ref.account}".',
            )
        return secret


def _unexpected(raw: str, variable: str, error: BaseException) -> UnexpectedResolutionError:
    return UnexpectedResolutionError(raw, f"{type(error).__name__}: {error}", variable=variable)


def resolve_placeholders(
    instructions: Mapping[str, str],
    resolver: PlaceholderResolver,
) -> dict[str, str]:
    """Synchronous entry point: resolve all instructions or raise.

    Must not be called from inside a running event loop.
    """
    return asyncio.run(resolver.resolve_all(instructions))
