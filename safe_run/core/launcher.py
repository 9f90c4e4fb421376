"""Launch pipeline: resolve instructions, compose the environment, supervise.

The child is only spawned after every instruction has resolved. A resolution
failure raises before any process exists, so a partially resolved environment
never reaches a child.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from safe_run.core.capabilities import CredentialStore, select_credential_store
from safe_run.core.composer import compose_environment, snapshot_environment
from safe_run.core.config import LaunchConfig
from safe_run.core.models import describe_instructions
from safe_run.core.resolver import PlaceholderResolver, resolve_placeholders
from safe_run.process.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


@dataclass
class Launcher:
    """Wire the resolver, composer and supervisor together for one invocation."""

    settings: LaunchConfig = field(default_factory=LaunchConfig)
    inherited: Mapping[str, str] = field(default_factory=snapshot_environment)
    credential_store: CredentialStore | None = None
    supervisor: ProcessSupervisor | None = None

    def __post_init__(self) -> None:
        if self.credential_store is None:
            self.credential_store = select_credential_store()
        if self.supervisor is None:
            self.supervisor = ProcessSupervisor(
                grace_period=self.settings.grace_period,
                drain_timeout=self.settings.drain_timeout,
            )
        self.resolver = PlaceholderResolver(
            environ=self.inherited,
            credential_store=self.credential_store,
        )

    def resolve(self, instructions: Mapping[str, str]) -> dict[str, str]:
        """Resolve all instructions or raise ``ResolutionError``."""
        if not instructions:
            logger.info("No instructions provided; using inherited environment")
            return {}
        logger.info(f"Resolving placeholders: {describe_instructions(dict(instructions))}")
        resolved = resolve_placeholders(instructions, self.resolver)
        logger.info(f"Resolved {len(resolved)} variable(s)")
        return resolved

    def build_environment(self, instructions: Mapping[str, str]) -> dict[str, str]:
        """Return the child's final environment."""
        return compose_environment(self.inherited, self.resolve(instructions))

    def launch(
        self,
        command: str,
        args: Sequence[str],
        instructions: Mapping[str, str],
    ) -> int:
        """Resolve, compose and run ``command``. Returns the exit code to use.

        Raises:
            ResolutionError: If any instruction fails; nothing is spawned.
            SpawnError: If the command cannot be started.
        """
        env = self.build_environment(instructions)
        return self.supervisor.run(command, args, env)
