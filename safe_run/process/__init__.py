"""Process supervision for the launched target command."""

from safe_run.process.supervisor import CommandNotFoundError, ProcessSupervisor, SpawnError

__all__ = ["CommandNotFoundError", "ProcessSupervisor", "SpawnError"]
