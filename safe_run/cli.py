"""CLI entry point for mcp-safe-run.

Commands:
- mcp-safe-run run: Resolve credentials and launch a target command
  (also the default: `mcp-safe-run [OPTIONS] COMMAND [ARGS]...`)
- mcp-safe-run check: Resolve credentials without launching, report status
- mcp-safe-run profiles: List profiles in the config file
- mcp-safe-run init: Create the user config directory with a sample profile file
- mcp-safe-run version: Show version information

All human-facing output goes to stderr. The target's stdout is often a
protocol stream (MCP over stdio) and must stay untouched.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from safe_run import __version__
from safe_run.core.capabilities import select_credential_store
from safe_run.core.composer import snapshot_environment
from safe_run.core.config import (
    ConfigError,
    LaunchConfig,
    ProfileLoader,
    parse_target_env,
    select_instructions,
    write_sample_config,
)
from safe_run.core.launcher import Launcher
from safe_run.core.models import InvalidReferenceError, parse_reference
from safe_run.core.resolver import PlaceholderResolver, ResolutionError
from safe_run.process.supervisor import CommandNotFoundError, SpawnError

console = Console(stderr=True)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Route stdlib logging to stderr through rich."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)


def _gather_instructions(
    settings: LaunchConfig,
    target_env: str | None,
    profile: str | None,
    config_path: str | None,
) -> dict[str, str]:
    """Collect the instruction set from --target-env and/or a profile."""
    override = parse_target_env(target_env) if target_env else None

    profile_instructions = None
    if profile:
        profile_instructions = ProfileLoader(settings).load_profile(profile, config_path)
    elif config_path:
        logger.warning("--config given without --profile; config file ignored")

    return select_instructions(profile_instructions, override)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


class LaunchGroup(click.Group):
    """Command group where a leading target command implies ``run``.

    ``mcp-safe-run --target-env '{...}' npx server`` is handled as
    ``mcp-safe-run run --target-env '{...}' npx server``. A target whose name
    matches a subcommand still needs the explicit ``run``.
    """

    group_flags = ("-v", "--verbose")

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        index = 0
        while index < len(args) and args[index] in self.group_flags:
            index += 1
        if index < len(args):
            token = args[index]
            if token not in self.commands and token not in (*ctx.help_option_names, "--version"):
                args = [*args[:index], "run", *args[index:]]
        return super().parse_args(ctx, args)


@click.group(cls=LaunchGroup)
@click.version_option(version=__version__, prog_name="mcp-safe-run")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """mcp-safe-run - Securely launch MCP servers.

    Resolves credentials from environment variables, files or the OS keyring
    and injects them into the target command's environment, so secrets never
    appear in arguments, logs or committed config.

    Without a subcommand, the arguments are run as a target command.

    \b
    mcp-safe-run --profile github -- npx -y @modelcontextprotocol/server-github
    """
    settings = LaunchConfig()
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


@main.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False}
)
@click.option(
    "--target-env",
    help='JSON object mapping env vars to literals or placeholders, '
    'e.g. \'{"API_KEY": "env:MY_API_KEY"}\'',
)
@click.option("--profile", "-p", help="Profile name from the config file")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a profile file (default: search cwd, then user config dir)",
)
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def run(
    settings: LaunchConfig,
    target_env: str | None,
    profile: str | None,
    config_path: str | None,
    command: str,
    args: tuple[str, ...],
) -> None:
    """Resolve credentials and run COMMAND with them in its environment.

    COMMAND and ARGS are passed to the target unchanged; the exit code is
    the target's own.

    Example:
        mcp-safe-run run --profile github -- npx -y @modelcontextprotocol/server-github
    """
    logger.info(f"mcp-safe-run v{__version__}: target command '{command}'")

    try:
        instructions = _gather_instructions(settings, target_env, profile, config_path)
        launcher = Launcher(settings=settings)
        exit_code = launcher.launch(command, list(args), instructions)
    except ConfigError as e:
        _fail(str(e))
    except ResolutionError as e:
        _fail(f"Error resolving placeholder: {e}")
    except CommandNotFoundError as e:
        _fail(str(e))
    except SpawnError as e:
        _fail(f"Failed to launch target: {e}")
    else:
        sys.exit(exit_code)


@main.command()
@click.option("--target-env", help="JSON object mapping env vars to placeholders")
@click.option("--profile", "-p", help="Profile name from the config file")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Profile file")
@click.pass_obj
def check(
    settings: LaunchConfig,
    target_env: str | None,
    profile: str | None,
    config_path: str | None,
) -> None:
    """Resolve every placeholder and report which ones work.

    Nothing is launched and no values are printed.
    """
    try:
        instructions = _gather_instructions(settings, target_env, profile, config_path)
    except ConfigError as e:
        _fail(str(e))
        return

    if not instructions:
        console.print("[yellow]No instructions to check[/yellow]")
        return

    resolver = PlaceholderResolver(
        environ=snapshot_environment(),
        credential_store=select_credential_store(),
    )
    report = asyncio.run(resolver.check_all(instructions))

    table = Table(title="Placeholder Check")
    table.add_column("Variable", style="cyan")
    table.add_column("Source", style="magenta")
    table.add_column("Status")

    failures = 0
    for variable in sorted(report):
        error = report[variable]
        try:
            source = parse_reference(instructions[variable]).describe()
        except InvalidReferenceError:
            source = "<invalid>"
        if error is None:
            status = "[green]ok[/green]"
        else:
            failures += 1
            status = f"[red]{escape(error.kind.value)}[/red]: {escape(error.reason)}"
        table.add_row(escape(variable), escape(source), status)

    console.print(table)
    if failures:
        console.print(f"[red]{failures} of {len(report)} placeholder(s) failed[/red]")
        sys.exit(1)
    console.print(f"[green]All {len(report)} placeholder(s) resolved[/green]")


@main.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Profile file")
@click.pass_obj
def profiles(settings: LaunchConfig, config_path: str | None) -> None:
    """List profiles defined in the config file."""
    try:
        loaded = ProfileLoader(settings).load(config_path)
    except ConfigError as e:
        _fail(str(e))
        return

    if not loaded.config.profiles:
        console.print(f"[yellow]No profiles defined in {loaded.path}[/yellow]")
        return

    table = Table(title=f"Profiles ({loaded.path})")
    table.add_column("Profile", style="cyan")
    table.add_column("Variables", style="green")

    for name in sorted(loaded.config.profiles):
        instructions = loaded.config.profiles[name].target_env
        entries = []
        for variable, raw in instructions.items():
            try:
                label = parse_reference(raw).describe()
            except InvalidReferenceError:
                label = "<invalid>"
            entries.append(f"{variable} <- {label}")
        table.add_row(escape(name), escape("\n".join(entries)) or "-")

    console.print(table)


@main.command()
@click.pass_obj
def init(settings: LaunchConfig) -> None:
    """Create the user config directory with a sample profile file."""
    existing = [
        settings.user_config_dir / name
        for name in settings.config_file_names
        if (settings.user_config_dir / name).exists()
    ]
    if existing:
        console.print(f"[yellow]Config already exists: {existing[0]}[/yellow]")
        return

    path = write_sample_config(settings.user_config_dir, settings.config_file_names[0])
    console.print(f"[green]Created sample config:[/green] {path}")


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"mcp-safe-run v{__version__}")
    console.print("Secure credential launcher for MCP servers")


if __name__ == "__main__":
    main()
