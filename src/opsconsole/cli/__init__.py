"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from opsconsole import __version__
from opsconsole.config import ConsoleConfig


@click.group()
@click.version_option(version=__version__, prog_name="opsconsole")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to a YAML config file.",
)
@click.option("--host", help="Console backend host[:port].")
@click.option("--token", envvar="OPSCONSOLE_TOKEN", help="API token.")
@click.option("--tls/--no-tls", default=None, help="Use wss:// instead of ws://.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    host: str | None,
    token: str | None,
    tls: bool | None,
    verbose: bool,
) -> None:
    """opsconsole — terminals and container logs for your managed servers."""
    ctx.ensure_object(dict)

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = ConsoleConfig.load(config_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--config") from e
    if host:
        config.host = host
    if token:
        config.token = token
    if tls is not None:
        config.use_tls = tls
    config.verbose = verbose
    ctx.obj["config"] = config


def _register_commands() -> None:
    from opsconsole.cli.logs import logs  # noqa: F811
    from opsconsole.cli.shell import shell  # noqa: F811
    from opsconsole.cli.status import status  # noqa: F811

    main.add_command(logs)
    main.add_command(shell)
    main.add_command(status)


_register_commands()
