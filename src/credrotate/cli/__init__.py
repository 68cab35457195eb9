"""credrotate CLI package.

    credrotate rotate --mode {adopt-existing|set-new} --filter <glob> ...
    credrotate list --filter <glob>
"""

from __future__ import annotations

import click

from .rotation_commands import list_command, rotate_command


@click.group()
@click.version_option(package_name="credrotate", prog_name="credrotate")
def cli() -> None:
    """credrotate - managed-account credential rotation.

    Run `credrotate <command> --help` for command-specific help.
    """
    pass


cli.add_command(rotate_command)
cli.add_command(list_command)


def main() -> None:
    cli()
