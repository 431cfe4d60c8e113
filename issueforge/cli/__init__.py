"""CLI for Issue Forge."""

import click

from issueforge import __version__


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Issue Forge: automated GitHub issue processing

    Runs a multi-agent AI pipeline against open issues and opens pull
    requests, escalating to a human when it cannot finish.
    """
    pass


# Import and register command modules
from issueforge.cli import daemon
from issueforge.cli import setup

# Processing commands
main.add_command(daemon.start)
main.add_command(daemon.run)

# Setup commands
main.add_command(setup.init)
main.add_command(setup.status)
main.add_command(setup.scan)
main.add_command(setup.cleanup)

__all__ = ["main"]
