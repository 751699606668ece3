"""Entry point for the cwdeploy command line."""

import click

from cwdeploy import __version__
from cwdeploy.cli.commands.deploy import deploy


@click.group()
@click.version_option(__version__, prog_name="cwdeploy")
def main() -> None:
    """cwdeploy - resumable CosmWasm protocol deployments.

    Every on-chain step is recorded in a state file, so an interrupted or
    failed deployment can be re-run and continues where it stopped.
    """


main.add_command(deploy)


if __name__ == "__main__":
    main()
