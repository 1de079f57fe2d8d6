from asgctl.cli import cli

cli()
