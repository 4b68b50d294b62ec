import click

from cookspace import __version__
from cookspace.bg_commands import register_bg_commands
from cookspace.error_commands import register_error_commands
from cookspace.run_commands import register_run_commands


@click.group()
@click.version_option(version=__version__, prog_name="cookspace")
def cli():
    """Clone repositories into sessions and run setup commands with live control."""
    pass


register_run_commands(cli)
register_bg_commands(cli)
register_error_commands(cli)


def main():
    cli()


if __name__ == '__main__':
    main()
