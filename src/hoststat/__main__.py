"""Console entry point for ``hoststat`` and ``python -m hoststat``."""

import sys

import click

from hoststat.cli import app


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit status instead of exiting.

    Args:
        argv: Arguments without the program name (sys.argv[1:] if None)

    Returns:
        The status passed to typer.Exit (0 when a command simply returns),
        the usage error status for bad arguments, 130 when interrupted
    """
    try:
        status = app(args=argv, prog_name="hoststat", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except (click.Abort, KeyboardInterrupt):
        click.echo("Aborted!", err=True)
        return 130
    return status if isinstance(status, int) else 0


if __name__ == "__main__":
    sys.exit(main())
