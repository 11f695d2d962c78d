"""Allow ``python -m tasksync``."""

from .cli.main import cli

if __name__ == "__main__":
    cli()
