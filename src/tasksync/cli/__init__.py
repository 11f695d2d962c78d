"""Command-line interface for tasksync."""

from .main import cli

__all__ = ["cli"]
