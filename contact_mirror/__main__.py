"""
Entry point for running contact_mirror as a module.

Usage:
    python -m contact_mirror --help
    python -m contact_mirror sync --account me@example.com
"""

from contact_mirror.cli import cli

if __name__ == "__main__":
    cli()
