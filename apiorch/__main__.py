"""Main entry point when executing apiorch as a package.

This allows running the package using python -m apiorch.
"""

from apiorch.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
