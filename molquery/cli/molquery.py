"""Entry point for the molquery CLI."""

from __future__ import annotations

import sys

from molquery.app import main as run


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
