"""CLI entry point for imagestudio.cli module.

Enables execution via: python -m imagestudio.cli
"""

from imagestudio.cli.recover_generations import main

if __name__ == "__main__":
    raise SystemExit(main())
