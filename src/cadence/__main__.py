"""``python -m cadence`` entry point."""

from cadence.cli.app import app

if __name__ == "__main__":
    app()
