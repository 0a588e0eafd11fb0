"""
CLI layer for Cadence.

A Typer application whose commands load a schedule module, build a
scheduler from settings and hand off to ``cadence.scheduling``.  This
package handles only terminal transport: options, tables and exit codes.

Entry point::

    cadence --help
"""

from cadence.cli.app import app

__all__ = ["app"]
