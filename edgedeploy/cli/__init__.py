"""edgedeploy CLI — Typer-based command-line interface.

Provides the ``edgedeploy`` command: ``deploy`` plus the ``artifact``,
``invalidate``, ``lease`` and ``deployments`` groups.

All output uses Rich for formatted terminal display.
"""
