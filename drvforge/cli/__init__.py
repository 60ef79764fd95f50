"""drvforge CLI — Typer-based command-line interface.

Provides the ``drvforge`` command with subcommands for realizing
derivations, inspecting the build plan and environments, bundling
artifacts and publishing releases.

All output uses Rich for formatted terminal display.
"""
