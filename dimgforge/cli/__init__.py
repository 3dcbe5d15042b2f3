"""Dimgforge CLI — Typer-based command-line interface.

Provides the ``dimgforge`` command with subcommands for building dimgs
and listing their planned stages.

All output uses Rich for formatted terminal display.
"""
