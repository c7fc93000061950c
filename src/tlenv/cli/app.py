# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""CLI application entry point wiring the tlenv commands."""

from __future__ import annotations

import typer

from .install import install_command
from .run import RUN_CONTEXT_SETTINGS, run_command

app = typer.Typer(
    help="Project-scoped TeX Live environments built from links into the shared installation.",
    no_args_is_help=True,
    add_completion=False,
)
app.command(name="install")(install_command)
app.command(name="run", context_settings=RUN_CONTEXT_SETTINGS)(run_command)


def main() -> None:
    """Console-script entry point."""

    app()


__all__ = ["app", "main"]
