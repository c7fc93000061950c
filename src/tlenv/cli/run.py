# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Implementation of the ``tlenv run`` command."""

from __future__ import annotations

from typing import Annotated

import typer

from ..execution import build_execution_context, run_in_environment
from ..installs import install_environment
from ..logging import warn
from .shared import (
    EMOJI_OPTION,
    INSTALL_MISSING_OPTION,
    REFRESH_OPTION,
    ROOT_OPTION,
    VERBOSE_OPTION,
    exit_on_error,
    load_project,
    report_summary,
)

PROGRAM_ARGUMENT = Annotated[str, typer.Argument(help="Program to run inside the environment.")]
ARGS_ARGUMENT = Annotated[
    list[str] | None,
    typer.Argument(help="Arguments passed to the program unchanged."),
]

RUN_CONTEXT_SETTINGS = {
    "allow_interspersed_args": False,
    "ignore_unknown_options": True,
}


def run_command(
    program: PROGRAM_ARGUMENT,
    args: ARGS_ARGUMENT = None,
    root: ROOT_OPTION = None,
    refresh: REFRESH_OPTION = True,
    install_missing: INSTALL_MISSING_OPTION = True,
    emoji: EMOJI_OPTION = True,
    verbose: VERBOSE_OPTION = False,
) -> None:
    """Synchronise the environment, then run PROGRAM with its search paths."""

    with exit_on_error(use_emoji=emoji):
        project = load_project(root, verbose=verbose)
        summary = install_environment(
            project.layout,
            project.desired,
            project.catalog,
            install_missing=install_missing,
            refresh=refresh,
        )
        if summary.report.changed or summary.refreshed:
            report_summary(summary, use_emoji=emoji)
        outcome = run_in_environment(program, args or [], build_execution_context(project.layout))

    if outcome.kind == "signaled":
        warn(f"'{program}' was terminated by signal {outcome.signal}", use_emoji=emoji)
    raise typer.Exit(code=outcome.exit_status)


__all__ = ["RUN_CONTEXT_SETTINGS", "run_command"]
