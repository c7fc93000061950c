# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Implementation of the ``tlenv install`` command."""

from __future__ import annotations

from collections.abc import Sequence

import typer

from ..installs import InstallCallbacks, install_environment
from ..logging import info
from ..sync import SyncAction
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


def install_command(
    root: ROOT_OPTION = None,
    refresh: REFRESH_OPTION = True,
    install_missing: INSTALL_MISSING_OPTION = True,
    emoji: EMOJI_OPTION = True,
    verbose: VERBOSE_OPTION = False,
) -> None:
    """Synchronise the project environment with tlenv.toml."""

    with exit_on_error(use_emoji=emoji):
        project = load_project(root, verbose=verbose)
        info(f"Synchronising {project.layout.env_root}", use_emoji=emoji)

        def on_progress(action: SyncAction, name: str) -> None:
            verb = "Linked" if action == "add" else "Unlinked"
            info(f"{verb} {name}", use_emoji=emoji)

        def on_install(names: Sequence[str]) -> None:
            info(f"Installing into the shared TeX Live: {', '.join(names)}", use_emoji=emoji)

        def on_refresh(command: str) -> None:
            info(f"Running {command}", use_emoji=emoji)

        summary = install_environment(
            project.layout,
            project.desired,
            project.catalog,
            install_missing=install_missing,
            refresh=refresh,
            callbacks=InstallCallbacks(on_progress=on_progress, on_install=on_install, on_refresh=on_refresh),
        )
        report_summary(summary, use_emoji=emoji)
    raise typer.Exit(code=0)


__all__ = ["install_command"]
