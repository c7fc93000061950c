# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Option declarations and helpers shared by CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer

from ..catalog import CachingCatalog
from ..config import ProjectConfig, desired_packages, load_config
from ..errors import TlenvError
from ..installs import InstallSummary, open_catalog, resolve_layout
from ..logging import configure_verbose_logging, fail, info, ok, warn
from ..paths import CONFIG_FILE_NAME, EnvironmentLayout, find_project_root

ROOT_OPTION = Annotated[
    Path | None,
    typer.Option(
        "--root",
        "-r",
        help=f"Directory to search upwards from for {CONFIG_FILE_NAME} (defaults to the working directory).",
    ),
]
REFRESH_OPTION = Annotated[
    bool,
    typer.Option(
        "--refresh/--no-refresh",
        help="Regenerate the filename database, formats and font maps after changes.",
    ),
]
INSTALL_MISSING_OPTION = Annotated[
    bool,
    typer.Option(
        "--install-missing/--no-install-missing",
        help="Ask tlmgr to install required packages missing from the shared TeX Live.",
    ),
]
EMOJI_OPTION = Annotated[
    bool,
    typer.Option("--emoji/--no-emoji", help="Toggle emoji in CLI output."),
]
VERBOSE_OPTION = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Print diagnostic logging to stderr."),
]


@dataclass(frozen=True, slots=True)
class ProjectContext:
    """Everything a command needs to operate on one project."""

    layout: EnvironmentLayout
    config: ProjectConfig
    catalog: CachingCatalog
    desired: tuple[str, ...]


def load_project(root: Path | None, *, verbose: bool) -> ProjectContext:
    """Locate the project configuration and derive its layout and catalog.

    Args:
        root: Directory to start the configuration search from.
        verbose: Whether diagnostic logging should be enabled.

    Returns:
        ProjectContext: Loaded project context.
    """

    if verbose:
        configure_verbose_logging()
    project_root = find_project_root(root)
    config = load_config(project_root / CONFIG_FILE_NAME)
    layout = resolve_layout(project_root, config)
    return ProjectContext(
        layout=layout,
        config=config,
        catalog=open_catalog(layout, config),
        desired=desired_packages(config),
    )


@contextmanager
def exit_on_error(*, use_emoji: bool) -> Iterator[None]:
    """Report :class:`TlenvError` failures and exit with their class-specific code."""

    try:
        yield
    except TlenvError as exc:
        fail(str(exc), use_emoji=use_emoji)
        raise typer.Exit(code=exc.exit_code) from exc


def report_summary(summary: InstallSummary, *, use_emoji: bool) -> None:
    """Print the outcome of an install run."""

    report = summary.report
    if summary.snapshot_changed:
        warn("The shared TeX Live package database changed since the last run.", use_emoji=use_emoji)
    if not report.changed and not summary.refreshed:
        ok("Environment is up to date.", use_emoji=use_emoji)
        return
    if report.relinked:
        info(f"Relinked {len(report.relinked)} package(s) whose contents changed.", use_emoji=use_emoji)
    ok(
        f"Environment synchronised: {len(report.added)} added, {len(report.removed)} removed, "
        f"{len(report.plan.closure)} package(s) in total.",
        use_emoji=use_emoji,
    )


__all__ = [
    "EMOJI_OPTION",
    "INSTALL_MISSING_OPTION",
    "REFRESH_OPTION",
    "ROOT_OPTION",
    "VERBOSE_OPTION",
    "ProjectContext",
    "exit_on_error",
    "load_project",
    "report_summary",
]
