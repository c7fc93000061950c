# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Regenerate TeX Live indexes and formats inside a synchronised environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from typing import Final

from .errors import EnvironmentIOError, ExternalToolFailure
from .execution import ExecutionContext
from .paths import EnvironmentLayout
from .process_utils import CommandOptions, SubprocessExecutionError, run_command

LOGGER = logging.getLogger(__name__)

REFRESH_COMMANDS: Final[tuple[tuple[str, ...], ...]] = (
    ("mktexlsr",),
    ("fmtutil-sys", "--missing"),
    ("updmap-sys", "--syncwithtrees"),
    ("updmap-sys",),
)
SCAFFOLD_DIRS: Final[tuple[str, ...]] = ("texmf-config", "texmf-var")


def refresh_environment(
    layout: EnvironmentLayout,
    context: ExecutionContext,
    *,
    base_env: Mapping[str, str] | None = None,
    on_command: Callable[[str], None] | None = None,
) -> None:
    """Rebuild the filename database, missing formats and font maps of the environment.

    Args:
        layout: Environment layout.
        context: Execution context used so the tools operate on the environment.
        base_env: Environment to extend; defaults to the current process environment.
        on_command: Callback receiving each command line before it runs.

    Raises:
        EnvironmentIOError: If the configuration directories cannot be created.
        ExternalToolFailure: If any of the TeX Live tools fails.
    """

    for name in SCAFFOLD_DIRS:
        directory = layout.env_root / name
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EnvironmentIOError(f"Unable to create '{directory}': {exc.strerror or exc}", directory) from exc

    options = CommandOptions(
        env=context.environ(os.environ if base_env is None else base_env),
        capture_output=True,
        check=True,
    )
    for command in REFRESH_COMMANDS:
        rendered = " ".join(command)
        if on_command is not None:
            on_command(rendered)
        LOGGER.debug("refresh: %s", rendered)
        try:
            run_command(command, options=options)
        except FileNotFoundError as exc:
            raise ExternalToolFailure(
                command,
                None,
                f"{exc}; add 'texlive.infra' and 'kpathsea' to the environment or install them in the store",
            ) from exc
        except SubprocessExecutionError as exc:
            raise ExternalToolFailure(command, exc.returncode, exc.stderr) from exc


__all__ = ["REFRESH_COMMANDS", "refresh_environment"]
