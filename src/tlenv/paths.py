# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Filesystem layout of a project environment."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from itertools import chain
from pathlib import Path
from typing import Final

from .errors import ConfigError

CONFIG_FILE_NAME: Final[str] = "tlenv.toml"
DOT_DIR_NAME: Final[str] = ".tlenv"
ENV_ROOT_NAME: Final[str] = "root"
STATE_FILE_NAME: Final[str] = "state.json"
LOCK_FILE_NAME: Final[str] = "lock"


@dataclass(frozen=True, slots=True)
class EnvironmentLayout:
    """Explicit locations shared by every component of a run.

    Attributes:
        project_root: Directory containing ``tlenv.toml``.
        store_root: Root of the shared TeX Live installation (``TEXMFROOT``).
        platform: TeX Live platform identifier (``x86_64-linux``...).
    """

    project_root: Path
    store_root: Path
    platform: str

    @property
    def dot_dir(self) -> Path:
        """Return the hidden per-project directory owned by tlenv."""

        return self.project_root / DOT_DIR_NAME

    @property
    def env_root(self) -> Path:
        """Return the root of the link tree mirroring the store layout."""

        return self.dot_dir / ENV_ROOT_NAME

    @property
    def state_file(self) -> Path:
        """Return the path of the persisted environment state."""

        return self.dot_dir / STATE_FILE_NAME

    @property
    def lock_file(self) -> Path:
        """Return the path of the exclusive run lock."""

        return self.dot_dir / LOCK_FILE_NAME

    def env_path(self, relative: Path) -> Path:
        """Return the absolute environment path for ``relative``."""

        return self.env_root / relative

    def store_path(self, relative: Path) -> Path:
        """Return the absolute store path for ``relative``."""

        return Path(os.path.normpath(self.store_root / relative))


def _iter_candidates(start: Path) -> Iterable[Path]:
    """Yield ``start`` and each of its parents, resolved and de-duplicated.

    Args:
        start: Directory whose ancestors should be traversed.

    Yields:
        Path: Candidate directories considered during discovery.
    """

    seen: set[Path] = set()
    for candidate in chain([start], start.parents):
        resolved = candidate.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        yield resolved


def find_project_root(start: Path | None = None) -> Path:
    """Return the nearest directory at or above ``start`` holding ``tlenv.toml``.

    Args:
        start: Directory to begin searching from; defaults to the working directory.

    Returns:
        Path: Directory containing the project configuration.

    Raises:
        ConfigError: If no ancestor contains a configuration file.
    """

    origin = (start or Path.cwd()).resolve()
    for candidate in _iter_candidates(origin):
        if (candidate / CONFIG_FILE_NAME).is_file():
            return candidate
    raise ConfigError(
        f"Unable to find {CONFIG_FILE_NAME} in {origin} or any of its parents; "
        f"create one listing the packages the project needs"
    )


__all__ = [
    "CONFIG_FILE_NAME",
    "DOT_DIR_NAME",
    "EnvironmentLayout",
    "find_project_root",
]
