# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Loading and validation of ``tlenv.toml``."""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

STORE_ROOT_ENV: Final[str] = "TLENV_STORE_ROOT"

# kpathsea and the TeX Live infrastructure are needed for any toolchain to find its files.
BASE_PACKAGES: Final[tuple[str, ...]] = ("texlive.infra", "kpathsea")
WINDOWS_BASE_PACKAGES: Final[tuple[str, ...]] = ("tlperl.windows",)


class ProjectConfig(BaseModel):
    """Validated project configuration.

    Unknown keys are ignored so newer configuration files keep working with older
    releases.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    dependencies: tuple[str, ...] = Field(default_factory=tuple)
    store_root: Path | None = None
    platform: str | None = None
    catalog_file: Path | None = None

    @field_validator("dependencies")
    @classmethod
    def _strip_names(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Reject blank package names and trim surrounding whitespace."""

        names: list[str] = []
        for entry in value:
            name = entry.strip()
            if not name:
                raise ValueError("package names must not be empty")
            names.append(name)
        return tuple(names)


def load_config(path: Path) -> ProjectConfig:
    """Load and validate the configuration stored at ``path``.

    Args:
        path: Location of ``tlenv.toml``.

    Returns:
        ProjectConfig: Validated configuration.

    Raises:
        ConfigError: If the file cannot be read, parsed, or validated.
    """

    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file {path} does not exist") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Unable to parse configuration file {path}: {exc}") from exc

    try:
        config = ProjectConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigError(f"Invalid configuration in {path}: {problems}") from exc

    updates: dict[str, Path] = {}
    for key in ("store_root", "catalog_file"):
        value = getattr(config, key)
        if value is not None and not value.is_absolute():
            updates[key] = (path.parent / value).resolve()
    return config.model_copy(update=updates) if updates else config


def desired_packages(config: ProjectConfig, *, platform: str = sys.platform) -> tuple[str, ...]:
    """Return the desired package set in declaration order, base packages first.

    Args:
        config: Validated project configuration.
        platform: ``sys.platform`` value deciding platform-specific base packages.

    Returns:
        tuple[str, ...]: De-duplicated package names.
    """

    base = BASE_PACKAGES + (WINDOWS_BASE_PACKAGES if platform == "win32" else ())
    return tuple(dict.fromkeys((*base, *config.dependencies)))


__all__ = [
    "BASE_PACKAGES",
    "STORE_ROOT_ENV",
    "ProjectConfig",
    "desired_packages",
    "load_config",
]
