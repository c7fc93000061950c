# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Exception taxonomy shared by every tlenv component.

Each error carries the process exit code the CLI reports for it so scripts can branch
on the failure class without parsing messages.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import ClassVar, Final

EXIT_CONFIG: Final[int] = 2
EXIT_RESOLUTION: Final[int] = 3
EXIT_CONFLICT: Final[int] = 4
EXIT_PERMISSION: Final[int] = 5
EXIT_EXTERNAL_TOOL: Final[int] = 6
EXIT_IO: Final[int] = 7
EXIT_LOCKED: Final[int] = 8
EXIT_SPAWN: Final[int] = 126

SYMLINK_REMEDIATION: Final[str] = (
    "creating symbolic links requires an explicit privilege on this platform; "
    "on Windows enable Developer Mode or grant the 'Create symbolic links' right "
    "to your account, otherwise check the permissions of the environment directory"
)


class TlenvError(RuntimeError):
    """Base class for errors surfaced to the user."""

    exit_code: ClassVar[int] = 1


class ConfigError(TlenvError):
    """Raised when ``tlenv.toml`` is missing, unreadable, or invalid."""

    exit_code = EXIT_CONFIG


class UnknownPackageError(TlenvError):
    """Raised when the catalog has no entry for a requested package."""

    exit_code = EXIT_RESOLUTION

    def __init__(self, name: str, *, required_by: str | None = None) -> None:
        """Record the missing package and, when known, the package depending on it.

        Args:
            name: Package identity the catalog could not resolve.
            required_by: Package whose dependency edge referenced ``name``.
        """

        detail = f" (required by '{required_by}')" if required_by else ""
        super().__init__(
            f"Unknown package '{name}'{detail}; check the spelling in tlenv.toml "
            "or run 'tlmgr search' to find the catalog name"
        )
        self.name = name
        self.required_by = required_by


class CatalogSchemaError(TlenvError):
    """Raised when catalog output does not match the package metadata schema."""

    exit_code = EXIT_RESOLUTION


class ConflictError(TlenvError):
    """Raised when two packages claim one environment path with different targets."""

    exit_code = EXIT_CONFLICT

    def __init__(self, path: Path, claims: Sequence[tuple[str, Path]]) -> None:
        """Describe every package claim competing for ``path``.

        Args:
            path: Environment-relative path claimed more than once.
            claims: ``(package, store target)`` pairs claiming ``path``.
        """

        rendered = ", ".join(f"'{package}' -> {target}" for package, target in claims)
        super().__init__(
            f"Conflicting links for '{path.as_posix()}': {rendered}; remove one of the "
            "packages from tlenv.toml or report the overlap to the catalog maintainers"
        )
        self.path = path
        self.claims = tuple(claims)


class LinkTargetError(TlenvError):
    """Raised when a planned link would point outside the store or into the environment."""

    exit_code = EXIT_CONFLICT


class LinkPermissionError(TlenvError, PermissionError):
    """Raised when the platform refuses to create a filesystem link."""

    exit_code = EXIT_PERMISSION

    def __init__(self, package: str, link: Path, target: Path) -> None:
        """Explain which link could not be created and how to fix it.

        Args:
            package: Package whose links were being created.
            link: Absolute path of the link inside the environment.
            target: Store path the link should reference.
        """

        RuntimeError.__init__(
            self,
            f"Permission denied linking '{link}' -> '{target}' for package '{package}': "
            f"{SYMLINK_REMEDIATION}",
        )
        self.package = package
        self.link = link
        self.target = target


class EnvironmentIOError(TlenvError, OSError):
    """Raised for filesystem failures other than link permission denials."""

    exit_code = EXIT_IO

    def __init__(self, message: str, path: Path | None = None) -> None:
        """Store the failing path alongside the message.

        Args:
            message: Human-readable description including the remediation.
            path: Filesystem path involved in the failure, when known.
        """

        RuntimeError.__init__(self, message)
        self.path = path


class StateCorruptError(TlenvError):
    """Raised when the persisted environment state cannot be decoded."""

    exit_code = EXIT_IO


class EnvironmentLockedError(TlenvError):
    """Raised when another run holds the environment lock."""

    exit_code = EXIT_LOCKED


class ExternalToolFailure(TlenvError):
    """Raised when a catalog tool (``tlmgr``, ``mktexlsr``...) fails."""

    exit_code = EXIT_EXTERNAL_TOOL

    def __init__(self, command: Sequence[str], returncode: int | None, detail: str | None = None) -> None:
        """Summarise the failing command.

        Args:
            command: Command line that failed.
            returncode: Exit status reported by the tool, ``None`` when it could not run.
            detail: Optional captured stderr or hint.
        """

        status = "could not be started" if returncode is None else f"exited with status {returncode}"
        suffix = f": {detail.strip()}" if detail and detail.strip() else ""
        super().__init__(f"Command '{' '.join(command)}' {status}{suffix}")
        self.command = tuple(command)
        self.returncode = returncode


class SpawnError(TlenvError, ChildProcessError):
    """Raised when the execution wrapper cannot start the requested command."""

    exit_code = EXIT_SPAWN

    def __init__(self, command: str, reason: str) -> None:
        """Describe why ``command`` could not be started.

        Args:
            command: Program the user asked to run.
            reason: Explanation of the spawn failure.
        """

        RuntimeError.__init__(self, f"Unable to run '{command}': {reason}")
        self.command = command


__all__ = [
    "EXIT_CONFIG",
    "EXIT_CONFLICT",
    "EXIT_EXTERNAL_TOOL",
    "EXIT_IO",
    "EXIT_LOCKED",
    "EXIT_PERMISSION",
    "EXIT_RESOLUTION",
    "EXIT_SPAWN",
    "SYMLINK_REMEDIATION",
    "CatalogSchemaError",
    "ConfigError",
    "ConflictError",
    "EnvironmentIOError",
    "EnvironmentLockedError",
    "ExternalToolFailure",
    "LinkPermissionError",
    "LinkTargetError",
    "SpawnError",
    "StateCorruptError",
    "TlenvError",
    "UnknownPackageError",
]
