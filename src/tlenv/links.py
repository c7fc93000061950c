# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Link planning, validation and filesystem operations for the environment tree."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import sys
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path, PurePosixPath
from typing import Final

from pydantic import ValidationError

from .catalog.models import Package
from .errors import ConflictError, EnvironmentIOError, LinkPermissionError, LinkTargetError
from .paths import EnvironmentLayout
from .state import LinkEntry, LinkMode

LOGGER = logging.getLogger(__name__)

IS_WINDOWS: Final[bool] = os.name == "nt"
# Windows and default macOS volumes compare file names without regard to case.
CASE_INSENSITIVE: Final[bool] = IS_WINDOWS or sys.platform == "darwin"

# kpathsea locates its configuration relative to its own resolved executable path.
HARDLINK_NAMES: Final[frozenset[str]] = frozenset({"kpsewhich", "kpsewhich.exe"})
# updmap-sys --syncwithtrees rewrites this file in place.
COPY_NAMES: Final[frozenset[str]] = frozenset({"updmap.cfg"})
# LuaTeX's filesystem layer cannot open OpenType fonts through Windows symlinks.
WINDOWS_HARDLINK_SUFFIXES: Final[frozenset[str]] = frozenset({".otf"})
_WINDOWS_PRIVILEGE_NOT_HELD: Final[int] = 1314

LinkPlan = Mapping[str, Sequence[LinkEntry]]


def link_mode_for(relative: PurePosixPath, *, windows: bool = IS_WINDOWS) -> LinkMode:
    """Return how the file at ``relative`` must be materialised."""

    if relative.name in COPY_NAMES:
        return "copy"
    if relative.name in HARDLINK_NAMES:
        return "hardlink"
    if windows and relative.suffix.lower() in WINDOWS_HARDLINK_SUFFIXES:
        return "hardlink"
    return "symlink"


def _is_within(path: Path, root: Path) -> bool:
    """Return ``True`` when normalised ``path`` equals or lies below ``root``."""

    path_norm = os.path.normcase(os.path.normpath(path))
    root_norm = os.path.normcase(os.path.normpath(root))
    try:
        return os.path.commonpath([path_norm, root_norm]) == root_norm
    except ValueError:
        return False


def plan_package_links(
    package: Package,
    layout: EnvironmentLayout,
    *,
    windows: bool = IS_WINDOWS,
) -> tuple[LinkEntry, ...]:
    """Return the links ``package`` contributes to the environment.

    Args:
        package: Resolved package metadata.
        layout: Environment layout providing store and environment roots.
        windows: Whether Windows-specific link modes apply.

    Returns:
        tuple[LinkEntry, ...]: Entries sorted by environment path.

    Raises:
        LinkTargetError: If a manifest path escapes the store or points into the environment.
    """

    entries: list[LinkEntry] = []
    for relative in sorted(package.manifest):
        target = layout.store_path(Path(*PurePosixPath(relative).parts))
        if not _is_within(target, layout.store_root):
            raise LinkTargetError(
                f"Package '{package.name}' lists '{relative}', which resolves outside the store "
                f"root {layout.store_root}; the catalog entry is invalid"
            )
        if _is_within(target, layout.env_root):
            raise LinkTargetError(
                f"Package '{package.name}' lists '{relative}', which resolves inside the environment "
                f"{layout.env_root}; move the project outside the TeX Live installation"
            )
        try:
            mode = link_mode_for(PurePosixPath(relative), windows=windows)
            entry = LinkEntry(path=relative, target=str(target), mode=mode)
        except ValidationError as exc:
            raise LinkTargetError(f"Package '{package.name}' lists an invalid path '{relative}'") from exc
        entries.append(entry)
    return tuple(entries)


def path_key(path: str, *, case_insensitive: bool = CASE_INSENSITIVE) -> str:
    """Return the form of ``path`` under which the filesystem identifies it."""

    return path.casefold() if case_insensitive else path


def detect_conflicts(
    plan: LinkPlan,
    committed: Mapping[str, Sequence[LinkEntry]],
    *,
    case_insensitive: bool = CASE_INSENSITIVE,
) -> None:
    """Validate ``plan`` against itself and against links that will remain committed.

    A path may be claimed by several packages only when every claim names the same
    store target. Planned targets mirror their path below the store root, so diverging
    claims only arise from links planned by a resolver that does not follow the store
    layout.

    Args:
        plan: Links about to be created, keyed by package.
        committed: Links that stay materialised, keyed by package.
        case_insensitive: Whether paths differing only in case name the same file.

    Raises:
        ConflictError: For the first path (in sorted order) with diverging targets.
    """

    claims: dict[str, list[tuple[str, LinkEntry]]] = {}
    for source in (committed, plan):
        for name in sorted(source):
            for entry in source[name]:
                key = path_key(entry.path, case_insensitive=case_insensitive)
                claims.setdefault(key, []).append((name, entry))
    for key in sorted(claims):
        owners = claims[key]
        targets = {path_key(entry.target, case_insensitive=case_insensitive) for _, entry in owners}
        if len(targets) > 1:
            raise ConflictError(
                Path(owners[0][1].path),
                [(name, entry.target_path) for name, entry in owners],
            )


def _is_permission_denied(exc: OSError) -> bool:
    """Return ``True`` when ``exc`` reports a missing link privilege."""

    if isinstance(exc, PermissionError) or exc.errno in (errno.EPERM, errno.EACCES):
        return True
    return getattr(exc, "winerror", None) == _WINDOWS_PRIVILEGE_NOT_HELD


def _symlink_matches(link: Path, target: Path) -> bool:
    """Return ``True`` when ``link`` is already a symlink to ``target``."""

    try:
        return link.is_symlink() and os.path.normpath(os.readlink(link)) == os.path.normpath(target)
    except OSError:
        return False


def _clear(link: Path) -> None:
    """Remove whatever occupies ``link`` so a fresh entry can be created."""

    if link.is_symlink() or link.is_file():
        link.unlink()
    elif link.is_dir():
        raise IsADirectoryError(errno.EISDIR, "a directory occupies the link location", str(link))


def materialize(package: str, entry: LinkEntry, layout: EnvironmentLayout) -> bool:
    """Create the filesystem entry described by ``entry``.

    Anything already present at the location and not recorded in the state is left
    over from an interrupted run and is replaced.

    Args:
        package: Package owning the entry, used in error messages.
        entry: Link to create.
        layout: Environment layout.

    Returns:
        bool: ``True`` when the filesystem was modified.

    Raises:
        LinkPermissionError: If the platform refuses to create the link.
        EnvironmentIOError: For any other filesystem failure.
    """

    link = layout.env_path(entry.relative_path)
    target = entry.target_path
    if entry.mode == "symlink" and _symlink_matches(link, target):
        return False
    try:
        link.parent.mkdir(parents=True, exist_ok=True)
        if os.path.lexists(link):
            LOGGER.debug("replacing unrecorded entry %s", link)
            _clear(link)
        if entry.mode == "symlink":
            os.symlink(target, link, target_is_directory=target.is_dir())
        elif entry.mode == "hardlink":
            _hardlink_or_copy(target, link)
        else:
            shutil.copy2(target, link)
    except OSError as exc:
        if entry.mode == "symlink" and _is_permission_denied(exc):
            raise LinkPermissionError(package, link, target) from exc
        raise EnvironmentIOError(
            f"Unable to create '{link}' -> '{target}' for package '{package}': {exc.strerror or exc}",
            link,
        ) from exc
    return True


def _hardlink_or_copy(target: Path, link: Path) -> None:
    """Hard-link ``target`` to ``link``, copying when the filesystems differ."""

    try:
        os.link(target, link)
    except OSError as exc:
        LOGGER.debug("hard link %s failed (%s); copying instead", link, exc)
        shutil.copy2(target, link)


def remove(package: str, entry: LinkEntry, layout: EnvironmentLayout) -> bool:
    """Delete the filesystem entry described by ``entry``.

    A missing file counts as already removed.

    Returns:
        bool: ``True`` when something was deleted.

    Raises:
        EnvironmentIOError: If the entry exists but cannot be deleted.
    """

    link = layout.env_path(entry.relative_path)
    try:
        link.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise EnvironmentIOError(
            f"Unable to remove '{link}' for package '{package}': {exc.strerror or exc}",
            link,
        ) from exc
    return True


def prune_empty_dirs(paths: Iterable[Path], root: Path) -> int:
    """Remove directories left empty below ``root`` after deleting ``paths``.

    Returns:
        int: Number of directories removed.
    """

    removed = 0
    candidates = {parent for path in paths for parent in path.parents if parent != root and _is_within(parent, root)}
    for directory in sorted(candidates, key=lambda item: len(item.parts), reverse=True):
        try:
            directory.rmdir()
        except FileNotFoundError:
            continue
        except OSError as exc:
            if exc.errno in (errno.ENOTEMPTY, errno.EEXIST):
                continue
            raise EnvironmentIOError(
                f"Unable to remove directory '{directory}': {exc.strerror or exc}",
                directory,
            ) from exc
        removed += 1
    return removed


__all__ = [
    "CASE_INSENSITIVE",
    "LinkPlan",
    "detect_conflicts",
    "link_mode_for",
    "materialize",
    "path_key",
    "plan_package_links",
    "prune_empty_dirs",
    "remove",
]
