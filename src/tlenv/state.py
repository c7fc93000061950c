# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Persisted record of the links currently materialised in an environment.

The state file is the sole source of truth for what exists on disk. It is rewritten
after every package is reconciled, always through a temporary file and an atomic
rename, so an interrupted run leaves either the previous or the next consistent
snapshot behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePosixPath
from types import TracebackType
from typing import Final, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import EnvironmentIOError, EnvironmentLockedError, StateCorruptError

LOGGER = logging.getLogger(__name__)

STATE_FORMAT: Final[int] = 1

LinkMode = Literal["symlink", "hardlink", "copy"]


class LinkEntry(BaseModel):
    """One link from an environment-relative path to an absolute store path."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    target: str
    mode: LinkMode = "symlink"

    @field_validator("path")
    @classmethod
    def _relative_posix(cls, value: str) -> str:
        """Normalise ``path`` and reject absolute or escaping paths."""

        normalised = PurePosixPath(value.replace("\\", "/"))
        if normalised.is_absolute() or not normalised.parts or ".." in normalised.parts:
            raise ValueError(f"link path must be relative and inside the environment: {value!r}")
        return str(normalised)

    @field_validator("target")
    @classmethod
    def _absolute_target(cls, value: str) -> str:
        """Require store targets to be absolute."""

        if not Path(value).is_absolute():
            raise ValueError(f"link target must be absolute: {value!r}")
        return os.path.normpath(value)

    @property
    def relative_path(self) -> Path:
        """Return the environment-relative path as a native :class:`Path`."""

        return Path(*PurePosixPath(self.path).parts)

    @property
    def target_path(self) -> Path:
        """Return the store target as a :class:`Path`."""

        return Path(self.target)


class EnvironmentState(BaseModel):
    """Mapping from package identity to the links it owns on disk.

    ``pending`` holds the planned links of a package whose linking has started but not
    been committed; the next run removes whatever of them reached the disk.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    format: int = STATE_FORMAT
    packages: dict[str, tuple[LinkEntry, ...]] = Field(default_factory=dict)
    pending: dict[str, tuple[LinkEntry, ...]] = Field(default_factory=dict)
    catalog_snapshot: str | None = None
    refresh_pending: bool = False

    @field_validator("packages", "pending")
    @classmethod
    def _sorted_entries(cls, value: dict[str, tuple[LinkEntry, ...]]) -> dict[str, tuple[LinkEntry, ...]]:
        """Keep packages and their entries in a canonical order."""

        return {name: tuple(sorted(value[name], key=lambda entry: entry.path)) for name in sorted(value)}

    def names(self) -> frozenset[str]:
        """Return the identities of every materialised package."""

        return frozenset(self.packages)

    def with_package(self, name: str, entries: Iterable[LinkEntry]) -> EnvironmentState:
        """Return a copy recording ``entries`` as the links owned by ``name``."""

        packages = dict(self.packages)
        packages[name] = tuple(entries)
        return self._replace(packages=packages)

    def without_package(self, name: str) -> EnvironmentState:
        """Return a copy with ``name`` dropped."""

        packages = {key: value for key, value in self.packages.items() if key != name}
        return self._replace(packages=packages)

    def with_pending(self, name: str, entries: Iterable[LinkEntry]) -> EnvironmentState:
        """Return a copy recording ``entries`` as about to be linked for ``name``."""

        pending = dict(self.pending)
        pending[name] = tuple(entries)
        return self._replace(pending=pending)

    def without_pending(self, name: str) -> EnvironmentState:
        """Return a copy forgetting the pending links of ``name``."""

        pending = {key: value for key, value in self.pending.items() if key != name}
        return self._replace(pending=pending)

    def commit_pending(self, name: str) -> EnvironmentState:
        """Return a copy moving the pending links of ``name`` into ``packages``."""

        return self.with_package(name, self.pending.get(name, ())).without_pending(name)

    def with_flags(
        self,
        *,
        catalog_snapshot: str | None = None,
        refresh_pending: bool | None = None,
    ) -> EnvironmentState:
        """Return a copy with updated metadata fields."""

        return self._replace(
            packages=dict(self.packages),
            catalog_snapshot=self.catalog_snapshot if catalog_snapshot is None else catalog_snapshot,
            refresh_pending=self.refresh_pending if refresh_pending is None else refresh_pending,
        )

    def claims(self) -> dict[str, list[tuple[str, LinkEntry]]]:
        """Index the state by environment path.

        Returns:
            dict[str, list[tuple[str, LinkEntry]]]: ``(package, entry)`` claims per path.
        """

        index: dict[str, list[tuple[str, LinkEntry]]] = {}
        for name, entries in self.packages.items():
            for entry in entries:
                index.setdefault(entry.path, []).append((name, entry))
        return index

    def _replace(self, **fields: object) -> EnvironmentState:
        payload: dict[str, object] = {
            "format": self.format,
            "packages": self.packages,
            "pending": self.pending,
            "catalog_snapshot": self.catalog_snapshot,
            "refresh_pending": self.refresh_pending,
        }
        payload.update(fields)
        return EnvironmentState.model_validate(payload)


def serialize_state(state: EnvironmentState) -> str:
    """Return the canonical JSON form of ``state``.

    Identical states always produce byte-identical output.
    """

    payload = state.model_dump(mode="json")
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


class StateStore:
    """Load and persist :class:`EnvironmentState` for one environment.

    Exactly one run may use a store at a time; callers hold an
    :class:`EnvironmentLock` for the duration of a synchronisation.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        """Return the location of the state file."""

        return self._path

    def load(self) -> EnvironmentState:
        """Return the persisted state, or an empty state before the first run.

        Raises:
            StateCorruptError: If the file exists but cannot be decoded.
            EnvironmentIOError: If the file cannot be read.
        """

        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return EnvironmentState()
        except OSError as exc:
            raise EnvironmentIOError(f"Unable to read environment state {self._path}: {exc}", self._path) from exc
        try:
            data = json.loads(raw)
            state = EnvironmentState.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StateCorruptError(
                f"Environment state {self._path} is corrupt ({exc.__class__.__name__}); "
                f"delete {self._path.parent} and run 'tlenv install' to rebuild the environment"
            ) from exc
        if state.format != STATE_FORMAT:
            raise StateCorruptError(
                f"Environment state {self._path} uses format {state.format}, expected {STATE_FORMAT}; "
                f"delete {self._path.parent} and run 'tlenv install' to rebuild the environment"
            )
        return state

    def save(self, state: EnvironmentState) -> None:
        """Atomically replace the persisted state with ``state``.

        Raises:
            EnvironmentIOError: If the state cannot be written.
        """

        text = serialize_state(state)
        directory = self._path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise EnvironmentIOError(f"Unable to write environment state {self._path}: {exc}", self._path) from exc
        LOGGER.debug("persisted state with %d package(s)", len(state.packages))


class EnvironmentLock:
    """Exclusive lock file guarding an environment against concurrent runs."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._held = False

    @property
    def path(self) -> Path:
        """Return the lock file location."""

        return self._path

    def acquire(self) -> None:
        """Create the lock file, failing if another run already holds it.

        Raises:
            EnvironmentLockedError: If the lock file already exists.
            EnvironmentIOError: If the lock file cannot be created.
        """

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as exc:
            owner = _read_owner(self._path)
            raise EnvironmentLockedError(
                f"Environment {self._path.parent} is in use by another tlenv run{owner}; "
                f"if no other run is active, delete {self._path} and retry"
            ) from exc
        except OSError as exc:
            raise EnvironmentIOError(f"Unable to create lock file {self._path}: {exc}", self._path) from exc
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()}\n")
        self._held = True

    def release(self) -> None:
        """Remove the lock file when this instance holds it."""

        if not self._held:
            return
        self._path.unlink(missing_ok=True)
        self._held = False

    def __enter__(self) -> EnvironmentLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()


def _read_owner(path: Path) -> str:
    """Return a ``(pid N)`` suffix describing the lock owner when readable."""

    try:
        pid = path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""
    return f" (pid {pid})" if pid else ""


def state_from_mapping(packages: Mapping[str, Iterable[LinkEntry]]) -> EnvironmentState:
    """Build a state from a plain ``package -> entries`` mapping."""

    return EnvironmentState(packages={name: tuple(entries) for name, entries in packages.items()})


__all__ = [
    "STATE_FORMAT",
    "EnvironmentLock",
    "EnvironmentState",
    "LinkEntry",
    "LinkMode",
    "StateStore",
    "serialize_state",
    "state_from_mapping",
]
