# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Run commands against a synchronised environment."""

from __future__ import annotations

import logging
import os
import signal
import subprocess  # nosec B404 - argument lists only, no shell
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType
from typing import Final, Literal

from .errors import SpawnError
from .paths import EnvironmentLayout
from .process_utils import resolve_executable

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SearchPathRule:
    """One row of the fixed search-path table.

    Attributes:
        variable: Environment variable the rule controls.
        directories: Environment-relative directories, ``{platform}`` is substituted.
        inherit: Whether the caller's existing value is kept after the local entries.
    """

    variable: str
    directories: tuple[str, ...]
    inherit: bool


SEARCH_PATH_TABLE: Final[tuple[SearchPathRule, ...]] = (
    SearchPathRule("PATH", ("bin/{platform}",), inherit=True),
    SearchPathRule("TEXMFCNF", ("", "texmf-dist/web2c"), inherit=False),
    SearchPathRule("TEXMFSYSCONFIG", ("texmf-config",), inherit=False),
    SearchPathRule("TEXMFSYSVAR", ("texmf-var",), inherit=False),
)

FORWARDED_SIGNALS: Final[tuple[str, ...]] = ("SIGINT", "SIGTERM", "SIGHUP")
SIGNAL_EXIT_BASE: Final[int] = 128


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Environment root plus the search-path variables derived from it."""

    env_root: Path
    store_root: Path
    search_paths: Mapping[str, tuple[Path, ...]] = field(default_factory=dict)
    inherited: frozenset[str] = frozenset()

    def environ(self, base: Mapping[str, str]) -> dict[str, str]:
        """Return a copy of ``base`` with local directories taking precedence.

        Inherited ``PATH`` entries that point into the shared store are rewritten to
        the same location inside the environment, so the system-wide TeX Live binaries
        are shadowed rather than merely outranked.

        Args:
            base: Environment of the calling process.

        Returns:
            dict[str, str]: Environment for the child process.
        """

        env = dict(base)
        for variable, directories in self.search_paths.items():
            entries = [str(directory) for directory in directories]
            if variable in self.inherited and base.get(variable):
                for part in base[variable].split(os.pathsep):
                    rewritten = self._rewrite(part) if variable == "PATH" else part
                    if rewritten and rewritten not in entries:
                        entries.append(rewritten)
            env[variable] = os.pathsep.join(entries)
        return env

    def _rewrite(self, entry: str) -> str:
        """Map ``entry`` from the store root into the environment root, following symlinks."""

        if not entry:
            return entry
        path = Path(entry)
        candidates = (path, path.resolve()) if path.is_absolute() else (path,)
        for candidate in candidates:
            try:
                relative = candidate.relative_to(self.store_root)
            except ValueError:
                continue
            return str(self.env_root / relative)
        return entry


def build_execution_context(layout: EnvironmentLayout) -> ExecutionContext:
    """Derive the execution context for ``layout`` from the fixed search-path table."""

    search_paths: dict[str, tuple[Path, ...]] = {}
    inherited: set[str] = set()
    for rule in SEARCH_PATH_TABLE:
        directories = []
        for template in rule.directories:
            relative = template.format(platform=layout.platform)
            directories.append(layout.env_root / relative if relative else layout.env_root)
        search_paths[rule.variable] = tuple(directories)
        if rule.inherit:
            inherited.add(rule.variable)
    return ExecutionContext(
        env_root=layout.env_root,
        store_root=layout.store_root,
        search_paths=search_paths,
        inherited=frozenset(inherited),
    )


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """How a child process finished.

    Attributes:
        kind: ``"exited"`` for a normal exit, ``"signaled"`` when killed by a signal.
        code: Exit code for ``"exited"`` outcomes.
        signal: Signal number for ``"signaled"`` outcomes.
    """

    kind: Literal["exited", "signaled"]
    code: int | None = None
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> RunOutcome:
        """Interpret a :class:`subprocess.Popen` return code."""

        if returncode < 0:
            return cls(kind="signaled", signal=-returncode)
        return cls(kind="exited", code=returncode)

    @property
    def exit_status(self) -> int:
        """Return the status the wrapper should exit with (``128 + N`` for signals)."""

        if self.kind == "signaled":
            return SIGNAL_EXIT_BASE + (self.signal or 0)
        return self.code or 0


def _receives_terminal_interrupts(process: subprocess.Popen[bytes]) -> bool:
    """Return whether a Ctrl+C at the terminal reaches ``process`` without relaying.

    The terminal signals its whole foreground process group, and on Windows every
    process attached to the console.
    """

    if os.name == "nt":
        return True
    try:
        return os.getpgid(process.pid) == os.getpgrp()
    except OSError:
        return False


@contextmanager
def _forward_signals(process: subprocess.Popen[bytes]) -> Iterator[None]:
    """Relay termination signals received by this process to ``process``."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    skip_interrupt = _receives_terminal_interrupts(process)

    def _relay(signum: int, _frame: FrameType | None) -> None:
        if signum == signal.SIGINT and skip_interrupt:
            return
        if process.poll() is None:
            LOGGER.debug("forwarding signal %d to pid %d", signum, process.pid)
            process.send_signal(signum)

    previous: dict[int, object] = {}
    for name in FORWARDED_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous[signum] = signal.signal(signum, _relay)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]


def run_in_environment(
    command: str,
    args: Sequence[str],
    context: ExecutionContext,
    *,
    base_env: Mapping[str, str] | None = None,
) -> RunOutcome:
    """Run ``command`` with ``args`` inside the environment and wait for it.

    Standard streams are inherited. Signals received while the child runs are
    forwarded to it, except an interrupt the child already got from the terminal;
    the call returns once the child has terminated.

    Args:
        command: Program name or path.
        args: Arguments passed verbatim.
        context: Execution context of the environment.
        base_env: Environment to extend; defaults to the current process environment.

    Returns:
        RunOutcome: Exit code or terminating signal of the child.

    Raises:
        SpawnError: If the command cannot be found or started.
    """

    env = context.environ(os.environ if base_env is None else base_env)
    executable = resolve_executable(command, env)
    if executable is None:
        raise SpawnError(command, "command not found on PATH (environment directories included)")
    LOGGER.debug("spawning %s %s", executable, " ".join(args))
    try:
        process = subprocess.Popen([executable, *args], env=env)  # nosec B603
    except OSError as exc:
        raise SpawnError(command, exc.strerror or str(exc)) from exc

    with _forward_signals(process):
        returncode = process.wait()
    return RunOutcome.from_returncode(returncode)


__all__ = [
    "SEARCH_PATH_TABLE",
    "ExecutionContext",
    "RunOutcome",
    "SearchPathRule",
    "build_execution_context",
    "run_in_environment",
]
