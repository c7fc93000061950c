# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""High-level install workflow shared by the ``install`` and ``run`` commands."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .catalog import CachingCatalog, StaticCatalog, TlmgrCatalog, probe_platform, probe_store_root
from .closure import resolve_closure
from .config import STORE_ROOT_ENV, ProjectConfig
from .errors import ConfigError
from .execution import build_execution_context
from .paths import EnvironmentLayout
from .refresh import refresh_environment
from .state import EnvironmentLock, StateStore
from .sync import EnvironmentSynchronizer, ProgressCallback, SyncReport

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class InstallSummary:
    """Aggregated details about an installation run."""

    report: SyncReport
    installed_packages: tuple[str, ...]
    refreshed: bool
    snapshot_changed: bool


@dataclass(frozen=True, slots=True)
class InstallCallbacks:
    """Optional progress hooks invoked while installing."""

    on_progress: ProgressCallback | None = None
    on_install: Callable[[Sequence[str]], None] | None = None
    on_refresh: Callable[[str], None] | None = None


def resolve_layout(
    project_root: Path,
    config: ProjectConfig,
    *,
    environ: Mapping[str, str] | None = None,
) -> EnvironmentLayout:
    """Build the environment layout for ``project_root``.

    The store root comes from the configuration, then ``TLENV_STORE_ROOT``, then
    ``kpsewhich``; the platform from the configuration, then ``tlmgr``.

    Args:
        project_root: Directory containing ``tlenv.toml``.
        config: Validated project configuration.
        environ: Process environment consulted for overrides.

    Returns:
        EnvironmentLayout: Explicit layout passed to every component.
    """

    env = os.environ if environ is None else environ
    if config.store_root is not None:
        store_root = config.store_root
    elif env.get(STORE_ROOT_ENV):
        store_root = Path(env[STORE_ROOT_ENV]).expanduser()
    else:
        store_root = probe_store_root()
    platform = config.platform or probe_platform()
    return EnvironmentLayout(project_root=project_root.resolve(), store_root=store_root.resolve(), platform=platform)


def open_catalog(layout: EnvironmentLayout, config: ProjectConfig) -> CachingCatalog:
    """Return the catalog configured for the project.

    Raises:
        ConfigError: If a configured catalog file cannot be read.
    """

    if config.catalog_file is None:
        return TlmgrCatalog(layout.store_root, layout.platform)
    try:
        return StaticCatalog.from_path(config.catalog_file, layout.platform)
    except OSError as exc:
        raise ConfigError(f"Unable to read catalog file {config.catalog_file}: {exc.strerror or exc}") from exc


def install_environment(
    layout: EnvironmentLayout,
    desired: Iterable[str],
    catalog: CachingCatalog,
    *,
    install_missing: bool = True,
    refresh: bool = True,
    callbacks: InstallCallbacks | None = None,
) -> InstallSummary:
    """Synchronise the environment at ``layout`` with the closure of ``desired``.

    The workflow holds the environment lock throughout: it resolves the closure,
    optionally asks the catalog to install packages missing from the shared store,
    applies the link plan, and regenerates TeX Live indexes when anything changed or a
    previous refresh did not complete.

    Args:
        layout: Environment layout.
        desired: Package identities requested by the configuration.
        catalog: Catalog resolving package metadata.
        install_missing: Whether to invoke the catalog installer for missing packages.
        refresh: Whether to run the post-sync index refresh.
        callbacks: Optional progress hooks.

    Returns:
        InstallSummary: Outcome of the run.
    """

    hooks = callbacks or InstallCallbacks()
    wanted = tuple(desired)
    store = StateStore(layout.state_file)
    with EnvironmentLock(layout.lock_file):
        state = store.load()

        installed: tuple[str, ...] = ()
        if install_missing:
            packages = resolve_closure(wanted, catalog.resolve, prefetch=catalog.prefetch)
            installed = tuple(name for name, package in packages.items() if not package.installed)
            if installed:
                if hooks.on_install is not None:
                    hooks.on_install(installed)
                catalog.install(installed)

        synchronizer = EnvironmentSynchronizer(layout, catalog, store, on_progress=hooks.on_progress)
        plan = synchronizer.plan(wanted, state)
        snapshot = catalog.snapshot_id()
        snapshot_changed = bool(state.packages) and snapshot is not None and snapshot != state.catalog_snapshot
        report = synchronizer.apply(plan, state, catalog_snapshot=snapshot)

        refreshed = False
        if refresh and report.state.refresh_pending:
            refresh_environment(layout, build_execution_context(layout), on_command=hooks.on_refresh)
            final_state = report.state.with_flags(refresh_pending=False)
            store.save(final_state)
            report = SyncReport(
                plan=report.plan,
                state=final_state,
                links_created=report.links_created,
                links_removed=report.links_removed,
            )
            refreshed = True

    LOGGER.debug("install finished: changed=%s refreshed=%s", report.changed, refreshed)
    return InstallSummary(
        report=report,
        installed_packages=installed,
        refreshed=refreshed,
        snapshot_changed=snapshot_changed,
    )


__all__ = [
    "InstallCallbacks",
    "InstallSummary",
    "install_environment",
    "open_catalog",
    "resolve_layout",
]
