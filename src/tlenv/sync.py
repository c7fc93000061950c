# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Reconcile the environment link tree with the dependency closure.

A run is split into a pure planning phase and an apply phase. Planning resolves the
closure, diffs it against the persisted state and validates every link that will be
created; nothing on disk changes if planning fails. Applying removes obsolete packages
first and then adds new ones, committing the state after each package so an
interrupted run resumes by simply planning again. Links of a package that was
being added when the run stopped are recorded as pending and removed by the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Literal

from . import links as link_ops
from .catalog.resolver import PackageResolver
from .closure import resolve_closure
from .errors import TlenvError
from .paths import EnvironmentLayout
from .state import EnvironmentState, LinkEntry, StateStore

LOGGER = logging.getLogger(__name__)

SyncAction = Literal["add", "remove"]
ProgressCallback = Callable[[SyncAction, str], None]


@dataclass(frozen=True, slots=True)
class SyncPlan:
    """Validated description of the mutations a run will perform.

    Attributes:
        closure: Every package required by the configuration.
        to_add: Packages whose links must be created, sorted by name.
        to_remove: Packages whose links must be deleted, sorted by name.
        stale: Packages present in both sets because their catalog manifest changed.
        links: Planned entries for every package in ``to_add``.
        abandoned: Packages whose linking was interrupted; their leftovers are removed.
    """

    closure: frozenset[str]
    to_add: tuple[str, ...]
    to_remove: tuple[str, ...]
    stale: tuple[str, ...] = ()
    links: Mapping[str, tuple[LinkEntry, ...]] = field(default_factory=dict)
    abandoned: tuple[str, ...] = ()

    @property
    def is_noop(self) -> bool:
        """Return ``True`` when the environment already matches the closure."""

        return not self.to_add and not self.to_remove and not self.abandoned


@dataclass(frozen=True, slots=True)
class SyncReport:
    """Outcome of a synchronisation run."""

    plan: SyncPlan
    state: EnvironmentState
    links_created: int = 0
    links_removed: int = 0

    @property
    def added(self) -> tuple[str, ...]:
        """Return packages newly linked (stale packages excluded)."""

        return tuple(name for name in self.plan.to_add if name not in self.plan.stale)

    @property
    def removed(self) -> tuple[str, ...]:
        """Return packages unlinked (stale packages excluded)."""

        return tuple(name for name in self.plan.to_remove if name not in self.plan.stale)

    @property
    def relinked(self) -> tuple[str, ...]:
        """Return packages removed and re-added because their manifest changed."""

        return self.plan.stale

    @property
    def changed(self) -> bool:
        """Return ``True`` when the run mutated the environment."""

        return not self.plan.is_noop


class EnvironmentSynchronizer:
    """Drive plan-then-apply reconciliation for one environment.

    Only one synchroniser may operate on an environment at a time; callers hold an
    :class:`~tlenv.state.EnvironmentLock` around :meth:`sync`.
    """

    def __init__(
        self,
        layout: EnvironmentLayout,
        resolver: PackageResolver,
        store: StateStore | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._layout = layout
        self._resolver = resolver
        self._store = store or StateStore(layout.state_file)
        self._on_progress = on_progress

    def plan(self, desired: Iterable[str], state: EnvironmentState) -> SyncPlan:
        """Compute and validate the mutations needed to reach the closure of ``desired``.

        Args:
            desired: Package identities requested by the configuration.
            state: Currently materialised state.

        Returns:
            SyncPlan: Validated plan.

        Raises:
            UnknownPackageError: If the closure references a package the catalog lacks.
            LinkTargetError: If a manifest entry would link outside the store.
            ConflictError: If two packages claim a path with different targets.
        """

        prefetch = getattr(self._resolver, "prefetch", None)
        packages = resolve_closure(desired, self._resolver.resolve, prefetch=prefetch)
        closure = frozenset(packages)
        current = state.names()

        planned = {name: link_ops.plan_package_links(package, self._layout) for name, package in packages.items()}
        stale = frozenset(name for name in closure & current if planned[name] != state.packages[name])
        to_add = tuple(sorted((closure - current) | stale))
        to_remove = tuple(sorted((current - closure) | stale))

        remaining = {name: entries for name, entries in state.packages.items() if name not in to_remove}
        additions = {name: planned[name] for name in to_add}
        link_ops.detect_conflicts(additions, remaining)

        LOGGER.debug(
            "closure=%d add=%d remove=%d stale=%d",
            len(closure),
            len(to_add),
            len(to_remove),
            len(stale),
        )
        return SyncPlan(
            closure=closure,
            to_add=to_add,
            to_remove=to_remove,
            stale=tuple(sorted(stale)),
            links=additions,
            abandoned=tuple(sorted(state.pending)),
        )

    def apply(
        self,
        plan: SyncPlan,
        state: EnvironmentState,
        *,
        catalog_snapshot: str | None = None,
    ) -> SyncReport:
        """Apply ``plan`` to the filesystem, committing state after every package.

        Args:
            plan: Plan produced by :meth:`plan` against ``state``.
            state: State the plan was computed from.
            catalog_snapshot: Identifier of the catalog revision, recorded in the state.

        Returns:
            SyncReport: Summary of the applied mutations and the final state.

        Raises:
            LinkPermissionError: If the platform refuses to create a link.
            EnvironmentIOError: For other filesystem failures.
        """

        created = 0
        deleted = 0
        snapshot_changed = catalog_snapshot is not None and catalog_snapshot != state.catalog_snapshot
        if plan.is_noop:
            if snapshot_changed:
                state = state.with_flags(catalog_snapshot=catalog_snapshot)
                self._store.save(state)
            return SyncReport(plan=plan, state=state)

        state = state.with_flags(catalog_snapshot=catalog_snapshot, refresh_pending=True)

        for name in plan.abandoned:
            deleted += self._discard_pending(name, state)
            state = state.without_pending(name)
            self._store.save(state)

        for name in plan.to_remove:
            deleted += self._remove_package(name, state)
            state = state.without_package(name)
            self._store.save(state)
            self._notify("remove", name)

        for name in plan.to_add:
            state = state.with_pending(name, plan.links[name])
            self._store.save(state)
            created += self._add_package(name, plan.links[name], state)
            state = state.commit_pending(name)
            self._store.save(state)
            self._notify("add", name)

        return SyncReport(plan=plan, state=state, links_created=created, links_removed=deleted)

    def sync(self, desired: Iterable[str], *, catalog_snapshot: str | None = None) -> SyncReport:
        """Load state, plan against ``desired`` and apply the plan."""

        state = self._store.load()
        plan = self.plan(desired, state)
        return self.apply(plan, state, catalog_snapshot=catalog_snapshot)

    def _remove_package(self, name: str, state: EnvironmentState) -> int:
        """Delete links owned exclusively by ``name``; shared links stay in place."""

        shared = {
            link_ops.path_key(entry.path)
            for other, entries in state.packages.items()
            if other != name
            for entry in entries
        }
        count = self._unlink(name, state.packages.get(name, ()), shared)
        LOGGER.debug("removed %d link(s) for %s", count, name)
        return count

    def _discard_pending(self, name: str, state: EnvironmentState) -> int:
        """Delete links left behind by an interrupted attempt to add ``name``."""

        committed = {link_ops.path_key(entry.path) for entries in state.packages.values() for entry in entries}
        count = self._unlink(name, state.pending.get(name, ()), committed)
        if count:
            LOGGER.warning("removed %d leftover link(s) of interrupted package %s", count, name)
        return count

    def _unlink(self, name: str, entries: Iterable[LinkEntry], keep: set[str]) -> int:
        removed_paths = []
        count = 0
        for entry in entries:
            if link_ops.path_key(entry.path) in keep:
                continue
            if link_ops.remove(name, entry, self._layout):
                count += 1
            removed_paths.append(self._layout.env_path(entry.relative_path))
        link_ops.prune_empty_dirs(removed_paths, self._layout.env_root)
        return count

    def _add_package(self, name: str, entries: Iterable[LinkEntry], state: EnvironmentState) -> int:
        """Create every link of ``name`` not already provided by a committed package.

        When a link cannot be created, the links made so far for ``name`` are removed
        again before the error propagates.
        """

        committed = {
            link_ops.path_key(entry.path) for package_entries in state.packages.values() for entry in package_entries
        }
        created: list[LinkEntry] = []
        count = 0
        try:
            for entry in entries:
                if link_ops.path_key(entry.path) in committed:
                    continue
                created.append(entry)
                if link_ops.materialize(name, entry, self._layout):
                    count += 1
        except TlenvError:
            LOGGER.debug("rolling back %d link(s) of %s", len(created), name)
            self._unlink(name, created, set())
            self._store.save(state.without_pending(name))
            raise
        LOGGER.debug("created %d link(s) for %s", count, name)
        return count

    def _notify(self, action: SyncAction, name: str) -> None:
        if self._on_progress is not None:
            self._on_progress(action, name)


__all__ = [
    "EnvironmentSynchronizer",
    "ProgressCallback",
    "SyncPlan",
    "SyncReport",
]
