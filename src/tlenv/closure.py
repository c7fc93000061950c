# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Transitive dependency closure over catalog metadata."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .catalog.models import Package
from .errors import UnknownPackageError

Resolve = Callable[[str], Package]
Prefetch = Callable[[Iterable[str]], None]


def resolve_closure(
    desired: Iterable[str],
    resolve: Resolve,
    *,
    prefetch: Prefetch | None = None,
) -> dict[str, Package]:
    """Resolve every package reachable from ``desired``.

    The traversal is breadth-first over whole frontiers so a batching catalog can
    answer each level with a single query. Cycles are harmless: a package is visited
    at most once.

    Args:
        desired: Root package identities.
        resolve: Callable returning metadata for one package.
        prefetch: Optional hook warming the resolver for a whole frontier.

    Returns:
        dict[str, Package]: Resolved packages keyed by name, sorted by name.

    Raises:
        UnknownPackageError: If any root or dependency is missing from the catalog.
    """

    resolved: dict[str, Package] = {}
    referrers: dict[str, str] = {}
    frontier = set(desired)
    while frontier:
        if prefetch is not None:
            prefetch(frontier)
        discovered: set[str] = set()
        for name in sorted(frontier):
            try:
                package = resolve(name)
            except UnknownPackageError as exc:
                parent = referrers.get(name)
                if parent is None or exc.required_by is not None:
                    raise
                raise UnknownPackageError(name, required_by=parent) from exc
            resolved[name] = package
            for dependency in sorted(package.dependencies):
                if dependency in resolved or dependency in frontier:
                    continue
                referrers.setdefault(dependency, name)
                discovered.add(dependency)
        frontier = discovered
    return dict(sorted(resolved.items()))


def compute_closure(
    desired: Iterable[str],
    resolve: Resolve,
    *,
    prefetch: Prefetch | None = None,
) -> frozenset[str]:
    """Return the identities reachable from ``desired``, inclusive.

    Args:
        desired: Root package identities.
        resolve: Callable returning metadata for one package.
        prefetch: Optional hook warming the resolver for a whole frontier.

    Returns:
        frozenset[str]: Closure of ``desired`` under the dependency relation.
    """

    return frozenset(resolve_closure(desired, resolve, prefetch=prefetch))


__all__ = ["compute_closure", "resolve_closure"]
