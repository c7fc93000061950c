# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Tests for the install workflow and the post-sync refresh."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from tlenv import installs, refresh
from tlenv.catalog import StaticCatalog, TlmgrCatalog
from tlenv.config import STORE_ROOT_ENV, ProjectConfig
from tlenv.errors import EnvironmentLockedError, ExternalToolFailure
from tlenv.execution import build_execution_context
from tlenv.installs import InstallCallbacks, install_environment, open_catalog, resolve_layout
from tlenv.process_utils import SubprocessExecutionError
from tlenv.state import EnvironmentLock, StateStore


@pytest.fixture
def refresh_calls(monkeypatch: pytest.MonkeyPatch) -> list[tuple[tuple[str, ...], dict[str, str]]]:
    """Replace the refresh tools with a recorder."""

    calls: list[tuple[tuple[str, ...], dict[str, str]]] = []

    def fake_run(args, *, options=None):
        calls.append((tuple(args), dict(options.env or {})))
        return subprocess.CompletedProcess(args=list(args), returncode=0, stdout="", stderr="")

    monkeypatch.setattr(refresh, "run_command", fake_run)
    return calls


def test_refresh_runs_tools_against_environment(layout, refresh_calls) -> None:
    seen: list[str] = []

    refresh.refresh_environment(
        layout,
        build_execution_context(layout),
        base_env={"PATH": "/usr/bin"},
        on_command=seen.append,
    )

    assert [command for command, _ in refresh_calls] == list(refresh.REFRESH_COMMANDS)
    assert seen == ["mktexlsr", "fmtutil-sys --missing", "updmap-sys --syncwithtrees", "updmap-sys"]
    env = refresh_calls[0][1]
    assert env["TEXMFSYSVAR"] == str(layout.env_root / "texmf-var")
    assert env["PATH"].startswith(str(layout.env_root / "bin" / layout.platform))
    assert (layout.env_root / "texmf-config").is_dir()
    assert (layout.env_root / "texmf-var").is_dir()


def test_refresh_failure_is_external_tool_failure(layout, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(args, *, options=None):
        raise SubprocessExecutionError(args, 1, "", "fmtutil: format pdflatex failed")

    monkeypatch.setattr(refresh, "run_command", fake_run)

    with pytest.raises(ExternalToolFailure, match="pdflatex failed") as excinfo:
        refresh.refresh_environment(layout, build_execution_context(layout))

    assert excinfo.value.exit_code == 6


def test_install_refreshes_only_after_changes(layout, catalog_factory, basic_records, refresh_calls) -> None:
    catalog = catalog_factory(basic_records.values())

    first = install_environment(layout, ["article"], catalog)
    assert first.refreshed is True
    assert len(refresh_calls) == len(refresh.REFRESH_COMMANDS)
    assert StateStore(layout.state_file).load().refresh_pending is False

    second = install_environment(layout, ["article"], catalog)
    assert second.refreshed is False
    assert second.report.changed is False
    assert len(refresh_calls) == len(refresh.REFRESH_COMMANDS)
    assert not layout.lock_file.exists()


def test_failed_refresh_is_retried_on_next_run(
    layout, catalog_factory, basic_records, monkeypatch: pytest.MonkeyPatch, refresh_calls
) -> None:
    catalog = catalog_factory(basic_records.values())

    def broken(*_args, **_kwargs):
        raise ExternalToolFailure(["mktexlsr"], 1, "boom")

    monkeypatch.setattr(installs, "refresh_environment", broken)
    with pytest.raises(ExternalToolFailure):
        install_environment(layout, ["article"], catalog)
    assert StateStore(layout.state_file).load().refresh_pending is True
    assert not layout.lock_file.exists()

    monkeypatch.setattr(installs, "refresh_environment", refresh.refresh_environment)
    summary = install_environment(layout, ["article"], catalog)

    assert summary.report.changed is False
    assert summary.refreshed is True
    assert StateStore(layout.state_file).load().refresh_pending is False


def test_no_refresh_keeps_flag_pending(layout, catalog_factory, basic_records, refresh_calls) -> None:
    catalog = catalog_factory(basic_records.values())

    summary = install_environment(layout, ["article"], catalog, refresh=False)

    assert summary.refreshed is False
    assert refresh_calls == []
    assert StateStore(layout.state_file).load().refresh_pending is True


def test_missing_packages_are_installed_first(layout, catalog_factory, record_factory, refresh_calls) -> None:
    requested: list[tuple[str, ...]] = []

    class InstallingCatalog(StaticCatalog):
        def install(self, names) -> None:
            requested.append(tuple(names))
            self.invalidate(names)

    records = [
        record_factory("doc", depends=["fonts"], runfiles=["texmf-dist/tex/doc.sty"]),
        record_factory("fonts", installed=False, runfiles=["texmf-dist/fonts/f.tfm"]),
    ]
    catalog_factory(records)
    catalog = InstallingCatalog(records, layout.platform)
    announced: list[tuple[str, ...]] = []

    summary = install_environment(
        layout,
        ["doc"],
        catalog,
        callbacks=InstallCallbacks(on_install=lambda names: announced.append(tuple(names))),
    )

    assert requested == [("fonts",)]
    assert announced == [("fonts",)]
    assert summary.installed_packages == ("fonts",)
    assert summary.report.added == ("doc", "fonts")


def test_missing_packages_without_installer(layout, catalog_factory, record_factory) -> None:
    catalog = catalog_factory([record_factory("fonts", installed=False, runfiles=["texmf-dist/fonts/f.tfm"])])

    with pytest.raises(ExternalToolFailure):
        install_environment(layout, ["fonts"], catalog)

    summary = install_environment(layout, ["fonts"], catalog, install_missing=False, refresh=False)
    assert summary.installed_packages == ()


def test_install_refuses_locked_environment(layout, catalog_factory, basic_records) -> None:
    catalog = catalog_factory(basic_records.values())

    with EnvironmentLock(layout.lock_file):
        with pytest.raises(EnvironmentLockedError):
            install_environment(layout, ["article"], catalog)

    assert not layout.state_file.exists()


def test_snapshot_change_is_reported(layout, catalog_factory, basic_records, refresh_calls) -> None:
    class VersionedCatalog(StaticCatalog):
        revision = "rev-1"

        def snapshot_id(self) -> str | None:
            return self.revision

    catalog_factory(basic_records.values())
    catalog = VersionedCatalog(basic_records.values(), layout.platform)
    assert install_environment(layout, ["article"], catalog).snapshot_changed is False

    catalog.revision = "rev-2"
    summary = install_environment(layout, ["article"], catalog)

    assert summary.snapshot_changed is True
    assert StateStore(layout.state_file).load().catalog_snapshot == "rev-2"


def test_resolve_layout_prefers_configuration(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(installs, "probe_platform", lambda: pytest.fail("platform should come from config"))
    config = ProjectConfig(store_root=tmp_path / "configured", platform="aarch64-linux")

    layout = resolve_layout(tmp_path, config, environ={STORE_ROOT_ENV: str(tmp_path / "ignored")})

    assert layout.store_root == (tmp_path / "configured").resolve()
    assert layout.platform == "aarch64-linux"


def test_resolve_layout_falls_back_to_environment_and_probes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(installs, "probe_platform", lambda: "x86_64-linux")
    monkeypatch.setattr(installs, "probe_store_root", lambda: tmp_path / "probed")

    from_env = resolve_layout(tmp_path, ProjectConfig(), environ={STORE_ROOT_ENV: str(tmp_path / "env")})
    probed = resolve_layout(tmp_path, ProjectConfig(), environ={})

    assert from_env.store_root == (tmp_path / "env").resolve()
    assert probed.store_root == (tmp_path / "probed").resolve()
    assert probed.platform == "x86_64-linux"


def test_open_catalog_selects_backend(layout, tmp_path: Path) -> None:
    assert isinstance(open_catalog(layout, ProjectConfig()), TlmgrCatalog)

    catalog_file = tmp_path / "catalog.json"
    catalog_file.write_text('[{"name": "pkg"}]', encoding="utf-8")
    static = open_catalog(layout, ProjectConfig(catalog_file=catalog_file))
    assert static.resolve("pkg").name == "pkg"
