"""Tests for qbridge.pty.environment (build, EnvironmentSpec)."""

from __future__ import annotations

import os

import pytest

from qbridge.pty import environment
from qbridge.pty.environment import EnvironmentSpec


class TestBuild:
    def test_existing_path_kept_in_order(self) -> None:
        base = {"PATH": os.pathsep.join(["/z", "/a", "/m"])}
        spec = environment.build(base, home="/home/u")
        assert spec.search_path_entries[:3] == ("/z", "/a", "/m")

    def test_extra_directories_appended(self) -> None:
        spec = environment.build({"PATH": "/z"}, home="/home/u")
        expected = environment.extra_search_paths("/home/u")
        assert list(spec.search_path_entries[1:]) == expected

    def test_caller_extras_come_last(self) -> None:
        spec = environment.build({"PATH": "/z"}, extra=["/opt/mcp"], home="/home/u")
        assert spec.search_path_entries[-1] == "/opt/mcp"

    def test_missing_path_variable(self) -> None:
        spec = environment.build({}, home="/home/u")
        assert spec.search_path_entries == tuple(environment.extra_search_paths("/home/u"))

    def test_home_is_default_working_directory(self) -> None:
        spec = environment.build({}, home="/home/u")
        assert spec.working_directory == "/home/u"
        assert spec.home == "/home/u"

    def test_cwd_override(self) -> None:
        spec = environment.build({}, home="/home/u", cwd="/srv/work")
        assert spec.working_directory == "/srv/work"
        assert spec.home == "/home/u"

    def test_deterministic(self) -> None:
        base = {"PATH": "/a", "LANG": "C"}
        assert environment.build(base, home="/h") == environment.build(base, home="/h")

    def test_base_env_snapshot_not_shared(self) -> None:
        base = {"PATH": "/a"}
        spec = environment.build(base, home="/h")
        base["PATH"] = "/changed"
        assert spec.base_env["PATH"] == "/a"

    def test_inherited_home_override_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(environment, "resolve_home", lambda: "/real/home")
        spec = environment.build({"HOME": "/weird/place", "PATH": ""})
        assert spec.to_env()["HOME"] == "/real/home"


class TestEnvironmentSpec:
    def test_frozen(self) -> None:
        spec = EnvironmentSpec(working_directory="/w", home="/h", search_path_entries=())
        with pytest.raises(AttributeError):
            spec.home = "/other"  # type: ignore[misc]

    def test_to_env_pins_home_and_path(self) -> None:
        spec = EnvironmentSpec(
            working_directory="/w",
            home="/h",
            search_path_entries=("/a", "/b"),
            base_env={"HOME": "/elsewhere", "LANG": "C"},
        )
        env = spec.to_env()
        assert env["HOME"] == "/h"
        assert env["USERPROFILE"] == "/h"
        assert env["PATH"] == os.pathsep.join(["/a", "/b"])
        assert env["LANG"] == "C"

    def test_to_env_overrides(self) -> None:
        spec = EnvironmentSpec(working_directory="/w", home="/h", search_path_entries=())
        env = spec.to_env({"TERM": "xterm-256color"})
        assert env["TERM"] == "xterm-256color"
