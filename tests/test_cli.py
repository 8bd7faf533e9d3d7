"""Tests for the command line interface."""

from __future__ import annotations

import json
import pathlib
import zipfile

import pytest

from tests.conftest import RecordingRunner, fake_tools, write_project
from vc_python_builder import cli, install, runtime


@pytest.fixture(autouse=True)
def fake_host(monkeypatch: pytest.MonkeyPatch) -> RecordingRunner:
    runner = RecordingRunner(on_call=fake_tools)
    monkeypatch.setattr(install.subprocess, "run", runner)
    monkeypatch.setattr(runtime.shutil, "which", lambda name: f"/usr/bin/{name}" if "3.11" in name else None)
    return runner


def test_build_writes_json_and_zip(tmp_path: pathlib.Path) -> None:
    work = tmp_path / "work"
    write_project(work)
    out_json = tmp_path / "out" / "artifact.json"
    out_zip = tmp_path / "out" / "artifact.zip"

    code = cli.main(
        ["build", str(work), "--entrypoint", "api/index.py", "-o", str(out_json), "--zip", str(out_zip), "-q"]
    )

    assert code == 0
    data = json.loads(out_json.read_text(encoding="utf-8"))
    assert data["handler"] == "vc__handler__python.vc_handler"
    assert data["runtime"] == "python3.11"
    assert data["environment"] == {}
    assert "vc__handler__python.py" in data["files"]
    with zipfile.ZipFile(out_zip) as zf:
        assert sorted(zf.namelist()) == sorted(data["files"])


def test_build_prints_json_to_stdout(tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]) -> None:
    work = tmp_path / "work"
    write_project(work)
    assert cli.main(["build", str(work), "-e", "api/index.py", "--exclude-files", "staticfiles/**", "-q"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert "staticfiles/app.css" not in data["files"]
    assert "node_modules/left-pad/index.js" in data["files"]


def test_dev_build_does_not_restage_its_own_cache(tmp_path: pathlib.Path) -> None:
    work = tmp_path / "work"
    write_project(work)
    out_json = tmp_path / "artifact.json"
    for _ in range(2):
        assert cli.main(["build", str(work), "-e", "api/index.py", "--dev", "-o", str(out_json), "-q"]) == 0
    data = json.loads(out_json.read_text(encoding="utf-8"))
    assert data["runtime"] == "python3"
    assert not any(rel.startswith(".now/") for rel in data["files"])


def test_build_failure_returns_1(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    work = tmp_path / "work"
    write_project(work)
    monkeypatch.setattr(runtime.shutil, "which", lambda name: None)
    assert cli.main(["build", str(work), "-e", "api/index.py", "-q"]) == 1


def test_missing_workspace_returns_1(tmp_path: pathlib.Path) -> None:
    assert cli.main(["build", str(tmp_path / "nope"), "-e", "api/index.py", "-q"]) == 1
