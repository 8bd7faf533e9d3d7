"""Shared fixtures for the vc-python-builder test-suite."""

from __future__ import annotations

import logging
import pathlib
import subprocess
import zipfile
from typing import Any, Callable

import pytest

from vc_python_builder.workspace import FileManifest, glob_files


class RecordingRunner:
    """Stand-in for ``subprocess.run`` that records every command."""

    def __init__(
        self,
        returncode: int = 0,
        on_call: Callable[[list[str], dict[str, Any]], None] | None = None,
    ) -> None:
        self.returncode = returncode
        self.on_call = on_call
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        self.calls.append((list(cmd), kwargs))
        if self.on_call is not None:
            self.on_call(list(cmd), kwargs)
        return subprocess.CompletedProcess(cmd, self.returncode)

    @property
    def commands(self) -> list[list[str]]:
        return [cmd for cmd, _ in self.calls]


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("vc_python_builder.tests")


@pytest.fixture
def make_files(tmp_path: pathlib.Path) -> Callable[[dict[str, str]], FileManifest]:
    """Write a ``{relpath: content}`` mapping to a source dir and return its manifest."""

    def _make(contents: dict[str, str]) -> FileManifest:
        src = tmp_path / "src"
        for rel, text in contents.items():
            path = src / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return glob_files(src)

    return _make


def touch(path: pathlib.Path, text: str = "") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def fake_tools(cmd: list[str], kwargs: dict[str, Any]) -> None:
    """Produce the files pip and ``manage.py collectstatic`` would write."""

    cwd = pathlib.Path(kwargs["cwd"])
    if cmd[1] == "install":
        if "werkzeug==1.0.1" in cmd:
            touch(cwd / "werkzeug" / "__init__.py", "__version__ = '1.0.1'\n")
            touch(cwd / "Werkzeug-1.0.1.dist-info" / "METADATA")
        if "-r" in cmd:
            touch(cwd / "flask" / "__init__.py")
    elif cmd[1:3] == ["manage.py", "collectstatic"]:
        touch(cwd / "staticfiles" / "app.css", "body {}\n")


def write_project(src: pathlib.Path) -> FileManifest:
    """A small Django-style project with a pre-baked dependency archive."""

    touch(src / "api" / "index.py", "def handler(event, context):\n    return {}\n")
    touch(src / "api" / "requirements.txt", "flask\n")
    touch(src / "requirements.txt", "django\n")
    touch(src / "manage.py", "# django\n")
    touch(src / "node_modules" / "left-pad" / "index.js", "module.exports = 1\n")
    with zipfile.ZipFile(src / "deps-py30.zip", "w") as zf:
        zf.writestr("six.py", "# six\n")
    return glob_files(src)
