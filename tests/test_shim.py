"""Tests for handler shim synthesis."""

from __future__ import annotations

import base64
import importlib.util
import json
import logging
import pathlib
import sys
from typing import Any

import pytest

from vc_python_builder import shim
from vc_python_builder.errors import ShimError


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("entrypoint", "expected"),
    [
        ("index.py", "index"),
        ("api/index.py", "api.index"),
        ("api/sub/handler.py", "api.sub.handler"),
        ("api/handler", "api.handler"),
        ("api/my.py.py", "api.my.py"),
    ],
)
def test_module_name(entrypoint: str, expected: str) -> None:
    assert shim.module_name(entrypoint) == expected


def test_dev_build_appends_missing_suffix() -> None:
    assert shim.entrypoint_reference("api/handler", is_dev=True) == "api/handler.py"
    assert shim.entrypoint_reference("api/handler.py", is_dev=True) == "api/handler.py"


def test_non_dev_build_keeps_entrypoint_unchanged() -> None:
    assert shim.entrypoint_reference("api/handler", is_dev=False) == "api/handler"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def test_substitution_is_global() -> None:
    template = (
        "a = '__VC_HANDLER_MODULE_NAME'\n"
        "b = '__VC_HANDLER_ENTRYPOINT'\n"
        "c = '__VC_HANDLER_MODULE_NAME'\n"
        "d = '__VC_HANDLER_ENTRYPOINT'\n"
    )
    rendered = shim.synthesize(template, entrypoint="api/index.py", is_dev=False)
    assert rendered == "a = 'api.index'\nb = 'api/index.py'\nc = 'api.index'\nd = 'api/index.py'\n"


def test_dev_rendering_references_real_source_file() -> None:
    rendered = shim.synthesize(shim.HANDLER_TEMPLATE, entrypoint="api/handler", is_dev=True)
    assert '"api/handler.py"' in rendered
    assert '"api.handler"' in rendered


def test_builtin_template_renders_to_valid_python() -> None:
    rendered = shim.synthesize(shim.HANDLER_TEMPLATE, entrypoint="api/index.py", is_dev=False)
    assert shim.MODULE_NAME_PLACEHOLDER not in rendered
    assert shim.ENTRYPOINT_PLACEHOLDER not in rendered
    compile(rendered, shim.HANDLER_FILENAME, "exec")


@pytest.mark.parametrize("template", ["only __VC_HANDLER_MODULE_NAME", "only __VC_HANDLER_ENTRYPOINT", ""])
def test_template_missing_placeholder_is_rejected(template: str) -> None:
    with pytest.raises(ShimError, match="placeholder"):
        shim.synthesize(template, entrypoint="api/index.py", is_dev=False)


def test_load_template_default_and_file(tmp_path: pathlib.Path) -> None:
    assert shim.load_template() == shim.HANDLER_TEMPLATE
    path = tmp_path / "vc_init.py"
    path.write_text("x = '__VC_HANDLER_MODULE_NAME' '__VC_HANDLER_ENTRYPOINT'\n", encoding="utf-8")
    assert shim.load_template(path).startswith("x = ")


def test_load_template_missing_file_is_fatal(tmp_path: pathlib.Path) -> None:
    with pytest.raises(ShimError, match="Cannot read handler template"):
        shim.load_template(tmp_path / "missing.py")


def test_write_handler_uses_collision_safe_name(tmp_path: pathlib.Path, logger: logging.Logger) -> None:
    (tmp_path / "server.py").write_text("user = True\n", encoding="utf-8")
    out = shim.write_handler(work_path=tmp_path, source="shim = True\n", logger=logger)
    assert out == tmp_path / "vc__handler__python.py"
    assert (tmp_path / "server.py").read_text(encoding="utf-8") == "user = True\n"


def test_write_handler_failure_is_fatal(tmp_path: pathlib.Path, logger: logging.Logger) -> None:
    with pytest.raises(ShimError, match="Cannot write handler shim"):
        shim.write_handler(work_path=tmp_path / "missing", source="", logger=logger)


# ---------------------------------------------------------------------------
# Running the rendered shim
# ---------------------------------------------------------------------------


def _load_rendered_shim(work: pathlib.Path, entrypoint: str, monkeypatch: pytest.MonkeyPatch) -> Any:
    rendered = shim.synthesize(shim.HANDLER_TEMPLATE, entrypoint=entrypoint, is_dev=False)
    path = work / shim.HANDLER_FILENAME
    path.write_text(rendered, encoding="utf-8")

    monkeypatch.setattr(sys, "path", list(sys.path))
    monkeypatch.setitem(sys.modules, shim.module_name(entrypoint), None)
    spec = importlib.util.spec_from_file_location(shim.HANDLER_MODULE, path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


def test_shim_forwards_to_plain_handler(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "api").mkdir()
    (tmp_path / "api" / "index.py").write_text(
        "def handler(event, context):\n    return {'statusCode': 204, 'seen': event['body']}\n",
        encoding="utf-8",
    )
    module = _load_rendered_shim(tmp_path, "api/index.py", monkeypatch)
    assert module.vc_handler({"body": "{}"}, None) == {"statusCode": 204, "seen": "{}"}


def test_shim_rejects_entrypoint_without_handler(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "index.py").write_text("x = 1\n", encoding="utf-8")
    with pytest.raises(RuntimeError, match="must define a WSGI"):
        _load_rendered_shim(tmp_path, "index.py", monkeypatch)


def test_shim_drives_wsgi_app(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    pytest.importorskip("werkzeug")
    (tmp_path / "api").mkdir()
    (tmp_path / "api" / "index.py").write_text(
        "def app(environ, start_response):\n"
        "    body = (environ['REQUEST_METHOD'] + ' ' + environ['PATH_INFO'] + '?' + environ['QUERY_STRING']"
        " + ' ' + environ['wsgi.input'].read().decode()).encode()\n"
        "    start_response('200 OK', [('Content-Type', 'text/plain'), ('X-Host', environ['HTTP_HOST'])])\n"
        "    return [body]\n",
        encoding="utf-8",
    )
    module = _load_rendered_shim(tmp_path, "api/index.py", monkeypatch)

    payload = {
        "method": "POST",
        "path": "/api/hello%20world?x=1",
        "headers": {"host": "example.com", "content-type": "text/plain"},
        "body": base64.b64encode(b"ping").decode("ascii"),
        "encoding": "base64",
    }
    result = module.vc_handler({"body": json.dumps(payload)}, None)

    assert result["statusCode"] == 200
    assert result["encoding"] == "base64"
    assert result["headers"]["X-Host"] == "example.com"
    assert base64.b64decode(result["body"]) == b"POST /api/hello world?x=1 ping"
