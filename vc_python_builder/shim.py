"""Handler shim synthesis.

The execution host always invokes ``vc__handler__python.vc_handler``. The shim
written here is the only code that knows where the user's entrypoint lives.
"""

import logging
import pathlib
import textwrap

from vc_python_builder.errors import ShimError

MODULE_NAME_PLACEHOLDER: str = "__VC_HANDLER_MODULE_NAME"
ENTRYPOINT_PLACEHOLDER: str = "__VC_HANDLER_ENTRYPOINT"

# Not "server.py"/"handler.py": users are free to have those.
HANDLER_MODULE: str = "vc__handler__python"
HANDLER_FUNCTION: str = "vc_handler"
HANDLER_FILENAME: str = f"{HANDLER_MODULE}.py"

SOURCE_SUFFIX: str = ".py"


def module_name(entrypoint: str) -> str:
    """Derive the dotted module name of an entrypoint.

    :param entrypoint: Entrypoint relpath (e.g. ``api/sub/handler.py``).
    :returns: Module name (e.g. ``api.sub.handler``).
    """

    name: str = entrypoint.replace("/", ".")
    if name.endswith(SOURCE_SUFFIX) is True:
        name = name[: -len(SOURCE_SUFFIX)]
    return name


def entrypoint_reference(entrypoint: str, *, is_dev: bool) -> str:
    """Return the entrypoint path the shim should load.

    Dev builds may see the source file under a name without the ``.py``
    suffix; the shim must still reference the real file.

    :param entrypoint: Entrypoint relpath.
    :param is_dev: Whether this is a dev build.
    :returns: Adjusted entrypoint path.
    """

    if is_dev is True and entrypoint.endswith(SOURCE_SUFFIX) is False:
        return f"{entrypoint}{SOURCE_SUFFIX}"
    return entrypoint


def load_template(path: pathlib.Path | None = None) -> str:
    """Load the shim template.

    :param path: Optional template file; the built-in template is used when omitted.
    :returns: Template source.
    :raises ShimError: If the template file cannot be read.
    """

    if path is None:
        return HANDLER_TEMPLATE
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ShimError(f"Cannot read handler template {path}: {e}") from e


def synthesize(template_source: str, *, entrypoint: str, is_dev: bool) -> str:
    """Render the shim for an entrypoint.

    :param template_source: Template containing both placeholders.
    :param entrypoint: Entrypoint relpath.
    :param is_dev: Whether this is a dev build.
    :returns: Rendered shim source.
    :raises ShimError: If the template is missing a placeholder.
    """

    for marker in (MODULE_NAME_PLACEHOLDER, ENTRYPOINT_PLACEHOLDER):
        if marker not in template_source:
            raise ShimError(f"Handler template missing {marker} placeholder.")

    rendered: str = template_source
    rendered = rendered.replace(MODULE_NAME_PLACEHOLDER, module_name(entrypoint))
    rendered = rendered.replace(ENTRYPOINT_PLACEHOLDER, entrypoint_reference(entrypoint, is_dev=is_dev))
    return rendered


def write_handler(*, work_path: pathlib.Path, source: str, logger: logging.Logger) -> pathlib.Path:
    """Write the rendered shim into the workspace.

    :param work_path: Workspace.
    :param source: Rendered shim source.
    :param logger: Logger for progress output.
    :returns: Path of the written shim.
    :raises ShimError: If the file cannot be written.
    """

    out_path: pathlib.Path = work_path / HANDLER_FILENAME
    try:
        out_path.write_text(source, encoding="utf-8")
    except OSError as e:
        raise ShimError(f"Cannot write handler shim {out_path}: {e}") from e
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"vc-python-builder: wrote {out_path} ({len(source)} chars)")
    return out_path


HANDLER_TEMPLATE: str = textwrap.dedent(
    r'''
    # This file was generated by vc-python-builder.
    #
    # It loads the user's entrypoint (__VC_HANDLER_ENTRYPOINT) as the module
    # __VC_HANDLER_MODULE_NAME and exposes ``vc_handler`` to the execution host.

    import base64
    import importlib.util
    import io
    import json
    import os
    import sys
    from urllib.parse import unquote, urlsplit


    _HERE: str = os.path.dirname(os.path.abspath(__file__))
    if _HERE not in sys.path:
        sys.path.insert(0, _HERE)

    _spec = importlib.util.spec_from_file_location(
        "__VC_HANDLER_MODULE_NAME",
        os.path.join(_HERE, "__VC_HANDLER_ENTRYPOINT"),
    )
    if _spec is None or _spec.loader is None:
        raise RuntimeError("Unable to load entrypoint __VC_HANDLER_ENTRYPOINT")
    _module = importlib.util.module_from_spec(_spec)
    sys.modules["__VC_HANDLER_MODULE_NAME"] = _module
    _spec.loader.exec_module(_module)

    _wsgi_app = getattr(_module, "app", None) or getattr(_module, "application", None)
    _user_handler = getattr(_module, "handler", None)


    def _wsgi_environ(payload: dict, body: bytes, headers) -> dict:
        """Build a WSGI environ from a request payload."""

        url = urlsplit(payload["path"])
        environ: dict = {
            "CONTENT_LENGTH": str(len(body)),
            "CONTENT_TYPE": headers.get("content-type", ""),
            "PATH_INFO": unquote(url.path),
            "QUERY_STRING": url.query,
            "REMOTE_ADDR": headers.get("x-real-ip", headers.get("x-forwarded-for", "")),
            "REQUEST_METHOD": payload["method"],
            "SCRIPT_NAME": "",
            "SERVER_NAME": headers.get("host", "lambda"),
            "SERVER_PORT": headers.get("x-forwarded-port", "80"),
            "SERVER_PROTOCOL": "HTTP/1.1",
            "wsgi.errors": sys.stderr,
            "wsgi.input": io.BytesIO(body),
            "wsgi.multiprocess": False,
            "wsgi.multithread": False,
            "wsgi.run_once": False,
            "wsgi.url_scheme": headers.get("x-forwarded-proto", "http"),
            "wsgi.version": (1, 0),
        }
        for key, value in headers.items():
            name: str = "HTTP_" + key.upper().replace("-", "_")
            if name not in ("HTTP_CONTENT_TYPE", "HTTP_CONTENT_LENGTH"):
                environ[name] = value
        return environ


    if _wsgi_app is not None:
        from werkzeug.datastructures import Headers
        from werkzeug.wrappers import Response

        def vc_handler(event, context):
            payload: dict = json.loads(event["body"])
            headers = Headers(payload.get("headers") or {})
            body = payload.get("body") or b""
            if payload.get("encoding") == "base64":
                body = base64.b64decode(body)
            if isinstance(body, str):
                body = body.encode("utf-8")

            response = Response.from_app(_wsgi_app, _wsgi_environ(payload, body, headers))
            return {
                "statusCode": response.status_code,
                "headers": dict(response.headers),
                "body": base64.b64encode(response.get_data()).decode("ascii"),
                "encoding": "base64",
            }

    elif callable(_user_handler):

        def vc_handler(event, context):
            return _user_handler(event, context)

    else:
        raise RuntimeError(
            "Entrypoint __VC_HANDLER_ENTRYPOINT must define a WSGI `app`/`application` "
            "or a callable `handler`."
        )
    '''
).lstrip()
