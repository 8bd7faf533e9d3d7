"""Request routing predicate used by the execution host."""

import posixpath
from typing import Container


def should_serve(*, entrypoint: str, files: Container[str], request_path: str) -> bool:
    """Decide whether this function should serve ``request_path``.

    ``api/index.py`` serves both ``api/index.py`` and ``api``.

    :param entrypoint: Entrypoint relpath.
    :param files: Workspace relpaths (anything supporting ``in``).
    :param request_path: Request path without a leading slash.
    :returns: ``True`` if the entrypoint handles the request.
    """

    if request_path.endswith("/") is True:
        request_path = request_path[:-1]
    entrypoint = entrypoint.replace("\\", "/")

    if entrypoint not in files:
        return False
    if entrypoint == request_path:
        return True

    directory, filename = posixpath.split(entrypoint)
    stem: str = posixpath.splitext(filename)[0]
    return stem == "index" and directory == request_path
