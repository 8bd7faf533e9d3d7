"""Static asset collection (``manage.py collectstatic``)."""

import logging
import os
import pathlib
import subprocess
import time
from typing import Mapping

from vc_python_builder.errors import StaticsError

MANAGEMENT_SCRIPT: str = "manage.py"

# No real database is reachable at build time.
BUILD_ENV_OVERRIDES: dict[str, str] = {"DATABASE_URL": "empty"}


def collect_statics_env(*, work_path: pathlib.Path, base_env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Build the environment for the collectstatic subprocess.

    :param work_path: Workspace (becomes ``PYTHONPATH``).
    :param base_env: Environment to extend; defaults to ``os.environ``.
    :returns: A new environment mapping.
    """

    env: dict[str, str] = dict(os.environ if base_env is None else base_env)
    env["PYTHONPATH"] = str(work_path)
    env.update(BUILD_ENV_OVERRIDES)
    return env


def collect_statics(*, python_path: str, work_path: pathlib.Path, logger: logging.Logger) -> None:
    """Run ``manage.py collectstatic --noinput`` inside the workspace.

    :param python_path: Interpreter to run the management script with.
    :param work_path: Workspace.
    :param logger: Logger for progress output.
    :raises StaticsError: If the script is missing or exits non-zero.
    """

    script: pathlib.Path = work_path / MANAGEMENT_SCRIPT
    if script.is_file() is False:
        raise StaticsError(f"{MANAGEMENT_SCRIPT} not found in workspace: {work_path}")

    cmd: list[str] = [python_path, MANAGEMENT_SCRIPT, "collectstatic", "--noinput"]
    env: dict[str, str] = collect_statics_env(work_path=work_path)
    logger.info("vc-python-builder: collecting static assets")
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"vc-python-builder: running {' '.join(cmd)} in {work_path}")

    t0: float = time.perf_counter()
    try:
        proc = subprocess.run(cmd, cwd=work_path, env=env, check=False)
    except OSError as e:
        raise StaticsError(f"Could not start {' '.join(cmd)}: {e}") from e
    if proc.returncode != 0:
        raise StaticsError(f"collectstatic failed (exit={proc.returncode}): {' '.join(cmd)}")
    t1: float = time.perf_counter()
    logger.info(f"vc-python-builder: collected static assets in {t1 - t0:.2f}s")
