"""Dependency installation.

Everything is installed with ``pip install --target .`` run from inside the
workspace, so the workspace root doubles as the function's ``site-packages``.
"""

import hashlib
import logging
import os
import pathlib
import re
import shutil
import subprocess
import time
import zipfile

from vc_python_builder.errors import ArchiveError, InstallError
from vc_python_builder.runtime import RuntimeDescriptor

BASELINE_DEPENDENCY: tuple[str, str] = ("werkzeug", "1.0.1")

REQUIREMENTS_FILENAME: str = "requirements.txt"

DEPENDENCY_ARCHIVE_FILENAME: str = "deps-py30.zip"

# Dev-build bookkeeping; never shipped in the artifact.
REQUIREMENTS_MARKER: str = ".vc_requirements.sha256"

_DIST_INFO_SUFFIX: str = ".dist-info"


def _sha256_file(path: pathlib.Path) -> str:
    """Hash a file with SHA-256.

    :param path: File to hash.
    :returns: Hex digest.
    """

    h = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            chunk: bytes = f.read(1024 * 1024)
            if len(chunk) == 0:
                break
            h.update(chunk)
    return h.hexdigest()


def _canonical_name(name: str) -> str:
    # PEP 503 normalization, with dist-info's underscore spelling.
    return re.sub(r"[-_.]+", "_", name).lower()


def _pip_install(
    *,
    runtime: RuntimeDescriptor,
    work_path: pathlib.Path,
    args: list[str],
    logger: logging.Logger,
) -> None:
    """Run ``pip install --target .`` inside the workspace.

    :param runtime: Resolved runtime (its pip is used).
    :param work_path: Workspace (install destination).
    :param args: Extra arguments after the target options.
    :param logger: Logger for progress output.
    :raises InstallError: If pip cannot be started or exits non-zero.
    """

    cmd: list[str] = [
        runtime.pip_path,
        "install",
        "--disable-pip-version-check",
        "--target",
        ".",
        *args,
    ]
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"vc-python-builder: running pip in {work_path}: {' '.join(cmd)}")

    try:
        proc = subprocess.run(cmd, cwd=work_path, check=False)
    except OSError as e:
        raise InstallError(f"pip could not be started: {' '.join(cmd)}: {e}") from e
    if proc.returncode != 0:
        raise InstallError(f"pip invocation failed (exit={proc.returncode}): {' '.join(cmd)}")


def is_installed(*, work_path: pathlib.Path, name: str, version: str) -> bool:
    """Check whether ``name==version`` is already installed in the workspace.

    :param work_path: Workspace.
    :param name: Distribution name.
    :param version: Exact version.
    :returns: ``True`` if a matching ``.dist-info`` directory exists.
    """

    wanted: str = _canonical_name(name)
    if work_path.is_dir() is False:
        return False
    for child in work_path.iterdir():
        if child.is_dir() is False or child.name.endswith(_DIST_INFO_SUFFIX) is False:
            continue
        parts: list[str] = child.name[: -len(_DIST_INFO_SUFFIX)].rsplit("-", 1)
        if len(parts) != 2:
            continue
        if _canonical_name(parts[0]) == wanted and parts[1] == version:
            return True
    return False


def install_requirement(
    *,
    runtime: RuntimeDescriptor,
    name: str,
    version: str,
    work_path: pathlib.Path,
    is_dev: bool,
    logger: logging.Logger,
) -> None:
    """Install one pinned dependency into the workspace.

    Dev builds skip the install when the exact version is already present.

    :param runtime: Resolved runtime.
    :param name: Distribution name.
    :param version: Exact version.
    :param work_path: Workspace.
    :param is_dev: Whether this is a dev build.
    :param logger: Logger for progress output.
    :raises InstallError: If pip fails.
    """

    if is_dev is True and is_installed(work_path=work_path, name=name, version=version) is True:
        logger.info(f"vc-python-builder: {name}=={version} already installed; skipping")
        return

    logger.info(f"vc-python-builder: installing {name}=={version}")
    _pip_install(
        runtime=runtime,
        work_path=work_path,
        args=[f"{name}=={version}"],
        logger=logger,
    )


def install_requirements_file(
    *,
    runtime: RuntimeDescriptor,
    file_path: pathlib.Path,
    work_path: pathlib.Path,
    is_dev: bool,
    logger: logging.Logger,
) -> None:
    """Install every dependency listed in a requirements file.

    Dev builds remember the hash of the last installed file and skip the
    install when it has not changed.

    :param runtime: Resolved runtime.
    :param file_path: requirements file.
    :param work_path: Workspace.
    :param is_dev: Whether this is a dev build.
    :param logger: Logger for progress output.
    :raises InstallError: If the file cannot be read or pip fails.
    """

    try:
        req_hash: str = _sha256_file(file_path)
    except OSError as e:
        raise InstallError(f"Cannot read requirements file {file_path}: {e}") from e

    marker: pathlib.Path = work_path / REQUIREMENTS_MARKER
    if is_dev is True and marker.is_file() is True:
        if marker.read_text(encoding="utf-8").strip() == req_hash:
            logger.info(f"vc-python-builder: {file_path.name} unchanged since last dev build; skipping")
            return

    t0: float = time.perf_counter()
    _pip_install(
        runtime=runtime,
        work_path=work_path,
        args=["--upgrade", "-r", str(file_path)],
        logger=logger,
    )
    t1: float = time.perf_counter()
    logger.info(f"vc-python-builder: installed {file_path} in {t1 - t0:.2f}s")

    if is_dev is True:
        marker.write_text(f"{req_hash}\n", encoding="utf-8")


def install_baseline(
    *,
    runtime: RuntimeDescriptor,
    work_path: pathlib.Path,
    is_dev: bool,
    logger: logging.Logger,
) -> None:
    """Install the pinned dependency the handler shim needs.

    :raises InstallError: If the install fails.
    """

    name, version = BASELINE_DEPENDENCY
    install_requirement(
        runtime=runtime,
        name=name,
        version=version,
        work_path=work_path,
        is_dev=is_dev,
        logger=logger,
    )


def find_requirements_file(*, entrypoint: str, work_path: pathlib.Path) -> pathlib.Path | None:
    """Locate the requirements file to install, if any.

    The entrypoint's own directory wins over the workspace root.

    :param entrypoint: Entrypoint relpath.
    :param work_path: Workspace.
    :returns: Requirements file path, or ``None`` when neither exists.
    """

    entry_dir = pathlib.PurePosixPath(entrypoint).parent
    local: pathlib.Path = work_path.joinpath(*entry_dir.parts, REQUIREMENTS_FILENAME)
    if local.is_file() is True:
        return local

    root: pathlib.Path = work_path / REQUIREMENTS_FILENAME
    if root.is_file() is True:
        return root

    return None


def install_manifest(
    *,
    runtime: RuntimeDescriptor,
    entrypoint: str,
    work_path: pathlib.Path,
    is_dev: bool,
    logger: logging.Logger,
) -> pathlib.Path | None:
    """Install the user's requirements file, when there is one.

    :param runtime: Resolved runtime.
    :param entrypoint: Entrypoint relpath.
    :param work_path: Workspace.
    :param is_dev: Whether this is a dev build.
    :param logger: Logger for progress output.
    :returns: The installed requirements file, or ``None``.
    :raises InstallError: If the install fails.
    """

    requirements: pathlib.Path | None = find_requirements_file(entrypoint=entrypoint, work_path=work_path)
    if requirements is None:
        logger.info(f"vc-python-builder: no {REQUIREMENTS_FILENAME} found")
        return None

    rel: str = requirements.relative_to(work_path).as_posix()
    logger.info(f"vc-python-builder: found {rel!r}")
    install_requirements_file(
        runtime=runtime,
        file_path=requirements,
        work_path=work_path,
        is_dev=is_dev,
        logger=logger,
    )
    return requirements


def _safe_extract_zipfile(*, zip_path: pathlib.Path, dest_dir: pathlib.Path) -> int:
    """Safely extract a zip file on disk into a destination directory.

    :param zip_path: Zip file path.
    :param dest_dir: Destination directory.
    :returns: Number of files extracted.
    :raises ArchiveError: If a member would land outside ``dest_dir``.
    """

    extracted: int = 0
    dest_dir.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path, mode="r") as zf:
        for info in zf.infolist():
            name: str = info.filename
            if "\\" in name:
                raise ArchiveError(f"Refusing to extract backslash path: {name!r}")
            if ":" in name:
                raise ArchiveError(f"Refusing to extract drive-like path: {name!r}")
            p = pathlib.PurePosixPath(name)
            if p.is_absolute() is True:
                raise ArchiveError(f"Refusing to extract absolute path: {name!r}")
            if ".." in p.parts:
                raise ArchiveError(f"Refusing to extract parent-traversal path: {name!r}")

            out_path: pathlib.Path = dest_dir.joinpath(*p.parts)
            if info.is_dir() is True:
                out_path.mkdir(parents=True, exist_ok=True)
                continue

            out_path.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, mode="r") as src, open(out_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
            mode: int = (info.external_attr >> 16) & 0o777
            if mode != 0:
                os.chmod(out_path, mode)
            extracted += 1
    return extracted


def unpack_dependency_archive(*, work_path: pathlib.Path, logger: logging.Logger) -> None:
    """Expand the pre-baked dependency archive into the workspace.

    :param work_path: Workspace containing the archive.
    :param logger: Logger for progress output.
    :raises ArchiveError: If the archive is missing, corrupt or unsafe.
    """

    archive: pathlib.Path = work_path / DEPENDENCY_ARCHIVE_FILENAME
    if archive.is_file() is False:
        raise ArchiveError(f"Dependency archive not found: {archive}")

    try:
        count: int = _safe_extract_zipfile(zip_path=archive, dest_dir=work_path)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Bad dependency archive: {archive}") from e
    logger.info(f"vc-python-builder: unpacked {DEPENDENCY_ARCHIVE_FILENAME} ({count} files)")
