"""Workspace staging.

A build works on a single directory tree (the workspace). This module:

- snapshots directory trees into file manifests (``glob_files``),
- copies a manifest into a directory (``download``),
- stages the user's files, optionally re-rooting dev builds into a persistent
  per-entrypoint cache directory (``materialize``).
"""

from dataclasses import dataclass
import fnmatch
import logging
import os
import pathlib
import shutil
import stat
from typing import Any, Mapping

from vc_python_builder.errors import DownloadError, ManifestError


@dataclass(frozen=True, slots=True)
class FileRef:
    """A file on disk referenced by a manifest.

    :ivar fs_path: Absolute filesystem path.
    :ivar mode: POSIX mode bits, when known.
    """

    fs_path: pathlib.Path
    mode: int | None = None


FileManifest = dict[str, FileRef]


@dataclass(frozen=True, slots=True)
class BuildMeta:
    """Build meta supplied by the caller.

    :ivar is_dev: Whether this is an incremental dev build.
    :ivar dev_cache_dir: Optional cache root override for dev builds.
    """

    is_dev: bool = False
    dev_cache_dir: pathlib.Path | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None) -> "BuildMeta":
        """Build meta from a raw ``{isDev, devCacheDir}`` mapping.

        :param raw: Raw mapping (or ``None``).
        :returns: Parsed meta.
        """

        if raw is None:
            return cls()
        cache_dir = raw.get("devCacheDir")
        return cls(
            is_dev=bool(raw.get("isDev", False)),
            dev_cache_dir=pathlib.Path(cache_dir) if cache_dir is not None else None,
        )


DEFAULT_DEV_CACHE_RELPATH: pathlib.PurePosixPath = pathlib.PurePosixPath(".now/cache")


def _is_ignored(rel: str, pattern: str) -> bool:
    # A leading ``**/`` also matches zero directories.
    if fnmatch.fnmatchcase(rel, pattern) is True:
        return True
    if pattern.startswith("**/") is True:
        return _is_ignored(rel, pattern[len("**/") :])
    return False


def glob_files(root: pathlib.Path, *, ignore: str | None = None) -> FileManifest:
    """Snapshot every file below ``root`` into a manifest.

    Dotfiles are included and directories are not listed. Symlinked
    directories are followed unless they point back into a directory already
    being walked.

    :param root: Directory to enumerate.
    :param ignore: Optional ``fnmatch`` pattern matched against POSIX relpaths;
        a leading ``**/`` may also match no directory at all.
    :returns: Fresh file manifest.
    :raises ManifestError: If ``root`` cannot be enumerated.
    """

    if root.is_dir() is False:
        raise ManifestError(f"Cannot enumerate workspace (not a directory): {root}")

    root_abs: pathlib.Path = root.resolve()
    files: FileManifest = {}
    walked: set[str] = set()

    def on_error(e: OSError) -> None:
        raise ManifestError(f"Cannot enumerate workspace {root_abs}: {e}") from e

    for root_str, dirs, names in os.walk(root_abs, topdown=True, onerror=on_error, followlinks=True):
        walked.add(os.path.realpath(root_str))
        dirs[:] = [d for d in sorted(dirs) if os.path.realpath(os.path.join(root_str, d)) not in walked]
        root_path: pathlib.Path = pathlib.Path(root_str)
        for name in sorted(names):
            path: pathlib.Path = root_path / name
            rel: str = path.relative_to(root_abs).as_posix()
            if ignore is not None and _is_ignored(rel, ignore) is True:
                continue
            try:
                st: os.stat_result = path.stat()
            except OSError as e:
                raise ManifestError(f"Cannot stat {path}: {e}") from e
            if stat.S_ISREG(st.st_mode) is False:
                continue
            files[rel] = FileRef(fs_path=path, mode=stat.S_IMODE(st.st_mode))

    return files


def download(files: FileManifest, dest: pathlib.Path, *, logger: logging.Logger | None = None) -> FileManifest:
    """Copy every manifest entry to ``dest/<relpath>``.

    Entries already located at their destination are left untouched.

    :param files: Manifest to materialize.
    :param dest: Destination directory.
    :param logger: Optional logger for debug output.
    :returns: Manifest of the materialized files.
    :raises DownloadError: If a source file is missing or cannot be copied.
    """

    dest.mkdir(parents=True, exist_ok=True)
    dest_abs: pathlib.Path = dest.resolve()
    out: FileManifest = {}

    for rel in sorted(files):
        ref: FileRef = files[rel]
        relpath = pathlib.PurePosixPath(rel)
        if relpath.is_absolute() is True or ".." in relpath.parts:
            raise DownloadError(f"Refusing to download outside the workspace: {rel!r}")

        target: pathlib.Path = dest_abs.joinpath(*relpath.parts)
        if ref.fs_path.is_file() is False:
            raise DownloadError(f"Source file missing for {rel!r}: {ref.fs_path}")

        if ref.fs_path.resolve() != target:
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                shutil.copy2(ref.fs_path, target)
                if ref.mode is not None:
                    os.chmod(target, ref.mode)
            except OSError as e:
                raise DownloadError(f"Failed to download {rel!r} to {target}: {e}") from e
            if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
                logger.debug(f"vc-python-builder: downloaded {rel}")

        out[rel] = FileRef(fs_path=target, mode=ref.mode)

    return out


def dev_cache_ignore(*, work_path: pathlib.Path, meta: BuildMeta) -> str | None:
    """Pattern hiding the dev cache root from a snapshot of ``work_path``.

    :param work_path: Original workspace.
    :param meta: Build meta.
    :returns: ``<cache root relpath>/**``, or ``None`` outside dev builds or
        when the cache root lives outside the workspace.
    """

    if meta.is_dev is False:
        return None
    cache_root: pathlib.Path = _dev_cache_root(work_path=work_path, meta=meta).resolve()
    work_abs: pathlib.Path = work_path.resolve()
    if cache_root.is_relative_to(work_abs) is False or cache_root == work_abs:
        return None
    return f"{cache_root.relative_to(work_abs).as_posix()}/**"


def _dev_cache_root(*, work_path: pathlib.Path, meta: BuildMeta) -> pathlib.Path:
    if meta.dev_cache_dir is not None:
        return meta.dev_cache_dir
    return work_path.joinpath(*DEFAULT_DEV_CACHE_RELPATH.parts)


def dev_cache_path(*, entrypoint: str, work_path: pathlib.Path, meta: BuildMeta) -> pathlib.Path:
    """Compute the persistent dev cache directory for an entrypoint.

    :param entrypoint: Entrypoint relpath.
    :param work_path: Original workspace.
    :param meta: Build meta.
    :returns: ``<dev_cache_dir>/<entrypoint basename without .py>``.
    """

    cache_root: pathlib.Path = _dev_cache_root(work_path=work_path, meta=meta)
    name: str = pathlib.PurePosixPath(entrypoint).name
    if name.endswith(".py") is True:
        name = name[: -len(".py")]
    return cache_root / name


def materialize(
    *,
    entrypoint: str,
    work_path: pathlib.Path,
    files: FileManifest,
    meta: BuildMeta,
    logger: logging.Logger,
) -> tuple[pathlib.Path, FileManifest]:
    """Stage user files and return the effective workspace.

    :param entrypoint: Entrypoint relpath.
    :param work_path: Workspace to download into.
    :param files: User file manifest.
    :param meta: Build meta.
    :param logger: Logger for progress output.
    :returns: ``(effective_work_path, manifest)``.
    :raises DownloadError: If any file cannot be staged.
    """

    logger.info(f"vc-python-builder: downloading {len(files)} user files")
    downloaded: FileManifest = download(files, work_path, logger=logger)
    if meta.is_dev is False:
        return work_path, downloaded

    dest_cache: pathlib.Path = dev_cache_path(entrypoint=entrypoint, work_path=work_path, meta=meta)
    logger.info(f"vc-python-builder: dev build; staging into {dest_cache}")
    download(downloaded, dest_cache, logger=logger)
    return dest_cache, glob_files(dest_cache)
