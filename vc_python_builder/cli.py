"""Command line interface for vc-python-builder."""

import argparse
import json
import logging
import pathlib
import sys

from vc_python_builder.builder import BuildResult, build
from vc_python_builder.errors import BuildError
from vc_python_builder.workspace import BuildMeta, FileManifest, dev_cache_ignore, glob_files


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the vc-python-builder logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("vc_python_builder")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def main(argv: list[str] | None = None) -> int:
    """Run the vc-python-builder CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="vc-python-builder",
        description="Package a Python function entrypoint into a deployable serverless artifact.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build the artifact for one entrypoint.",
    )
    p_build.add_argument(
        "work_path",
        type=pathlib.Path,
        help="Workspace directory holding the user's files.",
    )
    p_build.add_argument(
        "-e",
        "--entrypoint",
        type=str,
        required=True,
        help="Entrypoint path relative to the workspace (e.g. api/index.py).",
    )
    p_build.add_argument(
        "--dev",
        action="store_true",
        help="Incremental dev build: reuse a persistent per-entrypoint cache directory.",
    )
    p_build.add_argument(
        "--dev-cache-dir",
        type=pathlib.Path,
        default=None,
        help="Dev cache root (defaults to <work_path>/.now/cache).",
    )
    p_build.add_argument(
        "--exclude-files",
        type=str,
        default=None,
        help="Glob of workspace paths to leave out of the artifact (default: node_modules/**).",
    )
    p_build.add_argument(
        "--python-version",
        type=str,
        default=None,
        help="Target Python version as 'MAJOR.MINOR' (defaults to the newest installed).",
    )
    p_build.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        default=None,
        help="Write the artifact description as JSON here (defaults to stdout).",
    )
    p_build.add_argument(
        "--zip",
        type=pathlib.Path,
        default=None,
        help="Also write the artifact files to this zip archive.",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )

    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        work_path: pathlib.Path = ns.work_path.resolve()
        meta: BuildMeta = BuildMeta(is_dev=ns.dev, dev_cache_dir=ns.dev_cache_dir)
        try:
            files: FileManifest = glob_files(work_path, ignore=dev_cache_ignore(work_path=work_path, meta=meta))
            result: BuildResult = build(
                work_path=work_path,
                files=files,
                entrypoint=ns.entrypoint,
                meta=meta,
                config={"excludeFiles": ns.exclude_files},
                python_version=ns.python_version,
                logger=logger,
            )
            if ns.zip is not None:
                result.output.write_zip(ns.zip)
                logger.info(f"vc-python-builder: wrote {ns.zip}")
        except BuildError as e:
            logger.error(f"vc-python-builder: build failed: {e}")
            return 1

        text: str = json.dumps(result.output.to_dict(), indent=2, sort_keys=True)
        if ns.output is None:
            sys.stdout.write(text + "\n")
        else:
            ns.output.parent.mkdir(parents=True, exist_ok=True)
            ns.output.write_text(text + "\n", encoding="utf-8")
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")


if __name__ == "__main__":
    raise SystemExit(main())
