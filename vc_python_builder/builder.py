"""Build pipeline.

One build packages one entrypoint. The stages run strictly in order, each one
taking the (immutable) state left by the previous stage:

1. runtime: pick the interpreter/pip pair.
2. workspace: stage the user's files (dev builds move into a persistent cache).
3. dependencies: install the pinned baseline dependency, then requirements.txt.
4. handler: unpack ``deps-py30.zip`` and write the handler shim.
5. statics: run ``manage.py collectstatic``.
6. artifact: snapshot the workspace into the deployable artifact.

The first failure aborts the build; no partial artifact is ever returned.
"""

from dataclasses import dataclass, replace
import logging
import pathlib
import time
from typing import Any, Callable, Mapping

from vc_python_builder.artifact import Artifact, BuildConfig, assemble
from vc_python_builder.errors import BuildError
from vc_python_builder.install import install_baseline, install_manifest, unpack_dependency_archive
from vc_python_builder.runtime import RuntimeDescriptor, resolve_runtime
from vc_python_builder.shim import load_template, synthesize, write_handler
from vc_python_builder.statics import collect_statics
from vc_python_builder.workspace import BuildMeta, FileManifest, materialize


@dataclass(frozen=True, slots=True)
class BuildState:
    """State threaded through the pipeline stages.

    :ivar entrypoint: Entrypoint relpath.
    :ivar work_path: Current effective workspace.
    :ivar files: Latest known file manifest.
    :ivar meta: Build meta.
    :ivar config: Validated build configuration.
    :ivar python_version: Optional runtime version override.
    :ivar runtime: Resolved runtime (after stage 1).
    :ivar artifact: Final artifact (after stage 6).
    """

    entrypoint: str
    work_path: pathlib.Path
    files: FileManifest
    meta: BuildMeta
    config: BuildConfig
    python_version: str | None = None
    runtime: RuntimeDescriptor | None = None
    artifact: Artifact | None = None

    def require_runtime(self) -> RuntimeDescriptor:
        if self.runtime is None:
            raise BuildError("Internal error: runtime not resolved before use.")
        return self.runtime


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Successful build output."""

    output: Artifact


Stage = Callable[[BuildState, logging.Logger], BuildState]


def _select_runtime(state: BuildState, logger: logging.Logger) -> BuildState:
    runtime: RuntimeDescriptor = resolve_runtime(
        is_dev=state.meta.is_dev,
        python_version_override=state.python_version,
    )
    logger.info(f"vc-python-builder: runtime={runtime.runtime} python={runtime.python_path} pip={runtime.pip_path}")
    return replace(state, runtime=runtime)


def _materialize_workspace(state: BuildState, logger: logging.Logger) -> BuildState:
    work_path, files = materialize(
        entrypoint=state.entrypoint,
        work_path=state.work_path,
        files=state.files,
        meta=state.meta,
        logger=logger,
    )
    return replace(state, work_path=work_path, files=files)


def _install_dependencies(state: BuildState, logger: logging.Logger) -> BuildState:
    runtime: RuntimeDescriptor = state.require_runtime()
    install_baseline(
        runtime=runtime,
        work_path=state.work_path,
        is_dev=state.meta.is_dev,
        logger=logger,
    )
    install_manifest(
        runtime=runtime,
        entrypoint=state.entrypoint,
        work_path=state.work_path,
        is_dev=state.meta.is_dev,
        logger=logger,
    )
    return state


def _write_handler(state: BuildState, logger: logging.Logger) -> BuildState:
    logger.info(f"vc-python-builder: entrypoint={state.entrypoint}")
    source: str = synthesize(
        load_template(),
        entrypoint=state.entrypoint,
        is_dev=state.meta.is_dev,
    )
    unpack_dependency_archive(work_path=state.work_path, logger=logger)
    write_handler(work_path=state.work_path, source=source, logger=logger)
    return state


def _collect_statics(state: BuildState, logger: logging.Logger) -> BuildState:
    collect_statics(
        python_path=state.require_runtime().python_path,
        work_path=state.work_path,
        logger=logger,
    )
    return state


def _assemble_artifact(state: BuildState, logger: logging.Logger) -> BuildState:
    artifact: Artifact = assemble(
        work_path=state.work_path,
        config=state.config,
        runtime=state.require_runtime(),
        logger=logger,
    )
    return replace(state, artifact=artifact)


STAGES: tuple[tuple[str, Stage], ...] = (
    ("runtime", _select_runtime),
    ("workspace", _materialize_workspace),
    ("dependencies", _install_dependencies),
    ("handler", _write_handler),
    ("statics", _collect_statics),
    ("artifact", _assemble_artifact),
)


def run_stages(
    state: BuildState,
    *,
    stages: tuple[tuple[str, Stage], ...] = STAGES,
    logger: logging.Logger,
) -> BuildState:
    """Run stages in order, stopping at the first failure.

    :param state: Initial state.
    :param stages: ``(name, stage)`` pairs.
    :param logger: Logger for progress output.
    :returns: Final state.
    :raises BuildError: From the first failing stage.
    """

    for name, stage in stages:
        logger.info(f"vc-python-builder: [{name}] starting")
        t0: float = time.perf_counter()
        try:
            state = stage(state, logger)
        except BuildError:
            logger.error(f"vc-python-builder: [{name}] failed")
            raise
        except OSError as e:
            logger.error(f"vc-python-builder: [{name}] failed")
            raise BuildError(f"{name} stage failed: {e}") from e
        t1: float = time.perf_counter()
        logger.info(f"vc-python-builder: [{name}] done in {t1 - t0:.2f}s")
    return state


def build(
    *,
    work_path: pathlib.Path,
    files: FileManifest,
    entrypoint: str,
    meta: BuildMeta | Mapping[str, Any] | None = None,
    config: BuildConfig | Mapping[str, Any] | None = None,
    python_version: str | None = None,
    logger: logging.Logger | None = None,
) -> BuildResult:
    """Build a deployable function artifact for one entrypoint.

    :param work_path: Workspace root.
    :param files: User file manifest.
    :param entrypoint: Entrypoint relpath (e.g. ``api/index.py``).
    :param meta: Build meta, or a raw ``{isDev, devCacheDir}`` mapping.
    :param config: Build config, or a raw ``{excludeFiles}`` mapping.
    :param python_version: Optional ``MAJOR.MINOR`` runtime override.
    :param logger: Optional logger for realtime build progress output.
    :returns: The build result.
    :raises BuildError: If any stage fails.
    """

    if logger is None:
        logger = logging.getLogger("vc_python_builder")

    if not isinstance(meta, BuildMeta):
        meta = BuildMeta.from_raw(meta)
    if not isinstance(config, BuildConfig):
        config = BuildConfig.from_raw(config)

    t_total0: float = time.perf_counter()
    state: BuildState = BuildState(
        entrypoint=entrypoint,
        work_path=work_path,
        files=files,
        meta=meta,
        config=config,
        python_version=python_version,
    )
    state = run_stages(state, logger=logger)
    if state.artifact is None:
        raise BuildError("Internal error: pipeline finished without an artifact.")

    t_total1: float = time.perf_counter()
    logger.info(f"vc-python-builder: done in {t_total1 - t_total0:.2f}s")
    return BuildResult(output=state.artifact)
