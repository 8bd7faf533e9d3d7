"""Artifact assembly.

The artifact is the only thing a build hands to the execution host: the final
file manifest plus the fixed invocation contract (handler symbol, runtime id).
"""

from dataclasses import dataclass, field
import logging
import pathlib
import types
from typing import Any, Mapping
import zipfile

from vc_python_builder.errors import BuildError, ConfigError
from vc_python_builder.install import REQUIREMENTS_MARKER
from vc_python_builder.runtime import RuntimeDescriptor
from vc_python_builder.shim import HANDLER_FUNCTION, HANDLER_MODULE
from vc_python_builder.workspace import FileManifest, FileRef, glob_files

DEFAULT_EXCLUDE_FILES: str = "node_modules/**"


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """User build configuration.

    :ivar exclude_files: ``fnmatch`` pattern of workspace paths to leave out of
        the artifact; ``None`` selects :data:`DEFAULT_EXCLUDE_FILES`.
    """

    exclude_files: str | None = None

    @property
    def exclude_pattern(self) -> str:
        if self.exclude_files is not None:
            return self.exclude_files
        return DEFAULT_EXCLUDE_FILES

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None) -> "BuildConfig":
        """Validate a raw ``{excludeFiles}`` mapping.

        :param raw: Raw config mapping (or ``None``).
        :returns: Parsed config.
        :raises ConfigError: If ``excludeFiles`` is present but not a string.
        """

        if raw is None:
            return cls()
        exclude = raw.get("excludeFiles")
        if exclude is not None and isinstance(exclude, str) is False:
            raise ConfigError(f"config.excludeFiles must be a glob string, got {type(exclude).__name__}.")
        return cls(exclude_files=exclude)


@dataclass(frozen=True, slots=True)
class Artifact:
    """Deployable function artifact.

    :ivar files: Workspace-relative path -> file reference.
    :ivar handler: ``<module>.<function>`` the host invokes.
    :ivar runtime: Runtime identifier.
    :ivar environment: Environment variables for the function (always empty).
    """

    files: Mapping[str, FileRef]
    handler: str
    runtime: str
    environment: Mapping[str, str] = field(default_factory=lambda: types.MappingProxyType({}))

    def to_dict(self) -> dict[str, Any]:
        """Describe the artifact as JSON-ready data."""

        return {
            "handler": self.handler,
            "runtime": self.runtime,
            "environment": dict(self.environment),
            "files": {rel: str(self.files[rel].fs_path) for rel in sorted(self.files)},
        }

    def write_zip(self, out_path: pathlib.Path, *, compresslevel: int = 6) -> None:
        """Write the artifact files to a zip archive.

        :param out_path: Output zip path.
        :param compresslevel: Deflate compression level (0-9).
        :raises BuildError: If the level is out of range or a file cannot be read.
        """

        if compresslevel < 0 or compresslevel > 9:
            raise BuildError(f"Invalid compresslevel={compresslevel}; expected 0-9.")

        out_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: pathlib.Path = out_path.with_name(out_path.name + ".tmp")
        try:
            with zipfile.ZipFile(
                tmp_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=compresslevel,
            ) as zf:
                for rel in sorted(self.files):
                    zf.write(self.files[rel].fs_path, arcname=rel)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BuildError(f"Failed to write artifact zip {out_path}: {e}") from e
        tmp_path.replace(out_path)


def handler_symbol() -> str:
    return f"{HANDLER_MODULE}.{HANDLER_FUNCTION}"


def assemble(
    *,
    work_path: pathlib.Path,
    config: BuildConfig,
    runtime: RuntimeDescriptor,
    logger: logging.Logger,
) -> Artifact:
    """Snapshot the workspace into the final artifact.

    The dev-build requirements marker is never part of the artifact.

    :param work_path: Workspace.
    :param config: Build configuration.
    :param runtime: Resolved runtime.
    :param logger: Logger for progress output.
    :returns: The artifact.
    :raises ManifestError: If the workspace cannot be enumerated.
    """

    pattern: str = config.exclude_pattern
    files: FileManifest = glob_files(work_path, ignore=pattern)
    files.pop(REQUIREMENTS_MARKER, None)
    logger.info(f"vc-python-builder: artifact has {len(files)} files (excluding {pattern!r})")
    return Artifact(
        files=types.MappingProxyType(files),
        handler=handler_symbol(),
        runtime=runtime.runtime,
    )
