"""Runtime selection.

Picks the interpreter the function will be built (and later executed) with:

- Dev builds always target the generic ``python3`` found on the host.
- Other builds probe the supported versions newest-first and take the first one
  whose interpreter *and* pip executables are both on ``PATH``.
"""

from dataclasses import dataclass
import re
import shutil

from vc_python_builder.errors import RuntimeResolutionError


@dataclass(frozen=True, slots=True)
class RuntimeDescriptor:
    """Resolved runtime.

    :ivar version: Python version (``MAJOR.MINOR``, or ``3`` for dev builds).
    :ivar python_path: Interpreter executable.
    :ivar pip_path: Installer executable.
    :ivar runtime: Runtime identifier handed to the execution host.
    """

    version: str
    python_path: str
    pip_path: str
    runtime: str


_PYVER_RE: re.Pattern[str] = re.compile(r"^(?P<maj>\d+)\.(?P<min>\d+)$")

SUPPORTED_VERSIONS: tuple[str, ...] = ("3.12", "3.11", "3.10", "3.9")

DEV_RUNTIME: RuntimeDescriptor = RuntimeDescriptor(
    version="3",
    python_path="python3",
    pip_path="pip3",
    runtime="python3",
)


def _descriptor_for(version: str) -> RuntimeDescriptor:
    """Build the descriptor for a supported ``MAJOR.MINOR`` version.

    :param version: Version string.
    :returns: Runtime descriptor.
    """

    return RuntimeDescriptor(
        version=version,
        python_path=f"python{version}",
        pip_path=f"pip{version}",
        runtime=f"python{version}",
    )


def _normalize_version(python_version_override: str) -> str:
    """Validate an explicit version override.

    :param python_version_override: Version as ``MAJOR.MINOR``.
    :returns: Normalized version.
    :raises RuntimeResolutionError: If the override is malformed or unsupported.
    """

    m = _PYVER_RE.match(python_version_override)
    if m is None:
        raise RuntimeResolutionError(
            f"Invalid python version {python_version_override!r}; expected 'MAJOR.MINOR'."
        )
    version: str = f"{int(m.group('maj'))}.{int(m.group('min'))}"
    if version not in SUPPORTED_VERSIONS:
        supported: str = ", ".join(SUPPORTED_VERSIONS)
        raise RuntimeResolutionError(
            f"Unsupported python version {version!r}; supported versions: {supported}."
        )
    return version


def _is_installed(runtime: RuntimeDescriptor) -> bool:
    return shutil.which(runtime.python_path) is not None and shutil.which(runtime.pip_path) is not None


def resolve_runtime(*, is_dev: bool, python_version_override: str | None = None) -> RuntimeDescriptor:
    """Resolve the runtime for this build.

    :param is_dev: Whether this is an incremental dev build.
    :param python_version_override: Optional explicit ``MAJOR.MINOR`` version.
    :returns: Resolved runtime descriptor.
    :raises RuntimeResolutionError: If no usable runtime is installed.
    """

    if is_dev is True and python_version_override is None:
        return DEV_RUNTIME

    candidates: tuple[str, ...]
    if python_version_override is not None:
        candidates = (_normalize_version(python_version_override),)
    else:
        candidates = SUPPORTED_VERSIONS

    for version in candidates:
        runtime: RuntimeDescriptor = _descriptor_for(version)
        if _is_installed(runtime) is True:
            return runtime

    wanted: str = ", ".join(f"python{v}" for v in candidates)
    raise RuntimeResolutionError(
        f"Unable to find a usable Python installation (looked for {wanted} with a matching pip)."
    )
