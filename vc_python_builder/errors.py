"""Build error taxonomy.

Every stage failure is fatal to the build; these classes only exist so callers
(and tests) can tell which stage gave up.
"""


class BuildError(RuntimeError):
    """Raised when a build fails."""


class ConfigError(BuildError):
    """Raised when the build configuration is invalid."""


class DownloadError(BuildError):
    """Raised when user files cannot be materialized into the workspace."""


class RuntimeResolutionError(BuildError):
    """Raised when no usable interpreter/installer pair can be found."""


class InstallError(BuildError):
    """Raised when a dependency install exits non-zero."""


class ArchiveError(BuildError):
    """Raised when the pre-baked dependency archive is missing or unsafe."""


class ShimError(BuildError):
    """Raised when the handler shim cannot be rendered or written."""


class StaticsError(BuildError):
    """Raised when static asset collection fails."""


class ManifestError(BuildError):
    """Raised when the workspace cannot be enumerated."""
