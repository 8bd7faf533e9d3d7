"""vc-python-builder.

Packages a single Python function entrypoint and its dependencies into a
deployable serverless artifact with a fixed invocation contract.
"""

from vc_python_builder.artifact import Artifact, BuildConfig
from vc_python_builder.builder import BuildResult, build
from vc_python_builder.errors import BuildError
from vc_python_builder.install import install_requirement, install_requirements_file
from vc_python_builder.routing import should_serve
from vc_python_builder.workspace import BuildMeta, FileRef

__all__: list[str] = [
    "Artifact",
    "BUILDER_API_VERSION",
    "BuildConfig",
    "BuildError",
    "BuildMeta",
    "BuildResult",
    "FileRef",
    "__version__",
    "build",
    "install_requirement",
    "install_requirements_file",
    "should_serve",
]

__version__: str = "0.1.0"

BUILDER_API_VERSION: int = 3
