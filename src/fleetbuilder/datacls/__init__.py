from .project import (
    ServiceDescriptor,
    Project,
    ComposeModel,
    ComposeServiceModel,
    ComposeBuildModel,
)
from .options import (
    BuildTarget,
    FleetTarget,
    RegistryCredentials,
    RegistrySecretsModel,
    BuildRequest,
    BuildOptions,
)
from .results import BuildResult, BuildReport

__all__ = [
    'ServiceDescriptor',
    'Project',
    'ComposeModel',
    'ComposeServiceModel',
    'ComposeBuildModel',
    'BuildTarget',
    'FleetTarget',
    'RegistryCredentials',
    'RegistrySecretsModel',
    'BuildRequest',
    'BuildOptions',
    'BuildResult',
    'BuildReport',
]
