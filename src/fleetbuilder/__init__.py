"""
Fleet Builder

Builds the container images of a fleet project locally, for the device type and
CPU architecture of the fleet, with emulation when the host cannot run them.

Main modules:
- builder: Project loading, target resolution, option assembly and the build fan-out
- bases: Docker engine (python-on-whales) and resource API (requests) implementations
- datacls: Type-safe data classes and models
- config: User settings (`.fleetbrc.yml` and environment)
- protocols: The engine and resource API interfaces the builder consumes
- utils: Logging and dictionary helpers

Quick start example:
```python
import asyncio
from fleetbuilder import Builder, BuildRequest

request = BuildRequest(source="./app", device_type="raspberrypi3", arch="armv7hf")
report = asyncio.run(Builder(request).run())
```
"""

__version__ = "0.3.0"

from .protocols import EngineProtocol, ResourceApiProtocol
from .config import Settings, load_settings
from .datacls import BuildRequest, BuildOptions, BuildTarget, BuildReport, BuildResult, Project
from .builder import Builder
from .exceptions import (
    FleetBuilderError,
    ConfigurationError,
    DefinitionError,
    ResolutionError,
    BuildError,
    ProjectBuildError,
)

__all__ = [
    # Version
    '__version__',
    # Protocols
    'EngineProtocol',
    'ResourceApiProtocol',
    # Config
    'Settings',
    'load_settings',
    # Data
    'BuildRequest',
    'BuildOptions',
    'BuildTarget',
    'BuildReport',
    'BuildResult',
    'Project',
    # Builder
    'Builder',
    # Exceptions
    'FleetBuilderError',
    'ConfigurationError',
    'DefinitionError',
    'ResolutionError',
    'BuildError',
    'ProjectBuildError',
]
