"""
Fleet Builder Builder Module

- Builder: Orchestrates one local build, BuildRequest in, BuildReport out
- ProjectLoader: Compose file / Dockerfile / package.json discovery
- IgnoreRuleResolver: .dockerignore rules, shared or per service
- ArchitectureResolver: Device type and architecture of the build
- BuildOptionAssembler: Validated, shared build options
- EmulationSetup: Cross-architecture handler registration
- BuildExecutor: Concurrent per-service engine builds
- ResultAggregator: BuildReport and the final summary

Usage:
    from fleetbuilder.builder import Builder
    from fleetbuilder.datacls import BuildRequest

    request = BuildRequest(source="./app", device_type="raspberrypi3", arch="armv7hf")
    report = await Builder(request).run()
"""

from .build import Builder
from .loader import ProjectLoader
from .ignore import IgnoreRuleResolver, IgnoreRuleSet
from .arch import ArchitectureResolver, validate_target_options
from .assemble import BuildOptionAssembler
from .emulation import EmulationSetup
from .executor import BuildExecutor
from .report import ResultAggregator

__all__ = [
    'Builder',
    'ProjectLoader',
    'IgnoreRuleResolver',
    'IgnoreRuleSet',
    'ArchitectureResolver',
    'validate_target_options',
    'BuildOptionAssembler',
    'EmulationSetup',
    'BuildExecutor',
    'ResultAggregator',
]
