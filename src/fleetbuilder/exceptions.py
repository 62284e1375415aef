from typing import List, Optional


class FleetBuilderError(Exception):
    """Base exception for all application-specific errors."""

    pass


# --- 1. Errors related to loading and parsing configuration files ---
class ConfigurationError(FleetBuilderError):
    """Base class for errors encountered while finding, reading, or parsing config files."""

    pass


class ConfigFileMissingError(ConfigurationError):
    """Raised when a required configuration file cannot be found."""

    pass


class ConfigParsingError(ConfigurationError):
    """Raised when a YAML or JSON file is syntactically incorrect."""

    pass


class ConfigValidationError(ConfigurationError):
    """Raised when a configuration fails structural validation (e.g., Pydantic)."""

    pass


# --- 2. Errors in the project definition and the requested build options ---
class DefinitionError(FleetBuilderError):
    """Base class for errors in the project definition or the supplied options."""

    pass


class ProjectNotFoundError(DefinitionError):
    """Raised when the source directory holds nothing that can be built."""

    pass


class InvalidOptionCombinationError(DefinitionError):
    """Raised when fleet mode and explicit device type/arch mode are mixed or both missing."""

    pass


class InvalidBuildOptionsError(DefinitionError):
    """Raised when a build option fails validation. `field` names the offending option."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid value for '{field}': {message}")


# --- 3. Errors resolving the build target ---
class ResolutionError(FleetBuilderError):
    """Base class for errors while resolving the device type and architecture."""

    pass


class UnknownDeviceTypeError(ResolutionError):
    """Raised when the device type slug is not known to the resource API."""

    pass


class ArchitectureResolutionError(ResolutionError):
    """Raised when the architecture could not be resolved for any other reason."""

    pass


class AuthenticationRequiredError(ResolutionError):
    """Raised when an operation needs a logged-in session and there is none."""

    pass


# --- 4. Errors that occur while driving the container engine ---
class BuildError(FleetBuilderError):
    """Base class for errors that occur during the build phase."""

    pass


class EmulationSetupError(BuildError):
    """Raised when cross-architecture emulation could not be registered. Always fatal."""

    pass


class EngineCommunicationError(BuildError):
    """Raised when the container engine could not be reached or dropped the connection."""

    pass


class EngineBuildFailure(BuildError):
    """Raised by an engine when a build itself fails (non-zero exit, bad build file)."""

    pass


class ServiceBuildError(BuildError):
    """A single service failed to build."""

    def __init__(self, service: str, cause: str):
        self.service = service
        self.cause = cause
        super().__init__(f"Service '{service}' failed to build: {cause}")


class ProjectBuildError(BuildError):
    """Raised once every started build has finished and at least one of them failed."""

    def __init__(self, failures: List[ServiceBuildError], skipped: Optional[List[str]] = None, report=None):
        self.failures = failures
        self.skipped = list(skipped or [])
        self.report = report
        names = ", ".join(f.service for f in failures)
        message = f"Build failed for service(s): {names}"
        if self.skipped:
            message += f" (not started: {', '.join(self.skipped)})"
        super().__init__(message)


class BuildCancelledError(BuildError):
    """Raised when the operator interrupted the build."""

    def __init__(self, message: str = "Build cancelled.", report=None):
        self.report = report
        super().__init__(message)


# --- 5. Errors raised by resource API clients ---
class RemoteApiError(FleetBuilderError):
    """Base class for errors returned by the remote resource API."""

    pass


class DeviceTypeNotFoundError(RemoteApiError):
    """Raised by a resource API client when a device type slug does not exist."""

    pass


class FleetNotFoundError(RemoteApiError):
    """Raised by a resource API client when a fleet does not exist or is not visible."""

    pass
