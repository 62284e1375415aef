"""
Fleet Builder Protocol Definitions

The collaborators the build core consumes but does not own: the container
engine and the remote resource API. Concrete implementations live in `bases`;
tests provide in-memory doubles.

Protocols are the foundation layer with no dependencies on the builder modules.
"""

from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .datacls import BuildOptions, FleetTarget


# ============================================================================
# Container Engine Protocol
# ============================================================================

@runtime_checkable
class EngineProtocol(Protocol):
    """
    Protocol for the container engine build API.

    Implementations block while the build runs; the executor calls them
    from worker threads.
    """

    def build(
        self,
        context_dir: Path,
        dockerfile: str,
        tags: List[str],
        build_args: Dict[str, str],
        labels: Dict[str, str],
        options: BuildOptions,
        platform: Optional[str],
        target: Optional[str],
        on_line: Callable[[str], None],
    ) -> str:
        """
        Build one image and return its identifier.

        Every line of build output is handed to `on_line` as it arrives.
        Raises EngineBuildFailure when the build itself fails and
        EngineCommunicationError when the engine cannot be reached.
        """
        ...

    def image_architecture(self, image_ref: str) -> Optional[str]:
        """Architecture the engine reports for a built image (e.g. 'arm64')."""
        ...

    def register_emulation(self, emulators: Iterable[str]) -> None:
        """
        Register cross-architecture execution handlers (e.g. 'arm', 'arm64').

        Raises EmulationSetupError on failure.
        """
        ...


# ============================================================================
# Resource API Protocol
# ============================================================================

@runtime_checkable
class ResourceApiProtocol(Protocol):
    """
    Protocol for the remote fleet/device-type API.

    Implementations raise DeviceTypeNotFoundError for unknown device types and
    FleetNotFoundError for unknown fleets; any other failure may surface as any
    exception.
    """

    def resolve_device_type_architecture(self, device_type: str) -> str:
        """CPU architecture slug for a device type slug."""
        ...

    def resolve_fleet_default_device_type(self, fleet: str) -> FleetTarget:
        """Default device type and architecture of a fleet."""
        ...

    def is_authenticated(self) -> bool:
        """Whether the current session is logged in."""
        ...
