import asyncio
import logging
from typing import Callable, Optional, Tuple

from ..datacls import BuildRequest, BuildTarget, FleetTarget
from ..exceptions import (
    ArchitectureResolutionError,
    AuthenticationRequiredError,
    DeviceTypeNotFoundError,
    FleetNotFoundError,
    InvalidOptionCombinationError,
    UnknownDeviceTypeError,
)
from ..protocols import ResourceApiProtocol

logger = logging.getLogger(__name__)

MODE_ERROR = (
    "You must specify either a fleet (-f), or the device type (-d) "
    "and optionally the architecture (-A)"
)
LOGIN_HINT = "In case you are trying to use a private device type, please try to log in first."
AIRGAP_HINT = (
    "Failed to resolve the architecture of the provided device type. "
    "If you are in an air-gapped environment please also define the architecture (-A) parameter."
)


def validate_target_options(fleet: Optional[str], device_type: Optional[str], arch: Optional[str]):
    """
    Exactly one of {fleet} or {device type [+ arch]} must be given.

    Pure check, performs no I/O.
    """
    if fleet and (device_type or arch):
        raise InvalidOptionCombinationError(MODE_ERROR)
    if not fleet and not device_type:
        raise InvalidOptionCombinationError(MODE_ERROR)


class ArchitectureResolver:
    """
    Determines the BuildTarget every service is built for.

    The resource API is obtained lazily through `api_provider`, so a request
    carrying both device type and architecture never touches it.
    """

    def __init__(self, api_provider: Callable[[], ResourceApiProtocol]):
        self._api_provider = api_provider
        self._api: Optional[ResourceApiProtocol] = None

    @property
    def api(self) -> ResourceApiProtocol:
        if self._api is None:
            self._api = self._api_provider()
        return self._api

    async def resolve(self, request: BuildRequest) -> Tuple[BuildTarget, Optional[FleetTarget]]:
        """Returns the target, plus the fleet's metadata in fleet mode."""
        validate_target_options(request.fleet, request.device_type, request.arch)

        if request.fleet:
            fleet = await self._resolve_fleet(request.fleet)
            target = BuildTarget(architecture=fleet.architecture, device_type=fleet.device_type)
            logger.info(f"Fleet '{request.fleet}' builds for {target.device_type} ({target.architecture})")
            return target, fleet

        if request.arch:
            logger.debug(f"Using explicit device type '{request.device_type}' and arch '{request.arch}'")
            return BuildTarget(architecture=request.arch, device_type=request.device_type), None

        arch = await self._resolve_device_type(request.device_type)
        logger.info(f"Device type '{request.device_type}' resolved to architecture '{arch}'")
        return BuildTarget(architecture=arch, device_type=request.device_type), None

    async def _call(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _resolve_device_type(self, device_type: str) -> str:
        try:
            return await self._call(self.api.resolve_device_type_architecture, device_type)
        except DeviceTypeNotFoundError as e:
            message = str(e) or f"Invalid device type: {device_type}"
            if not await self._is_authenticated():
                message = f"{message}. {LOGIN_HINT}"
            raise UnknownDeviceTypeError(message) from e
        except Exception as e:
            logger.debug(f"Device type resolution for '{device_type}' failed: {e!r}")
            raise ArchitectureResolutionError(AIRGAP_HINT) from e

    async def _resolve_fleet(self, fleet: str) -> FleetTarget:
        if not await self._is_authenticated():
            raise AuthenticationRequiredError(
                f"Login required to resolve fleet '{fleet}'. Log in or pass --deviceType and --arch instead."
            )
        try:
            return await self._call(self.api.resolve_fleet_default_device_type, fleet)
        except FleetNotFoundError as e:
            raise ArchitectureResolutionError(f"Fleet '{fleet}' not found or not accessible.") from e
        except Exception as e:
            logger.debug(f"Fleet resolution for '{fleet}' failed: {e!r}")
            raise ArchitectureResolutionError(
                f"Failed to resolve the device type of fleet '{fleet}'. "
                "If you are in an air-gapped environment use --deviceType and --arch instead."
            ) from e

    async def _is_authenticated(self) -> bool:
        try:
            return bool(await self._call(self.api.is_authenticated))
        except Exception as e:
            logger.debug(f"Could not determine session state: {e!r}")
            return False
