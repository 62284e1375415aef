import asyncio
import logging
import platform
import threading
from typing import Callable, Optional, Set

from .. import constants
from ..datacls import BuildTarget
from ..exceptions import EmulationSetupError, FleetBuilderError
from ..protocols import EngineProtocol

logger = logging.getLogger(__name__)

# Emulators registered by this process, shared by every EmulationSetup
_registered: Set[str] = set()
_registered_lock = threading.Lock()


def host_architecture() -> Optional[str]:
    """Architecture slug of the machine we run on, None if unrecognized."""
    return constants.HOST_MACHINE_ARCH.get(platform.machine().lower())


def is_native(target_arch: str, host_arch: Optional[str]) -> bool:
    if host_arch is None:
        return False
    return target_arch in constants.ARCH_COMPATIBILITY.get(host_arch, frozenset({host_arch}))


def reset_registered():
    """Forget what this process registered. Used by tests."""
    with _registered_lock:
        _registered.clear()


class EmulationSetup:
    """
    Registers cross-architecture handlers with the engine when the target cannot
    run natively on the host.

    Idempotent per process. Failures are always fatal: an unemulated foreign build
    would produce a broken image instead of failing.
    """

    def __init__(self, engine_provider: Callable[[], EngineProtocol], host_arch: Optional[str] = None):
        self._engine_provider = engine_provider
        self.host_arch = host_arch if host_arch is not None else host_architecture()

    def needs_emulation(self, target: BuildTarget) -> bool:
        return not is_native(target.architecture, self.host_arch)

    async def ensure(self, target: BuildTarget, force: bool = False) -> bool:
        """
        Returns True if an emulator is (now) registered for the target, False on no-op.
        """
        if not force and not self.needs_emulation(target):
            logger.debug(f"Host '{self.host_arch}' runs '{target.architecture}' natively, no emulation needed.")
            return False

        emulator = constants.ARCH_EMULATORS.get(target.architecture)
        if emulator is None:
            raise EmulationSetupError(f"No emulator known for architecture '{target.architecture}'.")

        with _registered_lock:
            if emulator in _registered:
                logger.debug(f"Emulator '{emulator}' already registered in this process.")
                return True

        logger.info(
            f"Target architecture '{target.architecture}' differs from host '{self.host_arch}', "
            f"registering '{emulator}' emulation..."
        )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._register, emulator)
        except EmulationSetupError:
            raise
        except FleetBuilderError as e:
            raise EmulationSetupError(f"Failed to register '{emulator}' emulation: {e}") from e
        logger.info(f"Emulation for '{target.architecture}' is ready.")
        return True

    def _register(self, emulator: str):
        with _registered_lock:
            if emulator in _registered:
                return
            self._engine_provider().register_emulation([emulator])
            _registered.add(emulator)
