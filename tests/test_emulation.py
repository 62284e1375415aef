import asyncio

import pytest

from fleetbuilder.builder.emulation import EmulationSetup, is_native
from fleetbuilder.datacls import BuildTarget
from fleetbuilder.exceptions import EmulationSetupError, EngineCommunicationError

from conftest import FakeEngine

ARM = BuildTarget(architecture="armv7hf", device_type="raspberrypi3")
NUC = BuildTarget(architecture="amd64", device_type="intel-nuc")


class TestNativeCheck:

    @pytest.mark.parametrize("target, host, expected", [
        ("amd64", "amd64", True),
        ("i386", "amd64", True),
        ("armv7hf", "aarch64", True),
        ("aarch64", "armv7hf", False),
        ("armv7hf", "amd64", False),
        ("amd64", None, False),
    ])
    def test_is_native(self, target, host, expected):
        assert is_native(target, host) is expected


class TestEmulationSetup:

    def test_native_target_is_a_noop(self, engine):
        setup = EmulationSetup(lambda: engine, host_arch="amd64")
        assert asyncio.run(setup.ensure(NUC)) is False
        assert engine.emulators == []

    def test_foreign_target_registers_once_per_process(self, engine):
        first = EmulationSetup(lambda: engine, host_arch="amd64")
        second = EmulationSetup(lambda: engine, host_arch="amd64")

        assert asyncio.run(first.ensure(ARM)) is True
        assert asyncio.run(first.ensure(ARM)) is True
        assert asyncio.run(second.ensure(ARM)) is True
        assert engine.emulators == ["arm"]

    def test_forced_emulation(self, engine):
        setup = EmulationSetup(lambda: engine, host_arch="amd64")
        assert asyncio.run(setup.ensure(NUC, force=True)) is True
        assert engine.emulators == ["amd64"]

    def test_engine_not_created_for_native_builds(self):
        def no_engine():
            raise AssertionError("engine must not be created")

        assert asyncio.run(EmulationSetup(no_engine, host_arch="amd64").ensure(NUC)) is False

    def test_failure_is_fatal(self):
        class BrokenEngine(FakeEngine):
            def register_emulation(self, emulators):
                raise EmulationSetupError("binfmt install failed")

        setup = EmulationSetup(lambda: BrokenEngine(), host_arch="amd64")
        with pytest.raises(EmulationSetupError):
            asyncio.run(setup.ensure(ARM))

    def test_engine_errors_become_setup_errors(self):
        class Unreachable(FakeEngine):
            def register_emulation(self, emulators):
                raise EngineCommunicationError("cannot connect to the docker daemon")

        setup = EmulationSetup(lambda: Unreachable(), host_arch="amd64")
        with pytest.raises(EmulationSetupError, match="cannot connect"):
            asyncio.run(setup.ensure(ARM))

        # a failed registration is not remembered
        engine = FakeEngine()
        assert asyncio.run(EmulationSetup(lambda: engine, host_arch="amd64").ensure(ARM)) is True
        assert engine.emulators == ["arm"]

    def test_unknown_architecture(self, engine):
        setup = EmulationSetup(lambda: engine, host_arch="amd64")
        with pytest.raises(EmulationSetupError, match="sparc"):
            asyncio.run(setup.ensure(BuildTarget(architecture="sparc", device_type="x")))
