import threading
from pathlib import Path
from typing import Dict, Optional

import pytest
import yaml

from fleetbuilder.builder.emulation import reset_registered
from fleetbuilder.datacls import FleetTarget
from fleetbuilder.exceptions import (
    DeviceTypeNotFoundError,
    EngineBuildFailure,
    EngineCommunicationError,
    FleetNotFoundError,
)


class FakeEngine:
    """
    In-memory EngineProtocol. The staged context is deleted after the build, so
    everything a test may want to look at is captured per call.
    """

    def __init__(self, fail=(), transport_failures: Optional[Dict[str, int]] = None,
                 arch: Optional[str] = None, build_hook=None):
        self.fail = set(fail)
        self.transport_failures = dict(transport_failures or {})
        self.arch = arch
        self.build_hook = build_hook
        self.calls = []
        self.attempts = []
        self.emulators = []
        self.lock = threading.Lock()

    @property
    def services(self):
        return [c['service'] for c in self.calls]

    def call_for(self, service):
        return next(c for c in self.calls if c['service'] == service)

    def build(self, context_dir, dockerfile, tags, build_args, labels, options, platform, target, on_line):
        context_dir = Path(context_dir)
        service = context_dir.name
        with self.lock:
            self.attempts.append(service)
            if self.transport_failures.get(service, 0) > 0:
                self.transport_failures[service] -= 1
                raise EngineCommunicationError("error during connect: connection reset by peer")
            self.calls.append({
                'service': service,
                'dockerfile': dockerfile,
                'dockerfile_content': (context_dir / dockerfile).read_text(),
                'files': sorted(p.relative_to(context_dir).as_posix() for p in context_dir.rglob('*') if p.is_file()),
                'tags': list(tags),
                'build_args': dict(build_args),
                'labels': dict(labels),
                'platform': platform,
                'target': target,
                'options': options,
            })
        if self.build_hook is not None:
            self.build_hook(service)
        on_line(f"Step 1/1 : building {service}")
        if service in self.fail:
            raise EngineBuildFailure(f"The command '/bin/sh -c false' returned a non-zero code: 1 ({service})")
        return f"sha256:{service}"

    def image_architecture(self, image_ref):
        return self.arch

    def register_emulation(self, emulators):
        self.emulators.extend(emulators)


class FakeResourceApi:

    def __init__(self, device_types=None, fleets=None, authenticated=True, error=None):
        self.device_types = device_types if device_types is not None else {
            "raspberrypi3": "armv7hf",
            "raspberrypi4-64": "aarch64",
            "intel-nuc": "amd64",
        }
        self.fleets = fleets or {}
        self.authenticated = authenticated
        self.error = error
        self.calls = []

    def resolve_device_type_architecture(self, device_type):
        self.calls.append(('device_type', device_type))
        if self.error is not None:
            raise self.error
        if device_type not in self.device_types:
            raise DeviceTypeNotFoundError(f"Invalid device type: {device_type}")
        return self.device_types[device_type]

    def resolve_fleet_default_device_type(self, fleet):
        self.calls.append(('fleet', fleet))
        if self.error is not None:
            raise self.error
        if fleet not in self.fleets:
            raise FleetNotFoundError(f"Fleet not found: {fleet}")
        return self.fleets[fleet]

    def is_authenticated(self):
        self.calls.append(('whoami', None))
        return self.authenticated


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture(autouse=True)
def clean_emulation_registry():
    reset_registered()
    yield
    reset_registered()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def api():
    return FakeResourceApi(fleets={
        "myorg/fleet": FleetTarget(device_type="raspberrypi4-64", architecture="aarch64", supports_multicontainer=True),
        "myorg/starter": FleetTarget(device_type="raspberrypi3", architecture="armv7hf", supports_multicontainer=False),
    })


@pytest.fixture
def compose_project(tmp_path: Path) -> Path:
    """Compose project with a `main` and a `worker` service, plus a pull-only `db`."""
    root = tmp_path / "myapp"
    compose = {
        'version': '2.1',
        'services': {
            'main': {'build': './main'},
            'worker': {
                'build': {
                    'context': './worker',
                    'args': {'WORKER_MODE': 'batch'},
                    'labels': ['io.example.role=worker'],
                },
            },
            'db': {'image': 'postgres:16'},
        },
    }
    write_tree(root, {
        'docker-compose.yml': yaml.safe_dump(compose, sort_keys=False),
        'main/Dockerfile': "FROM alpine\nCOPY . /app\n",
        'main/app.py': "print('main')\n",
        'worker/Dockerfile.template': "FROM balenalib/%%BALENA_MACHINE_NAME%%-alpine\nCOPY . /app\n",
        'worker/job.py': "print('worker')\n",
    })
    return root


@pytest.fixture
def single_project(tmp_path: Path) -> Path:
    root = tmp_path / "single"
    write_tree(root, {
        'Dockerfile': "FROM alpine\n",
        'src/index.js': "console.log('hi')\n",
    })
    return root
