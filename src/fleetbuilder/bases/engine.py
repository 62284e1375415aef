"""
Fleet Builder Docker Engine

Concrete EngineProtocol backed by `python_on_whales`. Builds go through buildx so
the target platform can differ from the host's.

Registry secrets are never passed on a command line: each build that needs them
gets a throw-away docker config directory whose `config.json` carries the
credentials next to whatever the user already has configured.
"""

import base64
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict
from python_on_whales import DockerClient
from python_on_whales.exceptions import DockerException, NoSuchImage
from typing_extensions import override

from .. import constants
from ..config import Settings
from ..datacls import BuildOptions, RegistryCredentials
from ..exceptions import (
    EmulationSetupError,
    EngineBuildFailure,
    EngineCommunicationError,
)
from ..protocols import EngineProtocol

logger = logging.getLogger(__name__)

DOCKER_CONFIG_ENV = "DOCKER_CONFIG"
DEFAULT_DOCKER_PORT = 2375
DEFAULT_DOCKER_TLS_PORT = 2376


class EngineConnection(BaseModel):
    """How to reach the docker daemon, from the --docker/--dockerHost/... flags."""
    model_config = ConfigDict(frozen=True)

    socket_path: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    ca: Optional[Path] = None
    cert: Optional[Path] = None
    key: Optional[Path] = None

    @property
    def tls(self) -> bool:
        return any(p is not None for p in (self.ca, self.cert, self.key))

    def docker_host(self, default: Optional[str] = None) -> Optional[str]:
        if self.socket_path:
            return f"unix://{self.socket_path}"
        if self.host:
            port = self.port or (DEFAULT_DOCKER_TLS_PORT if self.tls else DEFAULT_DOCKER_PORT)
            return f"tcp://{self.host}:{port}"
        return default

    def client_kwargs(self, default_host: Optional[str] = None) -> Dict:
        kwargs = {}
        host = self.docker_host(default_host)
        if host:
            kwargs['host'] = host
        if self.tls:
            kwargs['tls'] = True
            kwargs['tlsverify'] = self.ca is not None
            if self.ca:
                kwargs['tlscacert'] = self.ca
            if self.cert:
                kwargs['tlscert'] = self.cert
            if self.key:
                kwargs['tlskey'] = self.key
        return kwargs


def is_transport_error(error: DockerException) -> bool:
    text = f"{error} {getattr(error, 'stderr', '') or ''}".lower()
    return any(marker in text for marker in constants.TRANSPORT_ERROR_MARKERS)


def user_docker_config_dir() -> Path:
    configured = os.environ.get(DOCKER_CONFIG_ENV)
    return Path(configured) if configured else Path.home() / ".docker"


def registry_auths(secrets: Dict[str, RegistryCredentials]) -> Dict[str, Dict[str, str]]:
    """`auths` section of a docker config.json for the given credentials."""
    auths = {}
    for host, creds in secrets.items():
        token = base64.b64encode(f"{creds.username}:{creds.password}".encode("utf-8")).decode("ascii")
        auths[host] = {"auth": token}
    return auths


@contextmanager
def registry_config_dir(secrets: Optional[Dict[str, RegistryCredentials]],
                        base_dir: Optional[Path] = None) -> Iterator[Optional[Path]]:
    """
    Yields a temporary docker config directory carrying `secrets`, or None when
    there are no secrets. The user's existing auths and CLI plugins stay available.
    """
    if not secrets:
        yield None
        return

    base_dir = base_dir or user_docker_config_dir()
    config: Dict = {}
    existing = base_dir / "config.json"
    if existing.is_file():
        try:
            config = json.loads(existing.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable docker config '{existing}': {e}")
            config = {}
    # credential helpers would shadow the injected auths
    config.pop("credsStore", None)
    config["auths"] = {**config.get("auths", {}), **registry_auths(secrets)}

    with tempfile.TemporaryDirectory(prefix="fleetb-docker-") as tmp:
        tmp_path = Path(tmp)
        (tmp_path / "config.json").write_text(json.dumps(config), encoding="utf-8")
        plugins = base_dir / "cli-plugins"
        if plugins.is_dir():
            try:
                (tmp_path / "cli-plugins").symlink_to(plugins, target_is_directory=True)
            except OSError as e:
                logger.debug(f"Could not link docker CLI plugins: {e}")
        logger.debug(f"Using temporary docker config with {len(secrets)} registry credential(s)")
        yield tmp_path


def _cache_from(refs) -> Optional[object]:
    if not refs:
        return None
    if len(refs) == 1:
        return refs[0]
    return [{"type": "registry", "ref": ref} for ref in refs]


class DockerEngine(EngineProtocol):
    """
    Drives the local (or remote) docker daemon.

    One DockerClient per call: registry secrets need a per-build config directory.
    """

    def __init__(self, connection: Optional[EngineConnection] = None, settings: Optional[Settings] = None):
        self.connection = connection or EngineConnection()
        self.settings = settings or Settings()
        self._client_kwargs = self.connection.client_kwargs(self.settings.docker_host)
        logger.debug(f"DockerEngine using {self._client_kwargs.get('host', 'the default docker host')}")

    def client(self, config_dir: Optional[Path] = None) -> DockerClient:
        kwargs = dict(self._client_kwargs)
        if config_dir is not None:
            kwargs['config'] = config_dir
        return DockerClient(**kwargs)

    @override
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
        with registry_config_dir(options.registry_secrets) as config_dir:
            client = self.client(config_dir)
            try:
                stream = client.buildx.build(
                    context_dir,
                    file=Path(context_dir) / dockerfile,
                    tags=tags,
                    build_args=build_args,
                    labels=labels,
                    platforms=[platform] if platform else None,
                    target=target,
                    pull=options.pull,
                    cache=not options.no_cache,
                    cache_from=_cache_from(options.cache_from),
                    add_hosts=dict(options.extra_hosts),
                    load=True,
                    progress="plain",
                    stream_logs=True,
                )
                for line in stream:
                    on_line(line.rstrip("\n"))
                return client.image.inspect(tags[0]).id
            except DockerException as e:
                if is_transport_error(e):
                    raise EngineCommunicationError(str(e).strip()) from e
                raise EngineBuildFailure(self._failure_message(e)) from e

    @staticmethod
    def _failure_message(error: DockerException) -> str:
        stderr = (getattr(error, 'stderr', None) or "").strip()
        if stderr:
            return stderr.splitlines()[-1]
        return str(error).strip()

    @override
    def image_architecture(self, image_ref: str) -> Optional[str]:
        try:
            return self.client().image.inspect(image_ref).architecture
        except NoSuchImage:
            return None
        except DockerException as e:
            if is_transport_error(e):
                raise EngineCommunicationError(str(e).strip()) from e
            logger.debug(f"Could not inspect '{image_ref}': {e}")
            return None

    @override
    def register_emulation(self, emulators: Iterable[str]) -> None:
        emulators = sorted(set(emulators))
        if not emulators:
            return
        image = self.settings.emulation_image
        logger.debug(f"Installing emulators {emulators} with '{image}'")
        try:
            self.client().run(
                image,
                ["--install", ",".join(emulators)],
                privileged=True,
                remove=True,
            )
        except DockerException as e:
            raise EmulationSetupError(f"Could not install emulators {', '.join(emulators)}: {e}") from e
