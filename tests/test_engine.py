import base64
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from python_on_whales.exceptions import DockerException

from fleetbuilder.bases import engine as engine_module
from fleetbuilder.bases.engine import DockerEngine, EngineConnection, registry_config_dir
from fleetbuilder.config import Settings
from fleetbuilder.datacls import BuildOptions, RegistryCredentials
from fleetbuilder.exceptions import EmulationSetupError, EngineBuildFailure, EngineCommunicationError

SECRETS = {"registry.example.com": RegistryCredentials(username="user", password="pass")}


@pytest.fixture
def client(monkeypatch):
    client = MagicMock()
    client.buildx.build.return_value = iter(["#1 [internal] load build definition\n", "#2 DONE 0.1s\n"])
    client.image.inspect.return_value.id = "sha256:abc"
    factory = MagicMock(return_value=client)
    monkeypatch.setattr(engine_module, "DockerClient", factory)
    client.factory = factory
    return client


def build(engine, tmp_path, options=None, lines=None):
    return engine.build(
        context_dir=tmp_path,
        dockerfile="Dockerfile",
        tags=["app_main:latest"],
        build_args={"A": "1"},
        labels={"team": "core"},
        options=options or BuildOptions(),
        platform="linux/arm/v7",
        target=None,
        on_line=(lines.append if lines is not None else (lambda line: None)),
    )


class TestConnection:

    def test_default(self):
        assert EngineConnection().client_kwargs() == {}
        assert EngineConnection().client_kwargs("ssh://builder") == {'host': "ssh://builder"}

    def test_socket(self):
        assert EngineConnection(socket_path="/var/run/docker.sock").docker_host() == "unix:///var/run/docker.sock"

    def test_tcp_with_tls(self, tmp_path):
        ca = tmp_path / "ca.pem"
        kwargs = EngineConnection(host="10.0.0.5", ca=ca).client_kwargs()
        assert kwargs['host'] == "tcp://10.0.0.5:2376"
        assert kwargs['tls'] is True
        assert kwargs['tlscacert'] == ca

    def test_tcp_plain_port(self):
        assert EngineConnection(host="builder", port=1234).docker_host() == "tcp://builder:1234"
        assert EngineConnection(host="builder").docker_host() == "tcp://builder:2375"


class TestRegistryConfig:

    def test_no_secrets(self):
        with registry_config_dir(None) as config_dir:
            assert config_dir is None

    def test_merges_existing_auths(self, tmp_path):
        base = tmp_path / "docker"
        base.mkdir()
        (base / "config.json").write_text(json.dumps({
            "auths": {"other.example.com": {"auth": "xyz"}},
            "credsStore": "desktop",
        }))

        with registry_config_dir(SECRETS, base_dir=base) as config_dir:
            config = json.loads((config_dir / "config.json").read_text())
            created = Path(config_dir)

        assert "credsStore" not in config
        assert config["auths"]["other.example.com"] == {"auth": "xyz"}
        token = config["auths"]["registry.example.com"]["auth"]
        assert base64.b64decode(token).decode() == "user:pass"
        assert not created.exists()


class TestBuild:

    def test_buildx_invocation(self, client, tmp_path):
        lines = []
        image_id = build(DockerEngine(), tmp_path, BuildOptions(no_cache=True, pull=True), lines)

        assert image_id == "sha256:abc"
        assert lines == ["#1 [internal] load build definition", "#2 DONE 0.1s"]
        kwargs = client.buildx.build.call_args.kwargs
        assert kwargs['platforms'] == ["linux/arm/v7"]
        assert kwargs['file'] == tmp_path / "Dockerfile"
        assert kwargs['cache'] is False
        assert kwargs['pull'] is True
        assert kwargs['load'] is True
        assert kwargs['stream_logs'] is True
        client.image.inspect.assert_called_with("app_main:latest")

    def test_registry_secrets_reach_the_client(self, client, tmp_path, monkeypatch):
        monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "no-docker-config"))
        seen = {}

        def capture(**kwargs):
            config_dir = kwargs.get('config')
            seen['auths'] = json.loads((Path(config_dir) / "config.json").read_text())["auths"]
            return client

        client.factory.side_effect = capture

        build(DockerEngine(), tmp_path, BuildOptions(registry_secrets=SECRETS))

        assert "registry.example.com" in seen['auths']

    def test_transport_error(self, client, tmp_path):
        client.buildx.build.side_effect = DockerException(
            ["docker", "buildx", "build"], 1,
            stderr=b"Cannot connect to the Docker daemon at unix:///var/run/docker.sock",
        )
        with pytest.raises(EngineCommunicationError):
            build(DockerEngine(), tmp_path)

    def test_build_failure(self, client, tmp_path):
        client.buildx.build.side_effect = DockerException(
            ["docker", "buildx", "build"], 1,
            stderr=b"#5 ERROR: process did not complete successfully\nERROR: failed to solve: exit code: 1",
        )
        with pytest.raises(EngineBuildFailure, match="failed to solve"):
            build(DockerEngine(), tmp_path)

    def test_docker_host_from_settings(self, client, tmp_path):
        build(DockerEngine(settings=Settings(docker_host="tcp://builder:2375")), tmp_path)
        assert client.factory.call_args.kwargs['host'] == "tcp://builder:2375"


class TestEmulation:

    def test_binfmt_install(self, client):
        DockerEngine().register_emulation(["arm", "arm"])
        client.run.assert_called_once_with(
            "tonistiigi/binfmt:latest", ["--install", "arm"], privileged=True, remove=True,
        )

    def test_failure(self, client):
        client.run.side_effect = DockerException(["docker", "run"], 1, stderr=b"permission denied")
        with pytest.raises(EmulationSetupError):
            DockerEngine().register_emulation(["arm64"])


def test_image_architecture(client):
    client.image.inspect.return_value.architecture = "arm"
    assert DockerEngine().image_architecture("app_main:latest") == "arm"
