from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

from .. import constants


class BuildTarget(BaseModel):
    """
    The architecture and device type every service is built for.

    Both fields are always resolved together.
    """
    model_config = ConfigDict(frozen=True)

    architecture: str
    device_type: str

    @field_validator('architecture', 'device_type')
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def platform(self) -> Optional[str]:
        """Container platform string, e.g. 'linux/arm/v7'; None for unknown architectures."""
        return constants.ARCH_PLATFORMS.get(self.architecture)


class FleetTarget(BaseModel):
    """What the resource API knows about a fleet's default device type."""
    model_config = ConfigDict(frozen=True)

    device_type: str
    architecture: str
    supports_multicontainer: Optional[bool] = None


class RegistryCredentials(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    username: str
    password: str


class RegistrySecretsModel(RootModel[Dict[str, RegistryCredentials]]):
    """Registry hostname -> credentials, as read from a secrets file."""

    @field_validator('root')
    @classmethod
    def hosts_not_blank(cls, value: Dict[str, RegistryCredentials]) -> Dict[str, RegistryCredentials]:
        for host in value:
            if not host.strip():
                raise ValueError("registry hostname must not be empty")
        return value


class BuildRequest(BaseModel):
    """
    Everything the operator asked for, before resolution and validation.

    This is the single configuration object handed to `Builder.run()`.
    """
    model_config = ConfigDict(frozen=True)

    source: Path = Path(".")
    fleet: Optional[str] = None
    device_type: Optional[str] = None
    arch: Optional[str] = None
    project_name: Optional[str] = None

    tags: Tuple[str, ...] = ()
    build_args: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    registry_secrets_path: Optional[Path] = None
    dockerfile: Optional[str] = None
    cache_from: Tuple[str, ...] = ()
    add_hosts: Tuple[str, ...] = ()

    nocache: bool = False
    squash: bool = False
    pull: bool = False
    emulated: bool = False
    multi_dockerignore: bool = False
    noparent_check: bool = False
    nologs: bool = False
    convert_eol: bool = True


class BuildOptions(BaseModel):
    """
    Normalized build configuration shared read-only by every service build.
    """
    model_config = ConfigDict(frozen=True)

    tags: Tuple[str, ...] = (constants.DEFAULT_TAG,)
    build_args: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    registry_secrets: Optional[Dict[str, RegistryCredentials]] = None
    dockerfile_override: Optional[str] = None
    dockerfile_path: Optional[str] = None
    cache_from: Tuple[str, ...] = ()
    extra_hosts: Dict[str, str] = Field(default_factory=dict)
    no_cache: bool = False
    squash: bool = False
    pull: bool = False
    multi_dockerignore: bool = False
    nologs: bool = False
    convert_eol: bool = True

    def image_tags(self, project_name: str, service_name: str) -> List[str]:
        """Full image references for one service, one per tag."""
        repo = f"{project_name}_{service_name}".lower()
        return [f"{repo}:{tag}" for tag in self.tags]
