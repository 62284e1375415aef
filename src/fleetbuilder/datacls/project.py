"""
Project data classes

A Project is the read-only result of loading a source directory: an ordered
composition of services, each either built from a context or pulled by reference.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .. import constants


class ServiceDescriptor(BaseModel):
    """
    One service of a composition.

    A service with an explicit image and no build context is pull-only and is never built.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    build_context_path: Optional[Path] = None
    dockerfile_path: Optional[str] = None
    explicit_image_ref: Optional[str] = None
    build_args: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    target: Optional[str] = None
    # name of a packaged Dockerfile template used when the context has none
    synthesized_template: Optional[str] = None

    @property
    def is_buildable(self) -> bool:
        return self.build_context_path is not None

    @model_validator(mode='after')
    def check_context_or_image(self) -> 'ServiceDescriptor':
        if self.build_context_path is None and not self.explicit_image_ref:
            raise ValueError(f"Service '{self.name}' has neither a build context nor an image.")
        return self


class Project(BaseModel):
    """A loaded project. `composition` preserves declaration order."""
    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    composition: Dict[str, ServiceDescriptor]
    compose_file: Optional[Path] = None

    @property
    def services(self) -> List[ServiceDescriptor]:
        return list(self.composition.values())

    @property
    def buildable_services(self) -> List[ServiceDescriptor]:
        return [s for s in self.composition.values() if s.is_buildable]

    @property
    def is_multicontainer(self) -> bool:
        return len(self.composition) > 1


# ----------------------
#
#  Compose file models
#
# ----------------------

class ComposeBuildModel(BaseModel):
    """The long form of a service's `build` key."""
    context: str = "."
    dockerfile: Optional[str] = None
    args: Union[Dict[str, Optional[str]], List[str]] = Field(default_factory=dict)
    labels: Union[Dict[str, str], List[str]] = Field(default_factory=dict)
    target: Optional[str] = None
    # other build keys (cache_from, network, ...) are not checked
    model_config = ConfigDict(extra="allow")


class ComposeServiceModel(BaseModel):
    build: Optional[Union[str, ComposeBuildModel]] = None
    image: Optional[str] = None
    # other `docker-compose` service config, we won't check
    model_config = ConfigDict(extra="allow")

    @model_validator(mode='after')
    def check_build_or_image(self) -> 'ComposeServiceModel':
        if self.build is None and not self.image:
            raise ValueError("A service must have either a 'build' or an 'image' key.")
        return self


class ComposeModel(BaseModel):
    """Top level of a compose file."""
    version: Optional[str] = None
    services: Dict[str, ComposeServiceModel]
    model_config = ConfigDict(extra="allow")

    @field_validator('version', mode='before')
    @classmethod
    def stringify_version(cls, value):
        return None if value is None else str(value)

    @model_validator(mode='after')
    def validate_service_names(self) -> 'ComposeModel':
        if not self.services:
            raise ValueError("The compose file declares no services.")
        pattern = re.compile(constants.SERVICE_NAME_PATTERN)
        for name in self.services:
            if not pattern.fullmatch(name):
                raise ValueError(f"Invalid service name '{name}'.")
        return self
