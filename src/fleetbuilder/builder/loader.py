import os
import re
import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import ValidationError

from .. import constants
from ..datacls import ComposeModel, ComposeBuildModel, Project, ServiceDescriptor
from ..exceptions import (
    ConfigParsingError,
    ConfigValidationError,
    ProjectNotFoundError,
)
from ..utils import normalize_to_dict
from .template import has_any_dockerfile

logger = logging.getLogger(__name__)


def find_compose_file(directory: Path) -> Optional[Path]:
    for name in constants.COMPOSE_FILENAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def normalize_project_name(name: str) -> str:
    """Lower-case, with anything outside [a-z0-9_-] replaced by '_'."""
    normalized = re.sub(r"[^a-z0-9_-]", "_", name.strip().lower())
    return normalized or "project"


class ProjectLoader:
    """
    Locates and parses the project in a source directory.

    Searched in order:
        1. a compose file, every declared service becomes a descriptor
        2. a Dockerfile (or an explicit override), one implicit service
        3. a package.json, one implicit service with a synthesized Dockerfile
    Reads the filesystem only.
    """

    def __init__(
        self,
        source: Path,
        project_name: Optional[str] = None,
        dockerfile: Optional[str] = None,
        noparent_check: bool = False,
    ):
        self.source = Path(source)
        self.project_name = project_name
        self.dockerfile = dockerfile
        self.noparent_check = noparent_check

    def load(self) -> Project:
        path = self.source.resolve()
        if not path.is_dir():
            raise ProjectNotFoundError(f"Project directory '{self.source}' does not exist or is not a directory.")
        logger.info(f"Loading project from '{path}'...")

        compose_file = find_compose_file(path)
        if compose_file is not None:
            return self._from_compose(path, compose_file)

        self._check_parent(path)

        service = self._single_service(path)
        name = normalize_project_name(self.project_name or path.name)
        logger.info(f"Project '{name}' is a single-container project.")
        return Project(path=path, name=name, composition={service.name: service})

    def _check_parent(self, path: Path):
        if self.noparent_check:
            return
        parent_compose = find_compose_file(path.parent)
        if parent_compose is not None and path.parent != path:
            raise ProjectNotFoundError(
                f"'{path}' has no compose file, but its parent directory has one ('{parent_compose}'). "
                "Is the source directory correct? Use --noparent-check to build this directory anyway."
            )

    def _single_service(self, path: Path) -> ServiceDescriptor:
        name = constants.DEFAULT_SERVICE_NAME
        if self.dockerfile:
            if not (path / self.dockerfile).is_file():
                raise ProjectNotFoundError(f"Dockerfile '{self.dockerfile}' not found in '{path}'.")
            return ServiceDescriptor(name=name, build_context_path=path, dockerfile_path=self.dockerfile)

        if has_any_dockerfile(path):
            return ServiceDescriptor(name=name, build_context_path=path)

        if (path / constants.PACKAGE_JSON_NAME).is_file():
            logger.info(
                f"No Dockerfile found in '{path}', generating a default one "
                f"for a '{constants.SYNTHESIZED_TEMPLATE}' project."
            )
            return ServiceDescriptor(
                name=name,
                build_context_path=path,
                dockerfile_path=constants.DOCKERFILE_TEMPLATE_NAME,
                synthesized_template=constants.SYNTHESIZED_TEMPLATE,
            )

        raise ProjectNotFoundError(
            f"No compose file, Dockerfile or package.json found in '{path}'. Nothing to build."
        )

    def _read_compose(self, compose_file: Path) -> ComposeModel:
        try:
            raw = yaml.safe_load(compose_file.read_text(encoding="utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise ConfigParsingError(f"Error parsing compose file '{compose_file}': {e}")
        if not isinstance(raw, dict):
            raise ConfigParsingError(f"Compose file '{compose_file}' must contain a mapping.")
        try:
            return ComposeModel.model_validate(raw)
        except ValidationError as e:
            raise ConfigValidationError(f"Compose file '{compose_file}' is invalid:\n{e}")

    def _from_compose(self, path: Path, compose_file: Path) -> Project:
        logger.debug(f"Found compose file '{compose_file}'")
        model = self._read_compose(compose_file)

        declared_name = (model.model_extra or {}).get("name")
        name = normalize_project_name(self.project_name or declared_name or path.name)

        composition: Dict[str, ServiceDescriptor] = {}
        for service_name, service in model.services.items():
            composition[service_name] = self._descriptor(path, service_name, service.build, service.image)
            logger.debug(f"Service '{service_name}': {composition[service_name].model_dump(exclude_none=True)}")

        buildable = sum(1 for s in composition.values() if s.is_buildable)
        logger.info(
            f"Project '{name}' declares {len(composition)} service(s), {buildable} to build."
        )
        return Project(path=path, name=name, composition=composition, compose_file=compose_file)

    def _descriptor(self, path: Path, name: str, build, image: Optional[str]) -> ServiceDescriptor:
        if build is None:
            return ServiceDescriptor(name=name, explicit_image_ref=image)

        if isinstance(build, str):
            build = ComposeBuildModel(context=build)

        context = (path / build.context).resolve()
        if not context.is_dir():
            raise ConfigValidationError(f"Build context '{build.context}' of service '{name}' is not a directory.")

        return ServiceDescriptor(
            name=name,
            build_context_path=context,
            dockerfile_path=build.dockerfile,
            explicit_image_ref=image,
            build_args=self._compose_args(name, build.args),
            labels={k: str(v) for k, v in normalize_to_dict(build.labels).items() if v is not None},
            target=build.target,
        )

    @staticmethod
    def _compose_args(service: str, args) -> Dict[str, str]:
        """Compose build args; a bare `KEY` takes its value from the environment."""
        resolved = {}
        for key, value in normalize_to_dict(args).items():
            if value is None:
                value = os.environ.get(key)
                if value is None:
                    logger.debug(f"Build arg '{key}' of service '{service}' is unset in the environment, skipping.")
                    continue
            resolved[key] = str(value)
        return resolved
