import ipaddress
import json
import logging
import re
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml
from pydantic import ValidationError

from .. import constants
from ..datacls import BuildOptions, BuildRequest, BuildTarget, Project, RegistryCredentials, RegistrySecretsModel
from ..exceptions import InvalidBuildOptionsError, ProjectNotFoundError
from ..utils import DeferredMessages, parse_key_values
from .template import discover_dockerfile, dockerfile_candidates

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(constants.TAG_PATTERN)
_ARG_RE = re.compile(constants.BUILD_ARG_KEY_PATTERN)


def normalize_tags(tags) -> Tuple[str, ...]:
    normalized = []
    for raw in tags or ():
        tag = raw.strip().lower()
        if not tag:
            continue
        if not _TAG_RE.fullmatch(tag):
            raise InvalidBuildOptionsError("tag", f"'{raw}' is not a valid image tag")
        if tag not in normalized:
            normalized.append(tag)
    return tuple(normalized) or (constants.DEFAULT_TAG,)


def validate_build_args(build_args: Dict[str, str]) -> Dict[str, str]:
    for key in build_args:
        if not _ARG_RE.fullmatch(key):
            raise InvalidBuildOptionsError("buildArg", f"'{key}' is not a valid build argument name")
        if key.upper() in constants.RESERVED_BUILD_ARGS:
            raise InvalidBuildOptionsError("buildArg", f"'{key}' is reserved by the container engine")
    return build_args


def parse_extra_hosts(items) -> Dict[str, str]:
    """`host:ip` pairs; the ip may itself contain ':' (IPv6)."""
    hosts = {}
    for item in items or ():
        host, sep, address = item.partition(":")
        if not sep or not host.strip():
            raise InvalidBuildOptionsError("add-host", f"'{item}' is not in HOST:IP form")
        try:
            ipaddress.ip_address(address.strip())
        except ValueError:
            raise InvalidBuildOptionsError("add-host", f"'{address}' is not a valid IP address")
        hosts[host.strip()] = address.strip()
    return hosts


def load_registry_secrets(path: Path) -> Dict[str, RegistryCredentials]:
    """
    Reads a registry secrets file (JSON, or YAML for .yml/.yaml) keyed by registry host.
    """
    field = "registry-secrets"
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidBuildOptionsError(field, f"cannot read '{path}': {e}")
    except UnicodeDecodeError as e:
        raise InvalidBuildOptionsError(field, f"'{path}' is not UTF-8 text: {e}")

    try:
        if path.suffix.lower() in (".yml", ".yaml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise InvalidBuildOptionsError(field, f"'{path}' is not well-formed: {e}")

    if data is None:
        data = {}
    try:
        return RegistrySecretsModel.model_validate(data).root
    except ValidationError as e:
        raise InvalidBuildOptionsError(field, f"'{path}' must map registry hostnames to {{username, password}}:\n{e}")


class BuildOptionAssembler:
    """
    Merges the operator's build parameters into one validated BuildOptions.

    Pure apart from reading the registry secrets file; raises
    InvalidBuildOptionsError naming the offending field.
    """

    def __init__(self, request: BuildRequest, project: Project, target: BuildTarget,
                 deferred: Optional[DeferredMessages] = None):
        self.request = request
        self.project = project
        self.target = target
        self.deferred = deferred if deferred is not None else DeferredMessages()

    def assemble(self) -> BuildOptions:
        logger.debug("Assembling build options...")
        if self.target.platform is None:
            raise InvalidBuildOptionsError(
                "arch",
                f"unknown architecture '{self.target.architecture}', "
                f"expected one of {', '.join(constants.ARCH_PLATFORMS)}",
            )

        try:
            build_args = parse_key_values(self.request.build_args)
        except ValueError as e:
            raise InvalidBuildOptionsError("buildArg", str(e))
        try:
            labels = parse_key_values(self.request.labels)
        except ValueError as e:
            raise InvalidBuildOptionsError("label", str(e))
        if any(not key for key in labels):
            raise InvalidBuildOptionsError("label", "label keys must not be empty")

        if self.request.squash:
            self.deferred.warn("--squash is not supported by the build engine and was ignored.")

        options = BuildOptions(
            tags=normalize_tags(self.request.tags),
            build_args=validate_build_args(build_args),
            labels=labels,
            registry_secrets=self._registry_secrets(),
            dockerfile_override=self.request.dockerfile,
            dockerfile_path=self._dockerfile_path(),
            cache_from=tuple(self.request.cache_from),
            extra_hosts=parse_extra_hosts(self.request.add_hosts),
            no_cache=self.request.nocache,
            squash=self.request.squash,
            pull=self.request.pull,
            multi_dockerignore=self.request.multi_dockerignore,
            nologs=self.request.nologs,
            convert_eol=self.request.convert_eol,
        )
        logger.debug(f"Build options: {options.model_dump(exclude={'registry_secrets'})}")
        return options

    def _registry_secrets(self) -> Optional[Dict[str, RegistryCredentials]]:
        path = self.request.registry_secrets_path
        if path is not None:
            path = Path(path)
            if not path.is_file():
                raise InvalidBuildOptionsError("registry-secrets", f"file '{path}' not found")
        else:
            path = self._discover_registry_secrets()
            if path is None:
                return None
        secrets = load_registry_secrets(path)
        logger.info(f"Using registry secrets from '{path}' for {len(secrets)} registr{'y' if len(secrets) == 1 else 'ies'}")
        return secrets

    def _discover_registry_secrets(self) -> Optional[Path]:
        meta = self.project.path / constants.PROJECT_META_DIR
        for name in constants.REGISTRY_SECRETS_CANDIDATES:
            if (meta / name).is_file():
                return meta / name
        return None

    def _dockerfile_path(self) -> Optional[str]:
        override = self.request.dockerfile
        if self.project.compose_file is not None:
            if override:
                self.deferred.warn(
                    f"--dockerfile '{override}' was ignored: compose projects set dockerfiles per service."
                )
            return None
        if override:
            if Path(override).is_absolute():
                raise InvalidBuildOptionsError("dockerfile", "must be relative to the project directory")
            candidate = (self.project.path / override).resolve()
            try:
                candidate.relative_to(self.project.path.resolve())
            except ValueError:
                raise InvalidBuildOptionsError("dockerfile", f"'{override}' lies outside the project directory")
            if not candidate.is_file():
                raise InvalidBuildOptionsError("dockerfile", f"'{override}' not found")
            return override
        found = discover_dockerfile(self.project.path, self.target)
        if found is None and not any(s.synthesized_template for s in self.project.services):
            raise ProjectNotFoundError(
                f"No Dockerfile for {self.target.device_type}/{self.target.architecture} in "
                f"'{self.project.path}' (looked for: {', '.join(dockerfile_candidates(self.target))})."
            )
        return found
