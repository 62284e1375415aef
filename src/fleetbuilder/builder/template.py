"""
Dockerfile discovery and template rendering.

A service directory may hold several Dockerfile variants; the most specific one
for the build target wins:

    Dockerfile.<deviceType>  >  Dockerfile.<arch>  >  Dockerfile.template  >  Dockerfile

Template placeholders (see `constants.TEMPLATE_VARS`) are replaced with the
target's device type and architecture.
"""

import logging
from importlib import resources
from pathlib import Path
from typing import List, Optional

from .. import constants
from ..datacls import BuildTarget
from ..exceptions import ProjectNotFoundError

logger = logging.getLogger(__name__)


def dockerfile_candidates(target: BuildTarget) -> List[str]:
    return [
        f"{constants.DOCKERFILE_NAME}.{target.device_type}",
        f"{constants.DOCKERFILE_NAME}.{target.architecture}",
        constants.DOCKERFILE_TEMPLATE_NAME,
        constants.DOCKERFILE_NAME,
    ]


def discover_dockerfile(directory: Path, target: BuildTarget) -> Optional[str]:
    """Name of the Dockerfile to use in `directory`, or None when there is none."""
    for name in dockerfile_candidates(target):
        if (directory / name).is_file():
            logger.debug(f"Selected '{name}' in '{directory}' for {target.device_type}/{target.architecture}")
            return name
    return None


def has_any_dockerfile(directory: Path) -> bool:
    """True if `directory` holds a Dockerfile or any Dockerfile.* variant."""
    if (directory / constants.DOCKERFILE_NAME).is_file():
        return True
    return any(p.is_file() for p in directory.glob(f"{constants.DOCKERFILE_NAME}.*"))


def is_template(dockerfile: str) -> bool:
    return dockerfile.endswith(".template")


def render_template(content: str, target: BuildTarget) -> str:
    for placeholder, attr in constants.TEMPLATE_VARS.items():
        content = content.replace(placeholder, getattr(target, attr))
    return content


def load_synthesized_template(kind: str) -> str:
    """Packaged Dockerfile.template used when a project ships no Dockerfile."""
    try:
        return resources.files('fleetbuilder.resources.templates').joinpath(kind).read_text(encoding='utf-8')
    except FileNotFoundError:
        raise ProjectNotFoundError(f"No default Dockerfile template available for '{kind}' projects.")
