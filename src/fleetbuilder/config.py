import os
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import constants
from .utils import merge_layers
from .exceptions import (
    ConfigFileMissingError,
    ConfigParsingError,
    ConfigValidationError,
)

logger = logging.getLogger(__name__)

# environment variable -> settings field
ENV_OVERRIDES = {
    "FLEETB_API_URL": "api_url",
    "FLEETB_API_TOKEN": "api_token",
    "FLEETB_DOCKER_HOST": "docker_host",
    "FLEETB_MAX_CONCURRENCY": "max_concurrency",
    constants.LOG_LEVELS_ENV: "log_levels",
}


class Settings(BaseModel):
    """
        Class Config-Validation Model for the user settings file (`.fleetbrc.yml`)
    """
    api_url: str = constants.DEFAULT_API_URL
    api_token: Optional[str] = None
    request_timeout: float = Field(constants.DEFAULT_REQUEST_TIMEOUT, gt=0)
    docker_host: Optional[str] = None
    max_concurrency: int = Field(constants.DEFAULT_MAX_CONCURRENCY, ge=1)
    emulation_image: str = constants.DEFAULT_EMULATION_IMAGE
    log_levels: Optional[str] = None
    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator('api_url')
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip('/')
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"'{value}' is not an http(s) URL")
        return value

    @field_validator('api_token', 'docker_host', 'log_levels', mode='before')
    @classmethod
    def empty_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


def default_settings_paths() -> List[Path]:
    """User-wide file first, then the one in the working directory (wins)."""
    return [Path.home() / constants.SETTINGS_FILENAME, Path.cwd() / constants.SETTINGS_FILENAME]


def _read_settings_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigFileMissingError(f"Settings file not found at: {path}")
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigParsingError(f"Error parsing settings file '{path}': {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParsingError(f"Settings file '{path}' must be a YAML document containing a dictionary.")
    logger.debug(f"Loaded settings from '{path}': {sorted(data)}")
    return data


def load_settings(paths: Optional[Sequence[Path]] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Builds the effective Settings.

    Files are layered in order, later files win; environment variables win over files.
    Without explicit `paths` the default locations are used and missing files are skipped;
    explicitly given paths must exist.
    """
    explicit = paths is not None
    paths = [Path(p) for p in paths] if explicit else default_settings_paths()
    environ = os.environ if environ is None else environ

    data = merge_layers(
        _read_settings_file(path) for path in paths if explicit or path.is_file()
    )

    for var, field in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is not None:
            logger.debug(f"Settings field '{field}' overridden by ${var}")
            data[field] = value

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(f"Settings validation failed:\n{e}")
    logger.debug(f"Effective settings: {settings.model_dump(exclude={'api_token'})}")
    return settings
