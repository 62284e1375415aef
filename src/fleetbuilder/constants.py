from typing import Dict, Tuple

# --- Log and Debug ---
# Short aliases for module names to keep CLI/env concise
LOG_ALIAS_MAP = {
    "build": "fleetbuilder.builder.build",
    "bld": "fleetbuilder.builder.build",
    "load": "fleetbuilder.builder.loader",
    "loader": "fleetbuilder.builder.loader",
    "ign": "fleetbuilder.builder.ignore",
    "ignore": "fleetbuilder.builder.ignore",
    "arch": "fleetbuilder.builder.arch",
    "opts": "fleetbuilder.builder.assemble",
    "emu": "fleetbuilder.builder.emulation",
    "exec": "fleetbuilder.builder.executor",
    "ctx": "fleetbuilder.builder.context",
    "report": "fleetbuilder.builder.report",
    "engine": "fleetbuilder.bases.engine",
    "api": "fleetbuilder.bases.remote",
    "remote": "fleetbuilder.bases.remote",
    "conf": "fleetbuilder.config",
}

# Top-level modules within fleetbuilder for auto-prefixing
KNOWN_TOP_MODULES = {
    "builder",
    "bases",
    "datacls",
    "utils",
    "exceptions",
    "config",
    "cli",
    "protocols",
}

LOG_LEVELS_ENV = "FLEETB_LOG_LEVELS"


# --- Filenames and Paths ---
COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml")
DOCKERFILE_NAME = "Dockerfile"
DOCKERFILE_TEMPLATE_NAME = "Dockerfile.template"
DOCKERIGNORE_NAME = ".dockerignore"
PACKAGE_JSON_NAME = "package.json"
PROJECT_META_DIR = ".balena"
REGISTRY_SECRETS_CANDIDATES = ("secrets.yml", "secrets.yaml", "secrets.json")
SETTINGS_FILENAME = ".fleetbrc.yml"
SYNTHESIZED_TEMPLATE = "node"

# Service name used when the project is a single Dockerfile
DEFAULT_SERVICE_NAME = "main"
DEFAULT_TAG = "latest"


# --- Ignore rules ---
# Always applied beneath user patterns
DEFAULT_IGNORE_PATTERNS: Tuple[str, ...] = (
    ".git",
    "**/.git",
    DOCKERIGNORE_NAME,
    f"**/{DOCKERIGNORE_NAME}",
)

# Always applied above user patterns, the build needs these
FORCED_INCLUDE_PATTERNS: Tuple[str, ...] = (
    "!**/Dockerfile",
    "!**/Dockerfile.*",
    "!**/docker-compose.yml",
    "!**/docker-compose.yaml",
)


# --- Build options ---
# Build arguments the engine defines itself (BuildKit automatic platform args)
RESERVED_BUILD_ARGS = frozenset({
    "BUILDPLATFORM",
    "BUILDOS",
    "BUILDARCH",
    "BUILDVARIANT",
    "TARGETPLATFORM",
    "TARGETOS",
    "TARGETARCH",
    "TARGETVARIANT",
})

BUILD_ARG_KEY_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"
TAG_PATTERN = r"^[a-z0-9_][a-z0-9_.-]{0,127}$"
SERVICE_NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$"

DEFAULT_MAX_CONCURRENCY = 4


# --- Dockerfile templates ---
# Placeholder -> BuildTarget attribute
TEMPLATE_VARS: Dict[str, str] = {
    "%%BALENA_MACHINE_NAME%%": "device_type",
    "%%BALENA_ARCH%%": "architecture",
    "%%RESIN_MACHINE_NAME%%": "device_type",
    "%%RESIN_ARCH%%": "architecture",
}


# --- Architectures ---
# Fleet architecture slug -> container platform string
ARCH_PLATFORMS: Dict[str, str] = {
    "amd64": "linux/amd64",
    "i386": "linux/386",
    "i386-nlp": "linux/386",
    "aarch64": "linux/arm64",
    "armv7hf": "linux/arm/v7",
    "rpi": "linux/arm/v6",
}

# Architecture slug -> emulation handler name understood by the binfmt installer
ARCH_EMULATORS: Dict[str, str] = {
    "amd64": "amd64",
    "i386": "386",
    "i386-nlp": "386",
    "aarch64": "arm64",
    "armv7hf": "arm",
    "rpi": "arm",
}

# platform.machine() -> architecture slug
HOST_MACHINE_ARCH: Dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "i386",
    "i686": "i386",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv8l": "armv7hf",
    "armv7l": "armv7hf",
    "armv6l": "rpi",
}

# Host architecture -> architectures it runs natively
ARCH_COMPATIBILITY: Dict[str, frozenset] = {
    "amd64": frozenset({"amd64", "i386", "i386-nlp"}),
    "i386": frozenset({"i386", "i386-nlp"}),
    "aarch64": frozenset({"aarch64", "armv7hf", "rpi"}),
    "armv7hf": frozenset({"armv7hf", "rpi"}),
    "rpi": frozenset({"rpi"}),
}

# engine-reported image architecture -> architecture slugs it satisfies
IMAGE_ARCH_ALIASES: Dict[str, frozenset] = {
    "amd64": frozenset({"amd64"}),
    "386": frozenset({"i386", "i386-nlp"}),
    "arm64": frozenset({"aarch64"}),
    "arm": frozenset({"armv7hf", "rpi"}),
}

DEFAULT_EMULATION_IMAGE = "tonistiigi/binfmt:latest"


# --- Engine ---
# Substrings of engine errors that mean the daemon was not reachable
TRANSPORT_ERROR_MARKERS = (
    "cannot connect to the docker daemon",
    "error during connect",
    "connection reset by peer",
    "connection refused",
    "broken pipe",
    "unexpected eof",
)


# --- Remote API ---
DEFAULT_API_URL = "https://api.balena-cloud.com"
API_VERSION = "v7"
DEFAULT_REQUEST_TIMEOUT = 30
