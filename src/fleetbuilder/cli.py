import click
import logging
import traceback
import asyncio
import functools
from pathlib import Path

from .config import load_settings
from .builder import Builder
from .bases import DockerEngine, EngineConnection, HttpResourceApi
from .datacls import BuildRequest
from .utils import setup_logger, parse_module_levels
from .exceptions import (
    FleetBuilderError,
    ConfigurationError,
    DefinitionError,
    ResolutionError,
    BuildError,
    RemoteApiError,
)
from . import __version__

BUILD_ARG_DEPRECATION = (
    "The --buildArg option is deprecated and will be removed in a future release. "
    "Declare build arguments in the compose file instead."
)


def setup_logging(debug: bool, log_levels: str = None, log_file: str = None):
    """Setup logger with debug and module-level configuration"""
    setup_logger(debug=debug, module_levels=parse_module_levels(log_levels), log_file=log_file)


def handle_errors(func):
    """Decorator to handle common exceptions"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigurationError as e:
            _abort(f"Configuration error: {e}")
        except DefinitionError as e:
            _abort(f"Definition error: {e}")
        except ResolutionError as e:
            _abort(f"Resolution error: {e}")
        except BuildError as e:
            _abort(f"Build error: {e}")
        except RemoteApiError as e:
            _abort(f"Resource API error: {e}")
        except FleetBuilderError as e:
            _abort(f"An unexpected application error occurred: {e}")
        except FileNotFoundError as e:
            _abort(f"A required file was not found: {e}")
        except click.ClickException:
            raise
        except click.Abort:
            raise
        except Exception as e:
            _abort(f"An unexpected error occurred: {e}")
    return wrapper


def _abort(message: str):
    logging.error(message)
    ctx = click.get_current_context(silent=True)
    if ctx is not None and (ctx.obj or {}).get('debug'):
        traceback.print_exc()
    raise click.Abort()


@handle_errors
def do_build(settings, request: BuildRequest, connection: EngineConnection):
    """Execute build command"""
    if request.build_args:
        logging.warning(BUILD_ARG_DEPRECATION)

    builder = Builder(
        request,
        settings=settings,
        api_factory=lambda: HttpResourceApi(settings),
        engine_factory=lambda: DockerEngine(connection, settings),
    )
    try:
        asyncio.run(builder.run())
    except KeyboardInterrupt:
        logging.error("Build cancelled")
        raise click.Abort()


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('-l', '--log-levels', help="Comma-separated per-module log levels (e.g., 'exec=DEBUG,api=INFO')")
@click.option('--log-file', help='Path to log file')
@click.option('-c', '--config', 'config_files', multiple=True, type=click.Path(dir_okay=False),
              help='Settings file(s) to use instead of ~/.fleetbrc.yml and ./.fleetbrc.yml')
@click.version_option(version=__version__, prog_name='fleetbuilder')
@click.pass_context
def cli(ctx, debug, log_levels, log_file, config_files):
    """Fleet Builder - Build multi-container fleet projects locally

    \b
    Examples:
      fleetb build -d raspberrypi3                 Resolve the arch and build ./
      fleetb build ./app -d intel-nuc -A amd64     Build offline
      fleetb build -f myorg/myfleet -t v2          Build for a fleet's device type
    """
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    setup_logging(debug, log_levels, log_file)
    ctx.obj['settings'] = _settings(config_files)
    file_levels = ctx.obj['settings'].log_levels
    if not log_levels and file_levels:
        setup_logging(debug, file_levels, log_file)


@handle_errors
def _settings(config_files):
    return load_settings([Path(p) for p in config_files] if config_files else None)


@cli.command()
@click.argument('source', required=False, default='.', type=click.Path(file_okay=False))
@click.option('-A', '--arch', help='The architecture to build for')
@click.option('-d', '--deviceType', 'device_type', help='The type of device this build is for')
@click.option('-f', '--fleet', help='Fleet (name or slug) whose device type to build for')
@click.option('-e', '--emulated', is_flag=True, help='Force cross-architecture emulation')
@click.option('--dockerfile', help='Alternative Dockerfile name/path, relative to the source folder')
@click.option('--nologs', is_flag=True, help='Hide the image build log output')
@click.option('-m', '--multi-dockerignore', 'multi_dockerignore', is_flag=True,
              help="Have each service use its own .dockerignore file")
@click.option('--noparent-check', 'noparent_check', is_flag=True,
              help="Disable project validation check of 'docker-compose.yml' file in parent folder")
@click.option('-R', '--registry-secrets', 'registry_secrets', type=click.Path(dir_okay=False),
              help='Path to a YAML or JSON file with passwords for a private Docker registry')
@click.option('--noconvert-eol', 'noconvert_eol', is_flag=True,
              help="Don't convert line endings from CRLF (Windows format) to LF (Unix format)")
@click.option('-n', '--projectName', 'project_name', help='Name prefix for the built images')
@click.option('-t', '--tag', 'tags', multiple=True, help='Tag for the built images (repeatable)')
@click.option('-B', '--buildArg', 'build_args', multiple=True, help='[Deprecated] KEY=VALUE build argument (repeatable)')
@click.option('--label', 'labels', multiple=True, help='KEY=VALUE image label (repeatable)')
@click.option('--cache-from', 'cache_from', multiple=True, help='Image to consider as cache source (repeatable)')
@click.option('--nocache', is_flag=True, help="Don't use the build cache")
@click.option('--pull', is_flag=True, help='Always pull newer versions of base images')
@click.option('--squash', is_flag=True, help='Squash newly built layers into a single layer')
@click.option('--add-host', 'add_hosts', multiple=True, help='HOST:IP mapping added to the build containers (repeatable)')
@click.option('-P', '--docker', 'docker_socket', help='Path to a local docker socket')
@click.option('-h', '--dockerHost', 'docker_host', help='Docker daemon hostname or IP address')
@click.option('-p', '--dockerPort', 'docker_port', type=int, help='Docker daemon TCP port number')
@click.option('--ca', type=click.Path(exists=True, dir_okay=False), help='Docker host TLS certificate authority file')
@click.option('--cert', type=click.Path(exists=True, dir_okay=False), help='Docker host TLS certificate file')
@click.option('--key', type=click.Path(exists=True, dir_okay=False), help='Docker host TLS key file')
@click.pass_context
def build(ctx, source, arch, device_type, fleet, emulated, dockerfile, nologs, multi_dockerignore,
          noparent_check, registry_secrets, noconvert_eol, project_name, tags, build_args, labels,
          cache_from, nocache, pull, squash, add_hosts, docker_socket, docker_host, docker_port,
          ca, cert, key):
    """Build a single image or a multi-container project locally

    \b
    Exactly one of --fleet, or --deviceType (and optionally --arch) is required.
    """
    request = BuildRequest(
        source=Path(source),
        fleet=fleet,
        device_type=device_type,
        arch=arch,
        project_name=project_name,
        tags=tags,
        build_args=build_args,
        labels=labels,
        registry_secrets_path=Path(registry_secrets) if registry_secrets else None,
        dockerfile=dockerfile,
        cache_from=cache_from,
        add_hosts=add_hosts,
        nocache=nocache,
        squash=squash,
        pull=pull,
        emulated=emulated,
        multi_dockerignore=multi_dockerignore,
        noparent_check=noparent_check,
        nologs=nologs,
        convert_eol=not noconvert_eol,
    )
    connection = EngineConnection(
        socket_path=docker_socket,
        host=docker_host,
        port=docker_port,
        ca=ca,
        cert=cert,
        key=key,
    )
    do_build(ctx.obj['settings'], request, connection)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
