"""
Build Executor

Fans the buildable services of a project out to the container engine:

    - invocations are issued in project order, at most `max_concurrency` at a time
    - the engine call blocks, so it runs in a worker thread; results are recorded
      back on the event loop only
    - once a build fails (or the operator cancels) no further service is started,
      builds already in flight run to completion
    - a dropped engine connection is retried once, a failed build never is
"""

import asyncio
import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

from .. import constants
from ..datacls import BuildOptions, BuildTarget, Project, ServiceDescriptor
from ..exceptions import (
    EngineBuildFailure,
    EngineCommunicationError,
    FleetBuilderError,
    ServiceBuildError,
)
from ..protocols import EngineProtocol
from ..utils import DeferredMessages, ServiceLogAdapter
from .context import rendered_name, stage_context, write_dockerfile
from .ignore import IgnoreRuleResolver
from .report import ResultAggregator
from .template import discover_dockerfile, is_template, load_synthesized_template, render_template

logger = logging.getLogger(__name__)

TRANSPORT_ATTEMPTS = 2


class BuildExecutor:

    def __init__(
        self,
        engine: EngineProtocol,
        project: Project,
        target: BuildTarget,
        options: BuildOptions,
        ignore_resolver: IgnoreRuleResolver,
        aggregator: ResultAggregator,
        max_concurrency: int = constants.DEFAULT_MAX_CONCURRENCY,
        deferred: Optional[DeferredMessages] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.engine = engine
        self.project = project
        self.target = target
        self.options = options
        self.ignore_resolver = ignore_resolver
        self.aggregator = aggregator
        self.max_concurrency = max_concurrency
        self.deferred = deferred if deferred is not None else aggregator.deferred
        # CRLF -> LF only matters where checkouts carry Windows line endings
        self.convert_eol = options.convert_eol and os.name == "nt"
        self.failures: List[ServiceBuildError] = []
        self.cancelled = False
        self._stop = False

    def cancel(self):
        """Stop starting new services. Builds already in flight are left to finish."""
        if not self.cancelled:
            logger.warning("[Executor] Cancellation requested, no further services will be started.")
        self.cancelled = True
        self._stop = True

    async def execute(self):
        for service in self.project.services:
            if not service.is_buildable:
                logger.info(f"[Executor] Service '{service.name}' uses image '{service.explicit_image_ref}', nothing to build.")

        services = self.project.buildable_services
        if not services:
            logger.info("[Executor] No services to build.")
            return
        logger.info(
            f"[Executor] Building {len(services)} service(s) for {self.target.platform} "
            f"(up to {self.max_concurrency} at a time)..."
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        with tempfile.TemporaryDirectory(prefix="fleetb-") as staging, \
                ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
            tasks = [
                asyncio.ensure_future(self._run_service(service, semaphore, pool, Path(staging)))
                for service in services
            ]
            try:
                # Gather with exceptions so one crashed task does not orphan its siblings
                results = await asyncio.gather(*tasks, return_exceptions=True)
            except asyncio.CancelledError:
                self.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        for service, result in zip(services, results):
            if isinstance(result, asyncio.CancelledError):
                self.cancelled = True
            elif isinstance(result, BaseException):
                logger.error(f"[Executor] Unexpected error while building '{service.name}': {result!r}")
                raise result

    async def _run_service(self, service: ServiceDescriptor, semaphore: asyncio.Semaphore,
                           pool: ThreadPoolExecutor, staging: Path):
        async with semaphore:
            if self._stop:
                reason = "build cancelled" if self.cancelled else "an earlier service failed"
                logger.info(f"[Executor] Not starting '{service.name}': {reason}.")
                return

            log = ServiceLogAdapter(logger, {'service': service.name})
            self.aggregator.start(service.name)
            log.info(f"Building {', '.join(self.options.image_tags(self.project.name, service.name))}")

            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(pool, self._build_blocking, service, staging / service.name, log)
            try:
                await self._settle(service, asyncio.shield(future), log)
            except asyncio.CancelledError:
                self.cancel()
                log.warning("Waiting for the in-flight build to finish...")
                await self._settle(service, future, log)
                raise

    async def _settle(self, service: ServiceDescriptor, pending, log: logging.LoggerAdapter):
        """Awaits one engine build and records its outcome. Event-loop thread only."""
        try:
            image_id, warnings = await pending
        except ServiceBuildError as e:
            self._stop = True
            self.failures.append(e)
            self.aggregator.finish(service.name, error=e.cause)
            log.error(f"Build failed: {e.cause}")
            return
        except Exception as e:
            self._stop = True
            self.failures.append(ServiceBuildError(service.name, repr(e)))
            self.aggregator.finish(service.name, error=repr(e))
            log.exception(f"Unexpected error: {e!r}")
            return
        for warning in warnings:
            self.deferred.warn(warning)
        self.aggregator.finish(service.name, image_id=image_id)
        log.info(f"Build succeeded: {image_id}")

    # --- worker thread ---

    def _build_blocking(self, service: ServiceDescriptor, dest: Path,
                        log: logging.LoggerAdapter) -> Tuple[str, List[str]]:
        context_dir = service.build_context_path
        try:
            rules = self.ignore_resolver.resolve(service)
            count = stage_context(context_dir, rules, dest, convert_eol=self.convert_eol)
            dockerfile = self._prepare_dockerfile(service, context_dir, dest)
        except ServiceBuildError:
            raise
        except (OSError, ValueError) as e:
            raise ServiceBuildError(service.name, f"cannot prepare build context: {e}") from e
        except FleetBuilderError as e:
            raise ServiceBuildError(service.name, str(e)) from e
        log.debug(f"Staged {count} file(s), using '{dockerfile}'")

        tags = self.options.image_tags(self.project.name, service.name)
        # compose-level values first, command-line values win
        build_args = {**service.build_args, **self.options.build_args}
        labels = {**service.labels, **self.options.labels}
        on_line = (lambda line: None) if self.options.nologs else (lambda line: log.info(line))

        image_id = self._invoke(service, dest, dockerfile, tags, build_args, labels, on_line, log)
        return image_id, self._check_architecture(service, tags[0], log)

    def _invoke(self, service, context_dir, dockerfile, tags, build_args, labels, on_line, log) -> str:
        for attempt in range(1, TRANSPORT_ATTEMPTS + 1):
            try:
                return self.engine.build(
                    context_dir=context_dir,
                    dockerfile=dockerfile,
                    tags=tags,
                    build_args=build_args,
                    labels=labels,
                    options=self.options,
                    platform=self.target.platform,
                    target=service.target,
                    on_line=on_line,
                )
            except EngineCommunicationError as e:
                if attempt == TRANSPORT_ATTEMPTS:
                    raise ServiceBuildError(service.name, f"container engine unreachable: {e}") from e
                log.warning(f"Lost connection to the container engine ({e}), retrying...")
            except EngineBuildFailure as e:
                raise ServiceBuildError(service.name, str(e)) from e
            except FleetBuilderError as e:
                raise ServiceBuildError(service.name, str(e)) from e

    def _prepare_dockerfile(self, service: ServiceDescriptor, context_dir: Path, dest: Path) -> str:
        """
        Places the Dockerfile the engine will use inside the staged context and
        returns its path relative to it. Templates are rendered for the target.
        """
        if service.synthesized_template:
            content = load_synthesized_template(service.synthesized_template)
            name = rendered_name(service.dockerfile_path or constants.DOCKERFILE_TEMPLATE_NAME)
            write_dockerfile(dest, name, render_template(content, self.target))
            return name

        name = service.dockerfile_path
        if name is None and self.project.compose_file is None:
            name = self.options.dockerfile_path
        if name is None:
            name = discover_dockerfile(context_dir, self.target)
        if name is None:
            raise ServiceBuildError(service.name, f"no Dockerfile found in '{context_dir}'")

        source = context_dir / name
        if not source.is_file():
            raise ServiceBuildError(service.name, f"Dockerfile '{name}' not found in '{context_dir}'")

        if is_template(name):
            content = source.read_text(encoding="utf-8")
            name = rendered_name(name)
            write_dockerfile(dest, name, render_template(content, self.target))
        elif not (dest / name).is_file():
            (dest / name).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest / name)
        return name

    def _check_architecture(self, service: ServiceDescriptor, image_ref: str,
                            log: logging.LoggerAdapter) -> List[str]:
        try:
            reported = self.engine.image_architecture(image_ref)
        except FleetBuilderError as e:
            log.debug(f"Could not inspect '{image_ref}': {e}")
            return []
        if not reported:
            return []
        accepted = constants.IMAGE_ARCH_ALIASES.get(reported, frozenset({reported}))
        if self.target.architecture in accepted:
            return []
        return [
            f"Service '{service.name}': image '{image_ref}' reports architecture '{reported}', "
            f"but the target architecture is '{self.target.architecture}'. "
            "Check the base images used by its Dockerfile."
        ]
