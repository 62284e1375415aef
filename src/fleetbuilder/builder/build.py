import asyncio
import logging
from typing import Callable, Optional

from ..bases import DockerEngine, HttpResourceApi
from ..config import Settings
from ..datacls import BuildReport, BuildRequest, FleetTarget, Project
from ..exceptions import BuildCancelledError, ProjectBuildError
from ..protocols import EngineProtocol, ResourceApiProtocol
from ..utils import DeferredMessages
from .arch import ArchitectureResolver, validate_target_options
from .assemble import BuildOptionAssembler
from .emulation import EmulationSetup
from .executor import BuildExecutor
from .ignore import IgnoreRuleResolver
from .loader import ProjectLoader
from .report import ResultAggregator

logger = logging.getLogger(__name__)

MULTICONTAINER_WARNING = (
    "Target fleet does not support multiple containers.\n"
    "Continuing with build, but you will not be able to deploy."
)


class Builder:
    """
    Single entry point of a local build: BuildRequest in, BuildReport out.

    The engine and the resource API are created on first use only, so a build
    for an explicit device type and architecture never contacts the API.
    """

    def __init__(
        self,
        request: BuildRequest,
        settings: Optional[Settings] = None,
        api_factory: Optional[Callable[[], ResourceApiProtocol]] = None,
        engine_factory: Optional[Callable[[], EngineProtocol]] = None,
        deferred: Optional[DeferredMessages] = None,
    ):
        self.request = request
        self.settings = settings or Settings()
        self._api_factory = api_factory or (lambda: HttpResourceApi(self.settings))
        self._engine_factory = engine_factory or (lambda: DockerEngine(settings=self.settings))
        self._api: Optional[ResourceApiProtocol] = None
        self._engine: Optional[EngineProtocol] = None
        self.deferred = deferred if deferred is not None else DeferredMessages()
        self.executor: Optional[BuildExecutor] = None
        self.report: Optional[BuildReport] = None

    @property
    def api(self) -> ResourceApiProtocol:
        if self._api is None:
            logger.debug("[Builder] Connecting to the resource API...")
            self._api = self._api_factory()
        return self._api

    @property
    def engine(self) -> EngineProtocol:
        if self._engine is None:
            logger.debug("[Builder] Connecting to the container engine...")
            self._engine = self._engine_factory()
        return self._engine

    def cancel(self):
        """Stop starting services; in-flight builds finish and are reported."""
        if self.executor is not None:
            self.executor.cancel()

    async def run(self) -> BuildReport:
        """
        Orchestrates the build step by step.

        Raises before touching the engine for any configuration problem, and
        ProjectBuildError (carrying the report) once every started build has
        finished if any of them failed.
        """
        request = self.request
        validate_target_options(request.fleet, request.device_type, request.arch)

        logger.info(f"[Builder] Starting build of '{request.source}'...")
        project = ProjectLoader(
            request.source,
            project_name=request.project_name,
            dockerfile=request.dockerfile,
            noparent_check=request.noparent_check,
        ).load()

        target, fleet = await ArchitectureResolver(lambda: self.api).resolve(request)
        self._check_multicontainer(project, fleet)

        options = BuildOptionAssembler(request, project, target, self.deferred).assemble()
        ignore_resolver = IgnoreRuleResolver(project, options.multi_dockerignore)

        await EmulationSetup(lambda: self.engine).ensure(target, force=request.emulated)

        aggregator = ResultAggregator([s.name for s in project.buildable_services], self.deferred)
        self.executor = BuildExecutor(
            self.engine,
            project,
            target,
            options,
            ignore_resolver,
            aggregator,
            max_concurrency=self.settings.max_concurrency,
            deferred=self.deferred,
        )
        try:
            await self.executor.execute()
        except asyncio.CancelledError:
            self.report = aggregator.seal(cancelled=True)
            aggregator.emit_summary(self.report)
            raise

        self.report = aggregator.seal(cancelled=self.executor.cancelled)
        aggregator.emit_summary(self.report)
        if self.report.cancelled:
            raise BuildCancelledError(report=self.report)
        if not self.report.succeeded:
            raise ProjectBuildError(self.executor.failures, list(self.report.skipped), report=self.report)
        return self.report

    def _check_multicontainer(self, project: Project, fleet: Optional[FleetTarget]):
        if fleet is None or fleet.supports_multicontainer is not False:
            return
        if project.is_multicontainer:
            self.deferred.warn(MULTICONTAINER_WARNING)
