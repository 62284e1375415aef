import logging
import time
from typing import Dict, List, Optional

from ..datacls import BuildReport, BuildResult
from ..exceptions import BuildError
from ..utils import DeferredMessages

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Build succeeded!"
WARNINGS_MESSAGE = "Build succeeded with warnings"
FAILURE_MESSAGE = "Build failed."


class ResultAggregator:
    """
    Collects per-service outcomes and seals them into one BuildReport.

    Only the event-loop thread records results. Sealing happens once; later calls
    to `start`/`finish`/`seal` are rejected.
    """

    def __init__(self, service_names: List[str], deferred: Optional[DeferredMessages] = None):
        self.service_names = list(service_names)
        self.deferred = deferred if deferred is not None else DeferredMessages()
        self._started: Dict[str, float] = {}
        self._results: Dict[str, BuildResult] = {}
        self._report: Optional[BuildReport] = None

    @property
    def sealed(self) -> bool:
        return self._report is not None

    def _check_open(self, name: Optional[str] = None):
        if self.sealed:
            raise BuildError("Build report is already sealed.")
        if name is not None and name not in self.service_names:
            raise BuildError(f"Unknown service '{name}'.")

    def start(self, name: str):
        self._check_open(name)
        self._started[name] = time.monotonic()
        logger.debug(f"[Report] '{name}' started")

    def finish(self, name: str, image_id: Optional[str] = None, error: Optional[str] = None):
        self._check_open(name)
        if name in self._results:
            raise BuildError(f"Result for service '{name}' was already recorded.")
        started = self._started.get(name, time.monotonic())
        duration_ms = int((time.monotonic() - started) * 1000)
        self._results[name] = BuildResult(
            service_name=name,
            succeeded=error is None,
            duration_ms=duration_ms,
            image_id=image_id,
            error_detail=error,
        )
        logger.debug(f"[Report] '{name}' finished in {duration_ms}ms ({'ok' if error is None else 'failed'})")

    def seal(self, cancelled: bool = False) -> BuildReport:
        """
        Freezes the report. Services that started but never finished count as
        failed; services that never started are listed as skipped.
        """
        self._check_open()
        for name in self.service_names:
            if name in self._started and name not in self._results:
                self.finish(name, error="interrupted before completion")
        results = tuple(self._results[n] for n in self.service_names if n in self._results)
        skipped = tuple(n for n in self.service_names if n not in self._started)
        self._report = BuildReport(results=results, skipped=skipped, cancelled=cancelled)
        return self._report

    @property
    def report(self) -> Optional[BuildReport]:
        return self._report

    def emit_summary(self, report: BuildReport, out: logging.Logger = logger):
        """
        Flushes the deferred messages, then logs the per-service breakdown and
        the final status line.
        """
        self.deferred.flush(out)

        for result in report.results:
            seconds = result.duration_ms / 1000
            if result.succeeded:
                image = f" {result.image_id[:19]}" if result.image_id else ""
                out.info(f"  {result.service_name}: built{image} ({seconds:.1f}s)")
            else:
                out.error(f"  {result.service_name}: failed ({seconds:.1f}s): {result.error_detail}")
        for name in report.skipped:
            out.warning(f"  {name}: not started")

        if report.cancelled:
            out.error("Build cancelled.")
        elif not report.succeeded:
            out.error(FAILURE_MESSAGE)
        elif self.deferred.has_warnings:
            out.warning(WARNINGS_MESSAGE)
        else:
            out.info(SUCCESS_MESSAGE)
