from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class BuildResult(BaseModel):
    """The sealed outcome of one service build."""
    model_config = ConfigDict(frozen=True)

    service_name: str
    succeeded: bool
    duration_ms: int
    image_id: Optional[str] = None
    error_detail: Optional[str] = None


class BuildReport(BaseModel):
    """
    Aggregate of every attempted service, in project order.

    `skipped` lists buildable services that were never started because an earlier
    build failed or the operator cancelled.
    """
    model_config = ConfigDict(frozen=True)

    results: Tuple[BuildResult, ...]
    skipped: Tuple[str, ...] = ()
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and not self.skipped and all(r.succeeded for r in self.results)

    @property
    def failures(self) -> List[BuildResult]:
        return [r for r in self.results if not r.succeeded]

    def result_for(self, service_name: str) -> Optional[BuildResult]:
        return next((r for r in self.results if r.service_name == service_name), None)
