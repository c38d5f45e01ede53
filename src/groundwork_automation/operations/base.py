from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable, Optional
import logging
import time

from ..executors import Executor
from ..types import APPLIED, FAILED, SKIPPED, ResourceState, StepResult

if TYPE_CHECKING:  # pragma: no cover
    from ..resolver import RunConfig

logger = logging.getLogger(__name__)


class Action(ABC):
    """One idempotent change: probe, mutate only when needed, then verify."""

    kind = "action"

    def __init__(
        self,
        name: str,
        *,
        depends_on: Iterable[str] = (),
        fatal: bool = True,
        resource: Optional[str] = None,
    ):
        if not name:
            raise ValueError(f"{self.kind} action requires a name")
        self.name = str(name)
        self.depends_on: tuple[str, ...] = tuple(depends_on)
        self.fatal = bool(fatal)
        self.resource = resource

    @abstractmethod
    def probe(self, config: "RunConfig", executor: Executor) -> ResourceState:
        """Observe the target resource without changing it."""

    def satisfied(self, state: ResourceState, config: "RunConfig") -> bool:
        return state.is_present

    @abstractmethod
    def mutate(self, config: "RunConfig", executor: Executor, state: ResourceState) -> str:
        """Bring the resource to the desired state; return a short detail."""

    def apply(self, config: "RunConfig", executor: Executor) -> StepResult:
        started = time.monotonic()
        before = self.probe(config, executor)
        logger.debug("action=%s probe=%s", self.name, before.describe())
        if self.satisfied(before, config):
            return self.result(SKIPPED, "noop", started)

        detail = self.mutate(config, executor, before)
        if executor.dry_run:
            return self.result(APPLIED, f"dry-run ({detail})", started)

        after = self.probe(config, executor)
        logger.debug("action=%s verify=%s", self.name, after.describe())
        if not self.satisfied(after, config):
            return self.result(
                FAILED,
                f"verify failed after {detail}: state is {after.describe()}",
                started,
                fatal=self.fatal,
            )
        return self.result(APPLIED, detail, started)

    def result(
        self,
        outcome: str,
        details: str,
        started: float,
        *,
        fatal: bool = False,
        facts: Optional[dict[str, Any]] = None,
    ) -> StepResult:
        return StepResult(
            action=self.name,
            outcome=outcome,
            details=details,
            duration=time.monotonic() - started,
            resource=self.resource,
            fatal=fatal,
            facts=dict(facts or {}),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
