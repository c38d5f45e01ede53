from __future__ import annotations

import logging
import signal
import subprocess
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterable, Iterator, Optional

from .errors import FatalSystemError, SoftSystemError
from .executors import CommandResult, Executor, summarize_output
from .operations.base import Action
from .resolver import RunConfig
from .secrets import redact
from .types import FAILED, SKIPPED, StepResult

logger = logging.getLogger(__name__)

NOT_ATTEMPTED = "not attempted"


class StepGraph:
    """Runs actions strictly in declaration order.

    Dependencies are checked when the graph is built: an action may only
    depend on actions declared before it. A fatal failure halts the run and
    every remaining action is reported as skipped and not attempted; a soft
    failure is recorded and the run goes on. Interrupts are only acted on
    between two actions.
    """

    def __init__(
        self,
        actions: Iterable[Action],
        *,
        progress_callback: Optional[Callable[[Action], None]] = None,
    ):
        self.actions = list(actions)
        self.progress_callback = progress_callback
        self._interrupted: Optional[str] = None
        self._validate()

    def _validate(self) -> None:
        seen: set[str] = set()
        for action in self.actions:
            if action.name in seen:
                raise ValueError(f"duplicate action name '{action.name}'")
            for dep in action.depends_on:
                if dep not in seen:
                    raise ValueError(
                        f"action '{action.name}' depends on '{dep}', which is not declared before it"
                    )
            seen.add(action.name)

    @property
    def interrupted(self) -> Optional[str]:
        return self._interrupted

    def interrupt(self, reason: str = "interrupted") -> None:
        if self._interrupted is None:
            logger.warning("%s; stopping after the current action", reason)
            self._interrupted = reason

    @contextmanager
    def deferred_signals(self) -> Iterator[None]:
        """Turn SIGINT/SIGTERM into an interrupt flag for the duration of the run."""

        def handler(signum, frame):  # noqa: ARG001
            self.interrupt(f"received {signal.Signals(signum).name}")

        previous = {}
        try:
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous[signum] = signal.signal(signum, handler)
        except ValueError:  # pragma: no cover - not in the main thread
            logger.debug("signal handlers unavailable; interrupts are not deferred")
        try:
            yield
        finally:
            for signum, old in previous.items():
                signal.signal(signum, old)

    def run(self, config: RunConfig, executor: Executor) -> list[StepResult]:
        results: list[StepResult] = []
        by_name: dict[str, StepResult] = {}
        halted: Optional[str] = None

        for action in self.actions:
            if halted is None and self._interrupted is not None:
                halted = f"{NOT_ATTEMPTED} ({self._interrupted})"
            if halted is not None:
                result = self._not_attempted(action, halted)
            else:
                blocked = [dep for dep in action.depends_on if not by_name[dep].succeeded]
                if blocked:
                    result = self._not_attempted(action, f"dependency failed: {', '.join(blocked)}")
                else:
                    if self.progress_callback is not None:
                        self.progress_callback(action)
                    result = self._apply(action, config, executor)
                    if result.failed and result.fatal:
                        halted = f"{NOT_ATTEMPTED} (halted after {action.name})"
            logger.debug("action=%s outcome=%s details=%s", action.name, result.outcome, result.details)
            results.append(result)
            by_name[action.name] = result
        return results

    def _apply(self, action: Action, config: RunConfig, executor: Executor) -> StepResult:
        started = time.monotonic()
        try:
            result = action.apply(config, executor)
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, SoftSystemError):
                fatal = False
            elif isinstance(exc, FatalSystemError):
                fatal = True
            else:
                fatal = action.fatal
            detail = redact(describe_error(exc))
            logger.error("action=%s failed: %s", action.name, detail, exc_info=True)
            return StepResult(
                action=action.name,
                outcome=FAILED,
                details=detail,
                duration=time.monotonic() - started,
                resource=action.resource,
                fatal=fatal,
            )
        return replace(result, details=redact(result.details))

    @staticmethod
    def _not_attempted(action: Action, reason: str) -> StepResult:
        return StepResult(
            action=action.name,
            outcome=SKIPPED,
            details=reason,
            resource=action.resource,
            attempted=False,
        )


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        cmd = exc.cmd if isinstance(exc.cmd, (list, tuple)) else [str(exc.cmd)]
        result = CommandResult(list(cmd), exc.stdout or "", exc.stderr or "", exc.returncode)
        message = summarize_output(result)
        prefix = f"{cmd[0]} rc={exc.returncode}"
        return f"{prefix}: {message}" if message else prefix
    return str(exc) or type(exc).__name__


def run(actions: Iterable[Action], config: RunConfig, executor: Executor) -> list[StepResult]:
    return StepGraph(actions).run(config, executor)
