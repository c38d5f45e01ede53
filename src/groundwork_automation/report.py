from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import jinja2

from .resolver import RunConfig
from .secrets import Secret, redact
from .types import StepResult

logger = logging.getLogger(__name__)

_ENV = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=False)


@dataclass(frozen=True)
class Instruction:
    """A follow-up step shown to the operator after the run.

    ``when`` selects on the run parameters (was the feature requested?),
    ``requires`` names actions that must have succeeded for the instruction
    to make sense.
    """

    template: str
    when: Optional[Callable[[RunConfig], bool]] = None
    requires: tuple[str, ...] = ()

    def applies(self, config: Optional[RunConfig], outcomes: Mapping[str, StepResult]) -> bool:
        if self.when is not None and (config is None or not self.when(config)):
            return False
        for name in self.requires:
            result = outcomes.get(name)
            if result is None or not result.succeeded:
                return False
        return True

    def render(self, context: Mapping[str, Any]) -> str:
        return _ENV.from_string(self.template).render(**context).strip()


def _normalize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Secret):
        return str(value)
    return value


@dataclass
class Report:
    profile: Optional[str]
    results: list[StepResult]
    instructions: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    redacted: list[str] = field(default_factory=list)
    facts: dict[str, Any] = field(default_factory=dict)
    interrupted: Optional[str] = None
    dry_run: bool = False

    @property
    def applied(self) -> int:
        return sum(1 for r in self.results if r.applied)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped and r.attempted)

    @property
    def not_attempted(self) -> int:
        return sum(1 for r in self.results if not r.attempted)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def failures(self) -> list[StepResult]:
        return [r for r in self.results if r.failed]

    @property
    def halted(self) -> bool:
        return any(r.failed and r.fatal for r in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.halted or self.interrupted else 0

    def summary_line(self) -> str:
        parts = [
            f"Applied: {self.applied}",
            f"Skipped: {self.skipped}",
            f"Failed: {self.failed}",
        ]
        if self.not_attempted:
            parts.append(f"Not attempted: {self.not_attempted}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "dry_run": self.dry_run,
            "exit_code": self.exit_code,
            "interrupted": self.interrupted,
            "counts": {
                "applied": self.applied,
                "skipped": self.skipped,
                "failed": self.failed,
                "not_attempted": self.not_attempted,
            },
            "failures": [{"action": r.action, "reason": r.details, "fatal": r.fatal} for r in self.failures],
            "instructions": list(self.instructions),
            "parameters": _normalize_value(self.parameters),
            "redacted": sorted(self.redacted),
            "facts": _normalize_value(self.facts),
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self) -> str:
        data = self.to_dict()
        # Secret values never reach the dict; only free text can echo one.
        for entry in data["results"]:
            entry["details"] = redact(entry["details"])
        for entry in data["failures"]:
            entry["reason"] = redact(entry["reason"])
        return json.dumps(data, indent=2, default=str)


def summarize(
    results: Sequence[StepResult],
    *,
    config: Optional[RunConfig] = None,
    instructions: Iterable[Instruction] = (),
    profile: Optional[str] = None,
    interrupted: Optional[str] = None,
    dry_run: bool = False,
) -> Report:
    outcomes = {r.action: r for r in results}
    facts: dict[str, Any] = {}
    for result in results:
        facts.update(result.facts)
    public = config.public() if config is not None else {}
    context = {**public, **facts, "profile": profile}

    rendered: list[str] = []
    for instruction in instructions:
        if not instruction.applies(config, outcomes):
            continue
        try:
            text = instruction.render(context)
        except jinja2.UndefinedError as exc:
            logger.warning("instruction skipped, missing value: %s", exc)
            continue
        if text:
            rendered.append(redact(text))

    return Report(
        profile=profile,
        results=list(results),
        instructions=rendered,
        parameters=dict(public),
        redacted=sorted(config.secret_names) if config is not None else [],
        facts=facts,
        interrupted=interrupted,
        dry_run=dry_run,
    )


def write_report(report: Report, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as handle:
        handle.write(report.to_json() + "\n")
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.debug("Unable to chmod report file %s", path, exc_info=True)
    return path
