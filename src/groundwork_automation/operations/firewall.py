from __future__ import annotations

from typing import Any, Optional

from .base import Action
from ..executors import Executor
from ..probes import FirewallRuleProbe, FirewallStatusProbe
from ..types import ResourceState


class UfwRuleAction(Action):
    """Allow ``rule`` (``2222/tcp``, ``http``, ...) through UFW."""

    kind = "ufw_rule"

    def __init__(self, name: str, rule: str, *, comment: Optional[str] = None, **kwargs: Any):
        if not rule:
            raise ValueError("ufw_rule action requires a rule")
        kwargs.setdefault("resource", rule)
        super().__init__(name, **kwargs)
        self.rule = rule
        self.comment = comment

    def probe(self, config, executor: Executor) -> ResourceState:
        return FirewallRuleProbe(self.rule).check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        cmd = ["ufw", "allow", self.rule]
        if self.comment:
            cmd += ["comment", self.comment]
        executor.run(cmd)
        return f"allowed {self.rule}"


class UfwEnableAction(Action):
    kind = "ufw_enable"

    def __init__(self, name: str, **kwargs: Any):
        kwargs.setdefault("resource", "ufw")
        super().__init__(name, **kwargs)

    def probe(self, config, executor: Executor) -> ResourceState:
        return FirewallStatusProbe().check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        executor.run(["ufw", "--force", "enable"])
        return "enabled"
