from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import Action
from ..executors import Executor
from ..probes import ServiceProbe
from ..types import ResourceState

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])

    def reload_or_restart(self, executor: Executor, service: str) -> str:
        result = executor.run([self.executable, "reload", service], check=False)
        if result.returncode == 0:
            return "reloaded"
        logger.debug("reload of %s failed rc=%s; restarting", service, result.returncode)
        self.restart(executor, service)
        return "restarted"


class ServiceAction(Action):
    """Ensure a systemd service is enabled at boot and running."""

    kind = "service"

    def __init__(self, name: str, service: str, *, enabled: bool = True, running: bool = True, **kwargs: Any):
        if not service:
            raise ValueError("service action requires a service name")
        if not enabled and not running:
            raise ValueError("service action needs enabled and/or running")
        kwargs.setdefault("resource", service)
        super().__init__(name, **kwargs)
        self.service = service
        self.enabled = enabled
        self.running = running
        self.systemctl = SystemCtl()

    def _wanted(self) -> set[str]:
        wanted = set()
        if self.enabled:
            wanted.add("enabled")
        if self.running:
            wanted.add("active")
        return wanted

    def probe(self, config, executor: Executor) -> ResourceState:
        return ServiceProbe(self.service, executable=self.systemctl.executable).check(executor)

    def satisfied(self, state: ResourceState, config) -> bool:
        if not state.is_present:
            return False
        held = set((state.value or "").split(","))
        return self._wanted() <= held

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        held = set((state.value or "").split(",")) if state.is_present else set()
        changes: list[str] = []
        if self.enabled and "enabled" not in held:
            logger.debug("Enabling service %s", self.service)
            self.systemctl.enable(executor, self.service)
            changes.append("enabled")
        if self.running and "active" not in held:
            logger.debug("Starting service %s", self.service)
            self.systemctl.start(executor, self.service)
            changes.append("started")
        return ", ".join(changes) if changes else "noop"
