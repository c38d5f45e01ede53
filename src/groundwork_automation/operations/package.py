from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional, Sequence
import logging

from .base import Action
from ..executors import Executor, RetryPolicy
from ..probes import AptCacheProbe, AptSimulationProbe, AptSourceProbe, CommandOutputProbe, PackageProbe
from ..types import ABSENT, PRESENT, ResourceState

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackageManager:
    name = "apt"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env=APT_ENV)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env=APT_ENV)

    def update(self, executor: Executor) -> None:
        executor.run(["apt-get", "update"], env=APT_ENV)

    def run(self, executor: Executor, subcommand: str) -> None:
        executor.run(["apt-get", "-y", subcommand], env=APT_ENV)

    def query(self, package: str) -> PackageProbe:
        return PackageProbe(package)


class PackageAction(Action):
    """Install or remove a batch of apt packages."""

    kind = "package"

    def __init__(self, name: str, packages: Iterable[str], *, state: str = "present", **kwargs: Any):
        if isinstance(packages, str):
            packages = [packages]
        self.packages = tuple(packages)
        if not self.packages:
            raise ValueError("package action requires at least one package")
        if state not in {"present", "absent"}:
            raise ValueError("package action state must be 'present' or 'absent'")
        self.state = state
        kwargs.setdefault("resource", ", ".join(self.packages[:3]) + (", ..." if len(self.packages) > 3 else ""))
        super().__init__(name, **kwargs)
        self.manager = AptPackageManager()

    def probe(self, config, executor: Executor) -> ResourceState:
        installed: list[str] = []
        missing: list[str] = []
        for package in self.packages:
            state = self.manager.query(package).check(executor)
            if state.is_present:
                installed.append(f"{package}={state.value}" if state.value else package)
            else:
                missing.append(package)
        if self.state == "present":
            if missing:
                return ResourceState(ABSENT, ",".join(missing))
            return ResourceState(PRESENT, ",".join(installed))
        if installed:
            return ResourceState(PRESENT, ",".join(name.split("=", 1)[0] for name in installed))
        return ResourceState.absent()

    def satisfied(self, state: ResourceState, config) -> bool:
        if self.state == "present":
            return state.is_present
        return state.is_absent

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        pending = [pkg for pkg in (state.value or "").split(",") if pkg]
        if not pending:
            pending = list(self.packages)
        logger.debug("package-manager=%s state=%s packages=%s", self.manager.name, self.state, pending)
        if self.state == "present":
            self.manager.install(executor, pending)
            return f"installed={','.join(pending)}"
        self.manager.remove(executor, pending)
        return f"removed={','.join(pending)}"


class AptCacheAction(Action):
    """Refresh the package lists when they are older than ``max_age`` seconds."""

    kind = "apt_cache"

    def __init__(self, name: str, *, max_age: float = 3600, lists_dir: Path = Path("/var/lib/apt/lists"), **kwargs: Any):
        kwargs.setdefault("resource", str(lists_dir))
        super().__init__(name, **kwargs)
        self.cache_probe = AptCacheProbe(max_age=max_age, lists_dir=lists_dir)
        self.manager = AptPackageManager()

    def probe(self, config, executor: Executor) -> ResourceState:
        return self.cache_probe.check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        self.manager.update(executor)
        return "updated"


class AptMaintenanceAction(Action):
    """Run ``apt-get upgrade`` or ``autoremove`` when a simulation shows pending work."""

    kind = "apt_maintenance"

    def __init__(self, name: str, subcommand: str, *, clean: bool = False, **kwargs: Any):
        kwargs.setdefault("fatal", False)
        kwargs.setdefault("resource", subcommand)
        super().__init__(name, **kwargs)
        self.subcommand = subcommand
        self.simulation = AptSimulationProbe(subcommand)
        self.clean = clean
        self.manager = AptPackageManager()

    def probe(self, config, executor: Executor) -> ResourceState:
        return self.simulation.check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        self.manager.run(executor, self.subcommand)
        if self.clean:
            self.manager.run(executor, "clean")
            return f"{self.subcommand}, clean"
        return self.subcommand


class AptRepositoryAction(Action):
    """Add a package source (PPA or vendor setup) unless one already mentions ``marker``."""

    kind = "apt_repository"

    def __init__(
        self,
        name: str,
        marker: str,
        command: Sequence[str],
        *,
        sources_dir: Path = Path("/etc/apt/sources.list.d"),
        retry: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("resource", marker)
        super().__init__(name, **kwargs)
        self.command = list(command)
        if not self.command:
            raise ValueError("apt_repository requires a command")
        self.source_probe = AptSourceProbe(marker, sources_dir=sources_dir)
        self.retry = retry or RetryPolicy()
        self.manager = AptPackageManager()

    def probe(self, config, executor: Executor) -> ResourceState:
        return self.source_probe.check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        executor.run(self.command, env=APT_ENV, retry=self.retry)
        self.manager.update(executor)
        return "added"


class SnapAction(Action):
    kind = "snap"

    def __init__(self, name: str, snap: str, *, classic: bool = False, **kwargs: Any):
        kwargs.setdefault("resource", snap)
        super().__init__(name, **kwargs)
        self.snap = snap
        self.classic = classic
        self.list_probe = CommandOutputProbe(["snap", "list", snap])

    def probe(self, config, executor: Executor) -> ResourceState:
        return self.list_probe.check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        cmd = ["snap", "install"]
        if self.classic:
            cmd.append("--classic")
        cmd.append(self.snap)
        executor.run(cmd)
        return "installed"
