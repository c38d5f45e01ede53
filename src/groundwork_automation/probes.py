"""Read-only state queries.

Every probe returns a :class:`ResourceState` and never mutates the host.
Absence is a normal answer; a probe only reports ``unknown`` when it cannot
tell (the query tool is missing, the file it inspects does not exist, ...).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Sequence
import logging
import os
import re
import shlex
import time

from .executors import Executor
from .types import ResourceState

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


class Probe(ABC):
    """Non-mutating query against one resource."""

    @abstractmethod
    def check(self, executor: Executor) -> ResourceState:
        """Return the current state of the probed resource."""

    def __call__(self, executor: Executor) -> ResourceState:
        return self.check(executor)


class PackageProbe(Probe):
    def __init__(self, package: str, executable: str = "dpkg-query"):
        self.package = package
        self.executable = executable

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run(
            [self.executable, "-W", "-f", "${Status} ${Version}", self.package],
            check=False,
            mutable=False,
        )
        if result.returncode == COMMAND_NOT_FOUND:
            return ResourceState.unknown(f"{self.executable} unavailable")
        if result.returncode != 0:
            return ResourceState.absent()
        # dpkg keeps removed-but-configured packages as "deinstall ok config-files".
        fields = result.stdout.split()
        if len(fields) >= 3 and fields[0] == "install" and fields[2] == "installed":
            return ResourceState.present(fields[3] if len(fields) > 3 else None)
        logger.debug("package=%s status=%s", self.package, " ".join(fields[:3]))
        return ResourceState.absent()


class LineProbe(Probe):
    """Find the first line of ``path`` matching an anchored ``pattern``."""

    def __init__(self, path: Path, pattern: str):
        self.path = Path(path)
        self.regex = re.compile(pattern, re.MULTILINE)

    def check(self, executor: Executor) -> ResourceState:
        content = executor.read_file(self.path)
        if content is None:
            return ResourceState.absent()
        match = self.regex.search(content)
        if not match:
            return ResourceState.absent()
        start = content.rfind("\n", 0, match.start()) + 1
        end = content.find("\n", match.end())
        line = content[start:] if end == -1 else content[start:end]
        return ResourceState.present(line)


class DirectiveProbe(Probe):
    """Read an active ``key value`` directive from an sshd or ini style file.

    Only the part of the file before ``stop_at`` is searched. When the key is
    set more than once to different values, every value is reported.
    """

    def __init__(self, path: Path, key: str, *, separator: str = " ", stop_at: Optional[str] = None):
        self.path = Path(path)
        self.key = key
        self.separator = separator
        sep = r"[ \t]+" if separator.strip() == "" else rf"[ \t]*{re.escape(separator.strip())}[ \t]*"
        self.regex = re.compile(rf"^[ \t]*{re.escape(key)}{sep}(?P<value>.*?)[ \t]*$", re.MULTILINE)
        self.stop_at = re.compile(stop_at, re.MULTILINE) if stop_at else None

    def check(self, executor: Executor) -> ResourceState:
        content = executor.read_file(self.path)
        if content is None:
            return ResourceState.unknown(f"{self.path} missing")
        if self.stop_at is not None:
            end = self.stop_at.search(content)
            if end:
                content = content[: end.start()]
        values: list[str] = []
        for match in self.regex.finditer(content):
            if match.group("value") not in values:
                values.append(match.group("value"))
        if not values:
            return ResourceState.absent()
        return ResourceState.present(", ".join(values))


class PathProbe(Probe):
    def __init__(self, path: Path, *, kind: Optional[str] = None):
        self.path = Path(path).expanduser()
        if kind not in {None, "file", "dir", "link"}:
            raise ValueError("path probe kind must be 'file', 'dir' or 'link'")
        self.kind = kind

    def check(self, executor: Executor) -> ResourceState:
        path = self.path
        if self.kind == "link":
            if path.is_symlink():
                return ResourceState.present(os.readlink(path))
            return ResourceState.absent()
        if not path.exists() and not path.is_symlink():
            return ResourceState.absent()
        if self.kind == "dir" and not path.is_dir():
            return ResourceState.absent()
        if self.kind == "file" and not path.is_file():
            return ResourceState.absent()
        return ResourceState.present(str(path))


class CommandProbe(Probe):
    """Whether ``binary`` resolves on the PATH of the executing shell."""

    def __init__(self, binary: str, *, env: Optional[dict[str, str]] = None):
        self.binary = binary
        self.env = env

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run(
            ["sh", "-c", f"command -v {shlex.quote(self.binary)}"],
            check=False,
            mutable=False,
            env=self.env,
        )
        if result.returncode == 0 and result.stdout.strip():
            return ResourceState.present(result.stdout.strip())
        return ResourceState.absent()


class CommandOutputProbe(Probe):
    """Present when ``command`` succeeds and, optionally, its output matches."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        pattern: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ):
        self.command = list(command)
        self.regex = re.compile(pattern, re.MULTILINE) if pattern else None
        self.env = env

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run(self.command, check=False, mutable=False, env=self.env)
        if result.returncode == COMMAND_NOT_FOUND:
            return ResourceState.unknown(f"{self.command[0]} unavailable")
        if result.returncode != 0:
            return ResourceState.absent()
        if self.regex is None:
            first = result.stdout.strip().splitlines()
            return ResourceState.present(first[0] if first else None)
        match = self.regex.search(result.stdout)
        if not match:
            return ResourceState.absent()
        return ResourceState.present(match.group(0).strip())


class ServiceProbe(Probe):
    """Reports which of ``enabled`` and ``active`` hold for a systemd unit."""

    def __init__(self, service: str, executable: str = "systemctl"):
        self.service = service
        self.executable = executable

    def check(self, executor: Executor) -> ResourceState:
        held: list[str] = []
        for query, label in (("is-enabled", "enabled"), ("is-active", "active")):
            result = executor.run([self.executable, query, self.service], check=False, mutable=False)
            if result.returncode == COMMAND_NOT_FOUND:
                return ResourceState.unknown(f"{self.executable} unavailable")
            if result.returncode == 0:
                held.append(label)
        if not held:
            return ResourceState.absent()
        return ResourceState.present(",".join(held))


class FirewallRuleProbe(Probe):
    """Looks for ``ufw allow <rule>`` among the added rules, active or not."""

    def __init__(self, rule: str, executable: str = "ufw"):
        self.rule = rule
        self.executable = executable
        self.regex = re.compile(rf"^ufw allow {re.escape(rule)}(\s|$)", re.MULTILINE)

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run([self.executable, "show", "added"], check=False, mutable=False)
        if result.returncode == COMMAND_NOT_FOUND:
            return ResourceState.unknown(f"{self.executable} unavailable")
        if result.returncode != 0:
            return ResourceState.unknown(result.stderr.strip() or f"rc={result.returncode}")
        match = self.regex.search(result.stdout)
        if not match:
            return ResourceState.absent()
        return ResourceState.present(self.rule)


class FirewallStatusProbe(Probe):
    def __init__(self, executable: str = "ufw"):
        self.executable = executable

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run([self.executable, "status"], check=False, mutable=False)
        if result.returncode == COMMAND_NOT_FOUND:
            return ResourceState.unknown(f"{self.executable} unavailable")
        if re.search(r"^Status:\s*active", result.stdout, re.MULTILINE):
            return ResourceState.present("active")
        return ResourceState.absent()


class UserProbe(Probe):
    """Present with the user's group list when the account exists."""

    def __init__(self, username: str):
        self.username = username

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run(["id", "-nG", self.username], check=False, mutable=False)
        if result.returncode != 0:
            return ResourceState.absent()
        return ResourceState.present(" ".join(result.stdout.split()))


class LoginShellProbe(Probe):
    def __init__(self, username: str):
        self.username = username

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run(["getent", "passwd", self.username], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return ResourceState.absent()
        fields = result.stdout.strip().split(":")
        return ResourceState.present(fields[6] if len(fields) > 6 else "")


class SqlProbe(Probe):
    """Runs a scalar query; present when it returns ``1``."""

    def __init__(self, client: Sequence[str], query: str):
        self.client = list(client)
        self.query = query

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run([*self.client, self.query], check=False, mutable=False)
        if result.returncode != 0:
            return ResourceState.unknown(result.stderr.strip() or f"rc={result.returncode}")
        if result.stdout.strip() == "1":
            return ResourceState.present()
        return ResourceState.absent()


class AptCacheProbe(Probe):
    """Present while the apt package lists are younger than ``max_age`` seconds."""

    def __init__(
        self,
        max_age: float = 3600,
        lists_dir: Path = Path("/var/lib/apt/lists"),
        clock: Callable[[], float] = time.time,
    ):
        self.max_age = max_age
        self.lists_dir = Path(lists_dir)
        self.clock = clock

    def check(self, executor: Executor) -> ResourceState:
        try:
            mtime = self.lists_dir.stat().st_mtime
        except FileNotFoundError:
            return ResourceState.absent()
        age = self.clock() - mtime
        if age > self.max_age:
            return ResourceState.absent()
        return ResourceState.present(f"{int(age)}s old")


class AptSimulationProbe(Probe):
    """Present when a simulated apt run (``upgrade``, ``autoremove``) has nothing to do."""

    MARKERS = {"upgrade": "Inst ", "autoremove": "Remv ", "dist-upgrade": "Inst "}

    def __init__(self, subcommand: str):
        if subcommand not in self.MARKERS:
            raise ValueError(f"unsupported apt simulation '{subcommand}'")
        self.subcommand = subcommand

    def check(self, executor: Executor) -> ResourceState:
        result = executor.run(
            ["apt-get", "-s", "-o", "Debug::NoLocking=1", self.subcommand],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            return ResourceState.unknown(result.stderr.strip() or f"rc={result.returncode}")
        marker = self.MARKERS[self.subcommand]
        pending = [line for line in result.stdout.splitlines() if line.startswith(marker)]
        if pending:
            return ResourceState.absent()
        return ResourceState.present("nothing to do")


class AptSourceProbe(Probe):
    """Present when any apt source file mentions ``marker``."""

    def __init__(self, marker: str, sources_dir: Path = Path("/etc/apt/sources.list.d")):
        self.marker = marker
        self.sources_dir = Path(sources_dir)

    def check(self, executor: Executor) -> ResourceState:
        if not self.sources_dir.is_dir():
            return ResourceState.absent()
        for path in sorted(self.sources_dir.iterdir()):
            if path.suffix not in {".list", ".sources"}:
                continue
            content = executor.read_file(path) or ""
            if self.marker in content:
                return ResourceState.present(str(path))
        return ResourceState.absent()
