from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
from pathlib import Path
from string import Template
from typing import Any, Iterable, Optional, Sequence

from .base import Action
from ..errors import ProvisionError
from ..executors import Executor, RetryPolicy, format_command, summarize_output
from ..probes import CommandOutputProbe, PathProbe, Probe
from ..types import SKIPPED, ResourceState, StepResult

logger = logging.getLogger(__name__)

PUBLIC_IP_URL = "https://api.ipify.org"


def run_as(username: str, command: Sequence[str]) -> list[str]:
    """Wrap ``command`` so it runs in a login shell of ``username``."""

    return ["runuser", "-l", username, "-c", shlex.join(str(part) for part in command)]


class ExecAction(Action):
    """Run a command guarded by ``creates``, ``unless`` or an explicit probe.

    ``creates`` is a path that exists once the command has done its job,
    ``unless`` a read-only command that succeeds when nothing needs doing.
    String commands run through ``sh -c``; ``$name`` placeholders are filled
    from the public run parameters.
    """

    kind = "exec"

    def __init__(
        self,
        name: str,
        command: Any,
        *,
        creates: Optional[Path] = None,
        unless: Any = None,
        probe: Optional[Probe] = None,
        env: Any = None,
        cwd: Optional[Path] = None,
        returns: Iterable[int] = (0,),
        timeout: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        if command is None:
            raise ValueError("exec action requires a command")
        if creates is None and unless is None and probe is None:
            raise ValueError("exec action requires creates, unless or a probe")
        super().__init__(name, **kwargs)
        self.raw_command = command
        self.creates = Path(creates).expanduser() if creates is not None else None
        self.unless = unless
        self.guard = probe
        self.env = self._normalize_env(env)
        self.cwd = Path(cwd) if cwd is not None else None
        self.allowed_returns = [int(code) for code in returns]
        self.timeout = timeout
        self.retry = retry

    def probe(self, config, executor: Executor) -> ResourceState:
        if self.guard is not None:
            return self.guard.check(executor)
        if self.creates is not None:
            return PathProbe(self.creates).check(executor)
        guard_cmd = self._render(self.unless, config)
        return CommandOutputProbe(guard_cmd, env=self.env).check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        command = self._render(self.raw_command, config)
        result = executor.run(
            command,
            check=False,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
            retry=self.retry,
        )
        if result.returncode not in self.allowed_returns:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "exec failed name=%s rc=%s cmd=%s",
                    self.name,
                    result.returncode,
                    format_command(command),
                )
            raise subprocess.CalledProcessError(result.returncode, command, result.stdout, result.stderr)
        return f"ran (rc={result.returncode})"

    def _render(self, value: Any, config) -> list[str]:
        context = dict(config.public()) if config is not None else {}
        if isinstance(value, str):
            return ["sh", "-c", Template(value).safe_substitute(context)]
        if isinstance(value, Sequence):
            return [Template(str(part)).safe_substitute(context) for part in value]
        raise ValueError("exec command/guard must be a string or list")

    @staticmethod
    def _normalize_env(value: Any) -> Optional[dict[str, str]]:
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            env: dict[str, str] = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not sep:
                    raise ValueError("env list entries must be KEY=VALUE")
                env[key] = val
            return env
        raise ValueError("exec env must be a mapping or list of KEY=VALUE strings")


class FactAction(Action):
    """Gather one fact about the host; never changes anything.

    The value lands in :attr:`StepResult.facts` so follow-up instructions can
    use it. Facts are best effort unless declared fatal.
    """

    kind = "fact"

    def __init__(
        self,
        name: str,
        fact: str,
        command: Sequence[str],
        *,
        pattern: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("resource", fact)
        kwargs.setdefault("fatal", False)
        super().__init__(name, **kwargs)
        self.fact = fact
        self.command = list(command)
        self.regex = re.compile(pattern) if pattern else None
        self.retry = retry

    def probe(self, config, executor: Executor) -> ResourceState:
        result = executor.run(self.command, check=False, mutable=False, retry=self.retry)
        value = result.stdout.strip()
        if result.returncode != 0 or not value:
            return ResourceState.unknown(summarize_output(result) or f"rc={result.returncode}")
        if self.regex is not None and not self.regex.fullmatch(value):
            return ResourceState.unknown(f"unexpected output {value[:40]!r}")
        return ResourceState.present(value)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        raise ProvisionError(f"could not determine {self.fact}: {state.value}")

    def apply(self, config, executor: Executor) -> StepResult:
        started = time.monotonic()
        state = self.probe(config, executor)
        if not state.is_present:
            self.mutate(config, executor, state)
        return self.result(SKIPPED, f"{self.fact}={state.value}", started, facts={self.fact: state.value})


class PublicAddressAction(FactAction):
    kind = "public_ip"

    def __init__(self, name: str = "public-ip", *, url: str = PUBLIC_IP_URL, retry: Optional[RetryPolicy] = None, **kwargs: Any):
        super().__init__(
            name,
            "public_ip",
            ["curl", "-fsS", "--max-time", "10", url],
            pattern=r"[0-9A-Fa-f:.]+",
            retry=retry or RetryPolicy(max_retries=2, delay=1.0),
            **kwargs,
        )
