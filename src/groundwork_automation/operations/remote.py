"""Actions that pull code or installers over the network.

Network fetches are the only commands run with a retry policy; once the
budget is spent the executor raises :class:`TransientError`.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Sequence

from .base import Action
from ..errors import FatalSystemError
from ..executors import Executor, RetryPolicy
from ..probes import PathProbe, Probe
from ..types import ResourceState

logger = logging.getLogger(__name__)

COMPOSER_INSTALLER_URL = "https://getcomposer.org/installer"
COMPOSER_SIGNATURE_URL = "https://composer.github.io/installer.sig"


class RemoteFetcher:
    """Thin wrapper around ``curl`` with bounded retries."""

    def __init__(self, retry: Optional[RetryPolicy] = None, *, max_time: int = 120):
        self.retry = retry or RetryPolicy()
        self.max_time = max_time

    def fetch(self, executor: Executor, url: str) -> str:
        result = executor.run(
            ["curl", "-fsSL", "--max-time", str(self.max_time), url],
            mutable=False,
            retry=self.retry,
        )
        return result.stdout

    def download(self, executor: Executor, url: str, dest: Path) -> Path:
        executor.run(
            ["curl", "-fsSL", "--max-time", str(self.max_time), "-o", str(dest), url],
            retry=self.retry,
        )
        return dest


class RemoteScriptAction(Action):
    """Download an installer script and run it when ``probe`` says it is needed."""

    kind = "remote_script"

    def __init__(
        self,
        name: str,
        url: str,
        *,
        probe: Probe,
        interpreter: Sequence[str] = ("bash",),
        args: Sequence[str] = (),
        env: Optional[dict[str, str]] = None,
        retry: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        if not url:
            raise ValueError("remote_script action requires a url")
        kwargs.setdefault("resource", url)
        super().__init__(name, **kwargs)
        self.url = url
        self.guard = probe
        self.interpreter = list(interpreter)
        self.args = list(args)
        self.env = dict(env) if env else None
        self.fetcher = RemoteFetcher(retry)

    def probe(self, config, executor: Executor) -> ResourceState:
        return self.guard.check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        if executor.dry_run:
            return f"would run {self.url}"
        script = self.fetcher.fetch(executor, self.url)
        fd, name = tempfile.mkstemp(prefix="groundwork-", suffix=".sh")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(script)
            os.chmod(name, 0o644)
            executor.run([*self.interpreter, name, *self.args], env=self.env)
        finally:
            os.unlink(name)
        return f"ran {self.url}"


class GitCloneAction(Action):
    kind = "git_clone"

    def __init__(self, name: str, repo: str, dest: Path, *, retry: Optional[RetryPolicy] = None, **kwargs: Any):
        if not repo:
            raise ValueError("git_clone action requires a repository")
        self.dest = Path(dest).expanduser()
        kwargs.setdefault("resource", str(self.dest))
        super().__init__(name, **kwargs)
        self.repo = repo
        self.retry = retry or RetryPolicy()

    def probe(self, config, executor: Executor) -> ResourceState:
        return PathProbe(self.dest / ".git", kind="dir").check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        executor.run(["git", "clone", self.repo, str(self.dest)], retry=self.retry)
        return f"cloned {self.repo}"


class ComposerInstallAction(Action):
    """Install Composer after checking the installer against its published SHA-384."""

    kind = "composer"

    def __init__(
        self,
        name: str,
        *,
        install_dir: Path = Path("/usr/local/bin"),
        filename: str = "composer",
        installer_url: str = COMPOSER_INSTALLER_URL,
        signature_url: str = COMPOSER_SIGNATURE_URL,
        retry: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        self.target = Path(install_dir) / filename
        kwargs.setdefault("resource", str(self.target))
        super().__init__(name, **kwargs)
        self.install_dir = Path(install_dir)
        self.filename = filename
        self.installer_url = installer_url
        self.signature_url = signature_url
        self.fetcher = RemoteFetcher(retry)

    def probe(self, config, executor: Executor) -> ResourceState:
        return PathProbe(self.target, kind="file").check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        if executor.dry_run:
            return f"would install {self.target}"
        expected = self.fetcher.fetch(executor, self.signature_url).strip().lower()
        with tempfile.TemporaryDirectory(prefix="groundwork-") as workdir:
            installer = self.fetcher.download(executor, self.installer_url, Path(workdir) / "composer-setup.php")
            actual = hashlib.sha384(installer.read_bytes()).hexdigest()
            if actual != expected:
                raise FatalSystemError(
                    f"composer installer signature mismatch (expected {expected[:12]}..., got {actual[:12]}...)"
                )
            logger.debug("composer installer verified sha384=%s", actual)
            executor.run(
                [
                    "php",
                    str(installer),
                    f"--install-dir={self.install_dir}",
                    f"--filename={self.filename}",
                    "--quiet",
                ],
                cwd=workdir,
            )
        return "installed (installer verified)"
