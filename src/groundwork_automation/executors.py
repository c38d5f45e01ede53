from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union
import logging
import os
import pwd
import shutil
import stat
import subprocess
import time

from .errors import TransientError
from .secrets import redact

logger = logging.getLogger(__name__)

TIMEOUT_RETURNCODE = 124


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff, for network fetches only."""

    max_retries: int = 3
    delay: float = 2.0
    backoff: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff < 1.0:
            raise ValueError("backoff multiplier must be >= 1.0")

    def should_retry(self, returncode: int, attempt: int) -> bool:
        return returncode != 0 and attempt < self.max_retries

    def delay_for(self, attempt: int) -> float:
        return min(self.delay * (self.backoff ** attempt), self.max_delay)


def summarize_output(result: CommandResult) -> Optional[str]:
    for text in (result.stderr, result.stdout):
        if not text:
            continue
        stripped = text.strip()
        if not stripped:
            continue
        line = stripped.splitlines()[0]
        return (line[:157] + "...") if len(line) > 160 else line
    return None


def format_command(command: Sequence[str]) -> str:
    return redact(" ".join(command))


class Executor:
    """Base executor abstraction used by probes and actions."""

    def __init__(
        self,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.dry_run = dry_run
        self.timeout = timeout
        self._sleep = sleep

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> CommandResult:
        """Run ``command``, retrying under ``retry`` and skipping it during dry-runs."""

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            logger.debug("dry-run skip cmd=%s", format_command(cmd_list))
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        effective_timeout = timeout if timeout is not None else self.timeout
        attempt = 0
        while True:
            result = self._execute(cmd_list, env=env, cwd=cwd, timeout=effective_timeout, input=input)
            result.attempts = attempt + 1
            if retry is None or not retry.should_retry(result.returncode, attempt):
                break
            wait = retry.delay_for(attempt)
            logger.warning(
                "cmd=%s rc=%s retrying in %.1fs (attempt %s/%s)",
                format_command(cmd_list),
                result.returncode,
                wait,
                attempt + 1,
                retry.max_retries,
            )
            self._sleep(wait)
            attempt += 1

        if check and result.returncode != 0:
            if retry is not None:
                detail = summarize_output(result) or f"rc={result.returncode}"
                raise TransientError(
                    f"{format_command(cmd_list)} failed after {result.attempts} attempt(s): {detail}",
                    attempts=result.attempts,
                )
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd_list,
                result.stdout,
                result.stderr,
            )
        return result

    def _execute(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
        timeout: Optional[float],
        input: Optional[str],
    ) -> CommandResult:
        raise NotImplementedError

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError

    def symlink(self, path: Path, target: str) -> bool:
        raise NotImplementedError

    def chown(self, path: Path, owner: str) -> bool:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def _execute(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
        timeout: Optional[float],
        input: Optional[str],
    ) -> CommandResult:
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        logger.debug("run cmd=%s", format_command(command))
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None else None,
                timeout=timeout,
                input=input,
                # Keep children out of the terminal's process group so Ctrl-C
                # reaches only the runner, which stops between actions.
                start_new_session=True,
            )
        except FileNotFoundError:
            return CommandResult(command, "", f"{command[0]}: command not found", 127)
        except subprocess.TimeoutExpired:
            return CommandResult(command, "", f"timed out after {timeout}s", TIMEOUT_RETURNCODE)
        return CommandResult(command, proc.stdout, proc.stderr, proc.returncode)

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                # Keep the existing mode when rewriting in place.
                existing_mode = self._file_mode(path)
                path.write_text(content)
                if existing_mode is not None and mode is None:
                    os.chmod(path, existing_mode)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    # ``chmod`` fails if the file is absent, so guard it.
                    if path.exists():
                        os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not path.exists() and not path.is_symlink():
            return False
        if self.dry_run:
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def symlink(self, path: Path, target: str) -> bool:
        current = os.readlink(path) if path.is_symlink() else None
        if current == target:
            return False
        if not self.dry_run:
            self.remove_path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, path)
        return True

    def chown(self, path: Path, owner: str) -> bool:
        try:
            current = pwd.getpwuid(path.stat().st_uid).pw_name
        except (FileNotFoundError, KeyError):
            current = None
        if current == owner:
            return False
        if not self.dry_run:
            shutil.chown(path, user=owner, group=owner)
        return True

    @staticmethod
    def _file_mode(path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None
