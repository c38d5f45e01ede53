from __future__ import annotations

import os
import pwd
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .base import Action
from ..errors import SoftSystemError
from ..executors import Executor
from ..types import ABSENT, ResourceState


@dataclass
class UserRecord:
    home: Path
    uid: int
    gid: int


class AuthorizedKeyManager:
    def get_user(self, username: str) -> Optional[UserRecord]:
        try:
            entry = pwd.getpwnam(username)
        except KeyError:
            return None
        return UserRecord(home=Path(entry.pw_dir), uid=entry.pw_uid, gid=entry.pw_gid)

    def read(self, path: Path) -> str:
        try:
            return path.read_text()
        except FileNotFoundError:
            return ""

    def write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    def chmod(self, path: Path, mode: int) -> None:
        os.chmod(path, mode)

    def chown(self, path: Path, uid: int, gid: int) -> None:
        os.chown(path, uid, gid)


def split_keys(content: str) -> list[str]:
    seen: list[str] = []
    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#") and line not in seen:
            seen.append(line)
    return seen


class AuthorizedKeysAction(Action):
    """Copy the keys of ``source`` into the user's ``~/.ssh/authorized_keys``."""

    kind = "authorized_keys"

    def __init__(
        self,
        name: str,
        username: str,
        *,
        source: Path = Path("/root/.ssh/authorized_keys"),
        **kwargs: Any,
    ):
        if not username:
            raise ValueError("authorized_keys action requires a username")
        kwargs.setdefault("resource", username)
        kwargs.setdefault("fatal", False)
        super().__init__(name, **kwargs)
        self.username = username
        self.source = Path(source)
        self.manager = AuthorizedKeyManager()

    def _target(self, record: UserRecord) -> Path:
        return record.home / ".ssh" / "authorized_keys"

    def probe(self, config, executor: Executor) -> ResourceState:
        wanted = split_keys(self.manager.read(self.source))
        if not wanted:
            return ResourceState.unknown(f"no keys in {self.source}")
        record = self.manager.get_user(self.username)
        if record is None:
            return ResourceState.unknown(f"user {self.username} does not exist")
        existing = split_keys(self.manager.read(self._target(record)))
        missing = [key for key in wanted if key not in existing]
        if missing:
            return ResourceState(ABSENT, f"{len(missing)} key(s) missing")
        return ResourceState.present(f"{len(wanted)} key(s)")

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        if state.is_unknown:
            raise SoftSystemError(
                f"{state.value}; add a public key to ~{self.username}/.ssh/authorized_keys manually"
            )
        record = self.manager.get_user(self.username)
        assert record is not None  # probe reported the user present
        target = self._target(record)
        keys = split_keys(self.manager.read(target))
        added = 0
        for key in split_keys(self.manager.read(self.source)):
            if key not in keys:
                keys.append(key)
                added += 1
        if not executor.dry_run:
            ssh_dir = target.parent
            self.manager.write(target, "\n".join(keys) + "\n")
            self.manager.chown(target, record.uid, record.gid)
            self.manager.chmod(target, 0o600)
            self.manager.chown(ssh_dir, record.uid, record.gid)
            self.manager.chmod(ssh_dir, 0o700)
        return f"added {added} key(s)"
