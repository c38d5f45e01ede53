from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from .base import Action
from ..executors import Executor
from ..probes import LoginShellProbe, UserProbe
from ..types import ResourceState

logger = logging.getLogger(__name__)


class UserManager:
    def add(
        self,
        executor: Executor,
        name: str,
        *,
        shell: Optional[str],
        create_home: bool,
        comment: Optional[str],
    ) -> None:
        cmd = ["useradd"]
        if shell:
            cmd += ["--shell", shell]
        if create_home:
            cmd.append("--create-home")
        if comment:
            cmd += ["--comment", comment]
        cmd.append(name)
        executor.run(cmd)

    def add_to_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--append", "--groups", ",".join(groups), name])

    def set_shell(self, executor: Executor, name: str, shell: str) -> None:
        executor.run(["usermod", "--shell", shell, name])

    def set_password(self, executor: Executor, name: str, password: str) -> None:
        executor.run(["chpasswd"], input=f"{name}:{password}\n")


class UserAction(Action):
    """Ensure a login account exists and belongs to ``groups``."""

    kind = "user"

    def __init__(
        self,
        name: str,
        username: str,
        *,
        groups: Iterable[str] = (),
        shell: Optional[str] = "/bin/bash",
        comment: Optional[str] = None,
        password_param: Optional[str] = None,
        **kwargs: Any,
    ):
        if not username:
            raise ValueError("user action requires a username")
        kwargs.setdefault("resource", username)
        super().__init__(name, **kwargs)
        self.username = username
        self.groups = tuple(groups)
        self.shell = shell
        self.comment = comment
        self.password_param = password_param
        self.manager = UserManager()

    def probe(self, config, executor: Executor) -> ResourceState:
        return UserProbe(self.username).check(executor)

    def _missing_groups(self, state: ResourceState) -> list[str]:
        if not state.is_present:
            return list(self.groups)
        member_of = set((state.value or "").split())
        return [group for group in self.groups if group not in member_of]

    def satisfied(self, state: ResourceState, config) -> bool:
        return state.is_present and not self._missing_groups(state)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        changes: list[str] = []
        if not state.is_present:
            logger.debug("Creating user %s", self.username)
            self.manager.add(
                executor,
                self.username,
                shell=self.shell,
                create_home=True,
                comment=self.comment,
            )
            changes.append("created")
            if self.password_param and self.password_param in config:
                password = config.secret(self.password_param).reveal()
                self.manager.set_password(executor, self.username, password)
                changes.append("password set")
        missing = self._missing_groups(state)
        if missing:
            self.manager.add_to_groups(executor, self.username, missing)
            changes.append(f"groups+={','.join(missing)}")
        return ", ".join(changes)


class LoginShellAction(Action):
    kind = "login_shell"

    def __init__(self, name: str, username: str, shell: str, **kwargs: Any):
        if not username or not shell:
            raise ValueError("login_shell action requires a username and a shell")
        kwargs.setdefault("resource", username)
        super().__init__(name, **kwargs)
        self.username = username
        self.shell = shell
        self.manager = UserManager()

    def probe(self, config, executor: Executor) -> ResourceState:
        return LoginShellProbe(self.username).check(executor)

    def satisfied(self, state: ResourceState, config) -> bool:
        return state.is_present and state.value == self.shell

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        self.manager.set_shell(executor, self.username, self.shell)
        return f"shell->{self.shell}"
