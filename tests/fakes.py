from __future__ import annotations

from typing import Callable, Optional, Sequence, Union

from groundwork_automation.executors import CommandResult, LocalExecutor
from groundwork_automation.operations.base import Action
from groundwork_automation.resolver import RunConfig
from groundwork_automation.types import ResourceState

Response = Union[int, tuple, Callable[[list[str], Optional[str]], object]]


class FakeExecutor(LocalExecutor):
    """Records commands and answers them from registered prefixes.

    File primitives are the real local ones, so tests point them at tmp_path.
    """

    def __init__(self, *, dry_run: bool = False):
        self.sleeps: list[float] = []
        super().__init__(dry_run=dry_run, sleep=self.sleeps.append)
        self.calls: list[list[str]] = []
        self.inputs: list[Optional[str]] = []
        self.envs: list[Optional[dict]] = []
        self._responses: list[tuple[list[str], Response]] = []

    def on(self, prefix: Sequence[str], response: Response) -> "FakeExecutor":
        self._responses.append((list(prefix), response))
        return self

    def commands(self, program: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if cmd and cmd[0] == program]

    def _execute(self, command, *, env, cwd, timeout, input):
        self.calls.append(list(command))
        self.inputs.append(input)
        self.envs.append(env)
        for prefix, response in reversed(self._responses):
            if command[: len(prefix)] == prefix:
                return self._build(command, input, response)
        return CommandResult(list(command), "", "", 0)

    @staticmethod
    def _build(command, input, response) -> CommandResult:
        if callable(response):
            response = response(list(command), input)
        if isinstance(response, CommandResult):
            return response
        if isinstance(response, int):
            return CommandResult(list(command), "", "", response)
        returncode, stdout, *rest = response
        return CommandResult(list(command), stdout, rest[0] if rest else "", returncode)


class StubAction(Action):
    """Action whose state lives in memory; ``fail_with`` makes mutate raise."""

    kind = "stub"

    def __init__(self, name: str, *, present: bool = False, fail_with: Optional[BaseException] = None, log: Optional[list] = None, sticky: bool = False, **kwargs):
        super().__init__(name, **kwargs)
        self.present = present
        self.fail_with = fail_with
        self.log = log if log is not None else []
        self.sticky = sticky
        self.mutations = 0

    def probe(self, config, executor) -> ResourceState:
        return ResourceState.present("ok") if self.present else ResourceState.absent()

    def mutate(self, config, executor, state) -> str:
        self.log.append(self.name)
        self.mutations += 1
        if self.fail_with is not None:
            raise self.fail_with
        if not self.sticky:
            self.present = True
        return "changed"


def run_config(**values) -> RunConfig:
    return RunConfig(values)
