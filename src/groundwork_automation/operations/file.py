from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from .base import Action
from ..errors import FatalSystemError, ResourceConflictError
from ..executors import Executor, summarize_output
from ..probes import DirectiveProbe, LineProbe, PathProbe
from ..types import ABSENT, PRESENT, UNKNOWN, ResourceState

logger = logging.getLogger(__name__)


def _append(content: str, text: str) -> str:
    if content and not content.endswith("\n"):
        content += "\n"
    return content + text.rstrip("\n") + "\n"


class LineInFileAction(Action):
    """Replace the line matching ``anchor`` with ``line``, or append it."""

    kind = "line"

    def __init__(
        self,
        name: str,
        path: Path,
        line: str,
        anchor: Optional[str] = None,
        *,
        create: bool = False,
        mode: Optional[int] = None,
        owner: Optional[str] = None,
        insert_before: Optional[str] = None,
        on_change: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ):
        self.path = Path(path).expanduser()
        kwargs.setdefault("resource", str(self.path))
        super().__init__(name, **kwargs)
        if "\n" in line:
            raise ValueError("line action expects a single line; use a block action")
        self.line = line
        self.anchor = anchor or rf"^{re.escape(line)}$"
        self.create = create
        self.mode = mode
        self.owner = owner
        self.insert_before = re.compile(insert_before, re.MULTILINE) if insert_before else None
        self.on_change = list(on_change) if on_change else None

    def target_path(self, config, executor: Executor) -> Path:
        return self.path

    def probe(self, config, executor: Executor) -> ResourceState:
        return LineProbe(self.target_path(config, executor), self.anchor).check(executor)

    def satisfied(self, state: ResourceState, config) -> bool:
        return state.is_present and state.value == self.line

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        path = self.target_path(config, executor)
        content = executor.read_file(path)
        if content is None:
            if not self.create:
                raise ResourceConflictError(f"{path} does not exist")
            content = ""
        match = re.compile(self.anchor, re.MULTILINE).search(content)
        if match:
            # Replace the whole line holding the match, as LineProbe reports it.
            start = content.rfind("\n", 0, match.start()) + 1
            end = content.find("\n", match.end())
            new_content = content[:start] + self.line + ("" if end == -1 else content[end:])
            detail = "replaced"
        else:
            new_content = self._insert(content)
            detail = "appended"
        executor.write_file(path, content=new_content, mode=self.mode)
        if self.owner:
            executor.chown(path, self.owner)
        if self.on_change:
            executor.run(self.on_change)
            detail = f"{detail}, ran {self.on_change[0]}"
        return detail

    def _insert(self, content: str) -> str:
        if self.insert_before is not None:
            match = self.insert_before.search(content)
            if match:
                return content[: match.start()] + self.line + "\n" + content[match.start():]
        return _append(content, self.line)


class BlockInFileAction(Action):
    """Append ``block`` to a file unless a line already matches ``anchor``."""

    kind = "block"

    def __init__(
        self,
        name: str,
        path: Path,
        block: str,
        anchor: str,
        *,
        mode: Optional[int] = None,
        owner: Optional[str] = None,
        **kwargs: Any,
    ):
        self.path = Path(path).expanduser()
        kwargs.setdefault("resource", str(self.path))
        super().__init__(name, **kwargs)
        if not block.strip():
            raise ValueError("block action requires content")
        self.block = block
        self.anchor = anchor
        self.mode = mode
        self.owner = owner

    def probe(self, config, executor: Executor) -> ResourceState:
        return LineProbe(self.path, self.anchor).check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        content = executor.read_file(self.path) or ""
        executor.write_file(self.path, content=_append(content, "\n" + self.block.strip("\n")), mode=self.mode)
        if self.owner:
            executor.chown(self.path, self.owner)
        return "appended"


class ConfigDirectivesAction(Action):
    """Set several ``key value`` directives in one file as a single edit.

    The first occurrence of each key, commented out or not, is rewritten in
    place and any later active occurrence is dropped; keys that do not occur
    are appended. With ``stop_at``, only the text before its first match is
    edited and new keys land just before it. An optional ``validate`` command
    runs against the edited file and the original content is restored when it
    fails.
    """

    kind = "directives"

    def __init__(
        self,
        name: str,
        path: Path,
        directives: Mapping[str, str],
        *,
        separator: str = " ",
        comment: str = "#",
        backup: bool = True,
        validate: Optional[Sequence[str]] = None,
        on_change: Optional[Callable[[Executor], str]] = None,
        stop_at: Optional[str] = None,
        **kwargs: Any,
    ):
        self.path = Path(path)
        kwargs.setdefault("resource", str(self.path))
        super().__init__(name, **kwargs)
        if not directives:
            raise ValueError("directives action requires at least one directive")
        self.directives = dict(directives)
        self.separator = separator
        self.comment = comment
        self.backup = backup
        self.validate = list(validate) if validate else None
        self.on_change = on_change
        self.stop_at = stop_at

    def probe(self, config, executor: Executor) -> ResourceState:
        pending: list[str] = []
        for key, value in self.directives.items():
            state = DirectiveProbe(self.path, key, separator=self.separator, stop_at=self.stop_at).check(executor)
            if state.is_unknown:
                return state
            if not state.is_present or state.value != str(value):
                pending.append(key)
        if pending:
            return ResourceState(ABSENT, ",".join(pending))
        return ResourceState(PRESENT, ",".join(self.directives))

    def _key_regex(self, key: str) -> re.Pattern[str]:
        sep = r"[ \t]+" if not self.separator.strip() else rf"[ \t]*{re.escape(self.separator.strip())}[ \t]*"
        comment = re.escape(self.comment)
        return re.compile(rf"^[ \t]*(?:{comment}[ \t]*)?{re.escape(key)}{sep}.*$", re.MULTILINE)

    def render(self, key: str, value: str) -> str:
        return f"{key}{self.separator}{value}"

    def _set(self, content: str, key: str, line: str) -> Optional[str]:
        matches = list(self._key_regex(key).finditer(content))
        if not matches:
            return None
        chunks = [content[: matches[0].start()], line]
        pos = matches[0].end()
        for match in matches[1:]:
            if match.group(0).lstrip().startswith(self.comment):
                continue
            chunks.append(content[pos: match.start()])
            pos = match.end()
            if content.startswith("\n", pos):
                pos += 1
        chunks.append(content[pos:])
        return "".join(chunks)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        if state.kind == UNKNOWN:
            raise ResourceConflictError(f"cannot edit {self.path}: {state.value}")
        original = executor.read_file(self.path)
        if original is None:
            raise ResourceConflictError(f"{self.path} does not exist")

        head, tail = original, ""
        if self.stop_at is not None:
            end = re.compile(self.stop_at, re.MULTILINE).search(original)
            if end:
                head, tail = original[: end.start()], original[end.start():]

        pending = [key for key in (state.value or "").split(",") if key]
        appended: list[str] = []
        for key in pending:
            line = self.render(key, str(self.directives[key]))
            updated = self._set(head, key, line)
            if updated is None:
                appended.append(line)
            else:
                head = updated
        if appended:
            block = "\n".join(appended)
            head = head + block + "\n\n" if tail else _append(head, block)
        content = head + tail

        if self.backup and not executor.dry_run:
            backup_path = self.path.with_name(self.path.name + ".bak")
            if executor.read_file(backup_path) is None:
                executor.write_file(backup_path, content=original, mode=None)
        executor.write_file(self.path, content=content, mode=None)

        if self.validate:
            result = executor.run(self.validate, check=False)
            if result.returncode != 0:
                executor.write_file(self.path, content=original, mode=None)
                reason = summarize_output(result) or f"rc={result.returncode}"
                raise FatalSystemError(f"{self.path} rejected by {self.validate[0]}: {reason}; restored")

        detail = f"set={','.join(pending)}"
        if self.on_change is not None:
            detail = f"{detail}, {self.on_change(executor)}"
        return detail


class PathAbsentAction(Action):
    kind = "absent"

    def __init__(self, name: str, path: Path, **kwargs: Any):
        self.path = Path(path)
        kwargs.setdefault("resource", str(self.path))
        super().__init__(name, **kwargs)

    def probe(self, config, executor: Executor) -> ResourceState:
        return PathProbe(self.path).check(executor)

    def satisfied(self, state: ResourceState, config) -> bool:
        return state.is_absent

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        removed = executor.remove_path(self.path)
        return "removed" if removed else "noop"


class SymlinkAction(Action):
    kind = "symlink"

    def __init__(self, name: str, path: Path, target: str, **kwargs: Any):
        self.path = Path(path)
        kwargs.setdefault("resource", str(self.path))
        super().__init__(name, **kwargs)
        self.target = str(target)

    def probe(self, config, executor: Executor) -> ResourceState:
        return PathProbe(self.path, kind="link").check(executor)

    def satisfied(self, state: ResourceState, config) -> bool:
        return state.is_present and state.value == self.target

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        if self.path.exists() and not self.path.is_symlink():
            raise ResourceConflictError(f"{self.path} exists and is not a symlink")
        executor.symlink(self.path, self.target)
        return f"link->{self.target}"
