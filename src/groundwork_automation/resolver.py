"""Up-front parameter resolution.

Every parameter a profile needs is gathered and validated here, once, before
any action runs. The result is a frozen :class:`RunConfig` passed explicitly
to every action.

Sources are consulted in order: ``--set`` overrides, ``GROUNDWORK_<NAME>``
environment variables, the ``[parameters]`` table of the config file (which
may reference AWS Secrets Manager), an interactive prompt, and finally the
schema default.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

from rich.console import Console
from rich.prompt import Confirm, Prompt

from .errors import ValidationError
from .executors import RetryPolicy
from .secrets import MASK, Secret, SecretResolver

logger = logging.getLogger(__name__)

TEXT = "text"
BOOL = "bool"
CHOICE = "choice"
INT = "int"

ENV_PREFIX = "GROUNDWORK_"
PROMPT_ATTEMPTS = 3

_TRUE = {"true", "yes", "y", "1", "on"}
_FALSE = {"false", "no", "n", "0", "off"}


@dataclass(frozen=True)
class ParameterSpec:
    """One entry of a profile's parameter schema.

    ``default`` may be a callable receiving the values resolved so far, and
    ``when`` a predicate over the same mapping; parameters whose ``when``
    is false are not asked for and stay out of the run config.
    """

    name: str
    prompt: str
    default: Any = None
    validator: Optional[Callable[[Any], Any]] = None
    secret: bool = False
    kind: str = TEXT
    choices: tuple[str, ...] = ()
    when: Optional[Callable[[Mapping[str, Any]], bool]] = None
    required: bool = True

    def __post_init__(self) -> None:
        if self.kind not in {TEXT, BOOL, CHOICE, INT}:
            raise ValueError(f"unknown parameter kind '{self.kind}'")
        if self.kind == CHOICE and not self.choices:
            raise ValueError(f"choice parameter {self.name} needs choices")

    def default_for(self, values: Mapping[str, Any]) -> Any:
        if callable(self.default):
            return self.default(values)
        return self.default

    def applies(self, values: Mapping[str, Any]) -> bool:
        return self.when is None or bool(self.when(values))


class RunConfig(Mapping[str, Any]):
    """Frozen, validated parameters for one run."""

    __slots__ = ("_values", "_secret_names", "retry")

    def __init__(
        self,
        values: Mapping[str, Any],
        *,
        secret_names: Sequence[str] = (),
        retry: Optional[RetryPolicy] = None,
    ):
        object.__setattr__(self, "_values", dict(values))
        names = set(secret_names) | {k for k, v in values.items() if isinstance(v, Secret)}
        object.__setattr__(self, "_secret_names", frozenset(names))
        object.__setattr__(self, "retry", retry or RetryPolicy())

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("RunConfig is read-only")

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        shown = {k: (MASK if k in self._secret_names else v) for k, v in self._values.items()}
        return f"RunConfig({shown!r})"

    @property
    def secret_names(self) -> frozenset[str]:
        return self._secret_names

    def public(self) -> dict[str, Any]:
        return {k: v for k, v in self._values.items() if k not in self._secret_names}

    def secret(self, name: str) -> Secret:
        value = self._values[name]
        if not isinstance(value, Secret):
            raise TypeError(f"parameter {name} is not a secret")
        return value

    def enabled(self, name: str) -> bool:
        return bool(self._values.get(name))


# Validators ---------------------------------------------------------------
# Each returns the normalized value or raises ValueError.


def non_empty(value: Any) -> str:
    text = str(value).strip()
    if not text:
        raise ValueError("must not be empty")
    return text


def unix_username(value: Any) -> str:
    text = non_empty(value)
    if not re.fullmatch(r"[a-z_][a-z0-9_-]{0,31}", text):
        raise ValueError(f"'{text}' is not a valid unix user name")
    if text == "root":
        raise ValueError("must not be root")
    return text


def port_in_range(low: int = 1024, high: int = 65535) -> Callable[[Any], int]:
    def validate(value: Any) -> int:
        try:
            port = int(str(value).strip())
        except ValueError:
            raise ValueError(f"'{value}' is not an integer") from None
        if not low <= port <= high:
            raise ValueError(f"{port} is outside {low}-{high}")
        return port

    return validate


def sql_identifier(value: Any) -> str:
    text = non_empty(value)
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]{0,62}", text):
        raise ValueError(f"'{text}' must be letters, digits and underscores, not starting with a digit")
    return text


def domain(value: Any) -> str:
    text = non_empty(value).lower().rstrip(".")
    label = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
    if len(text) > 253 or not re.fullmatch(rf"(?:{label}\.)+[a-z]{{2,63}}", text):
        raise ValueError(f"'{text}' is not a valid domain name")
    return text


def email(value: Any) -> str:
    text = non_empty(value)
    if not re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", text):
        raise ValueError(f"'{text}' is not a valid email address")
    return text


def version(value: Any) -> str:
    text = non_empty(value)
    if not re.fullmatch(r"\d+(?:\.\d+){0,2}(?:-[A-Za-z0-9.]+)?", text):
        raise ValueError(f"'{text}' is not a version like 3.2.2")
    return text


def secret_value(value: Any) -> str:
    if isinstance(value, Secret):
        value = value.reveal()
    if not str(value):
        raise ValueError("must not be empty")
    return str(value)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"'{value}' is not a yes/no value")


# Sources ------------------------------------------------------------------


class RichPrompter:
    """Interactive prompts; secrets are read without echo."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def ask(self, spec: ParameterSpec, default: Any) -> Any:
        if spec.kind == BOOL:
            return Confirm.ask(spec.prompt, default=bool(default), console=self.console)
        if spec.secret:
            return Prompt.ask(spec.prompt, password=True, console=self.console)
        kwargs: dict[str, Any] = {"console": self.console}
        if spec.kind == CHOICE:
            kwargs["choices"] = list(spec.choices)
        if default is not None:
            kwargs["default"] = str(default)
        return Prompt.ask(spec.prompt, **kwargs)

    def error(self, spec: ParameterSpec, message: str) -> None:
        self.console.print(f"[red]{spec.name}: {message}[/]")


class ParameterResolver:
    def __init__(
        self,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        config_values: Optional[Mapping[str, Any]] = None,
        prompter: Optional[RichPrompter] = None,
        interactive: bool = True,
        secret_resolver: Optional[SecretResolver] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        self.overrides = dict(overrides or {})
        self.environ = os.environ if environ is None else environ
        self.config_values = dict(config_values or {})
        self.prompter = prompter
        self.interactive = interactive and prompter is not None
        self.secret_resolver = secret_resolver or SecretResolver()
        self.retry = retry

    def resolve(self, schema: Sequence[ParameterSpec]) -> RunConfig:
        names = [spec.name for spec in schema]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"duplicate parameters in schema: {', '.join(sorted(duplicates))}")
        unknown = set(self.overrides) - set(names)
        if unknown:
            raise ValidationError("unknown parameter", parameter=sorted(unknown)[0])

        values: dict[str, Any] = {}
        secret_names: list[str] = []
        for spec in schema:
            if not spec.applies(values):
                logger.debug("param=%s skipped (condition not met)", spec.name)
                continue
            value = self._resolve_one(spec, values)
            if value is None:
                continue
            values[spec.name] = value
            if spec.secret:
                secret_names.append(spec.name)
        return RunConfig(values, secret_names=secret_names, retry=self.retry)

    def _lookup(self, spec: ParameterSpec) -> tuple[Optional[str], Any]:
        if spec.name in self.overrides:
            return "override", self.overrides[spec.name]
        env_key = ENV_PREFIX + spec.name.upper()
        if env_key in self.environ:
            return "environment", self.environ[env_key]
        if spec.name in self.config_values:
            raw = self.config_values[spec.name]
            try:
                return "config", self.secret_resolver.resolve({spec.name: raw})[spec.name]
            except (RuntimeError, KeyError, ValueError) as exc:
                raise ValidationError(f"could not resolve configured value ({exc})", parameter=spec.name) from exc
        return None, None

    def _resolve_one(self, spec: ParameterSpec, values: Mapping[str, Any]) -> Any:
        source, raw = self._lookup(spec)
        default = spec.default_for(values)
        if source is not None:
            logger.debug("param=%s source=%s", spec.name, source)
            return self._normalize(spec, raw)

        if self.interactive:
            for attempt in range(1, PROMPT_ATTEMPTS + 1):
                raw = self.prompter.ask(spec, default)
                if raw in (None, "") and default is None and not spec.required:
                    return None
                try:
                    return self._normalize(spec, raw)
                except ValidationError as exc:
                    if attempt == PROMPT_ATTEMPTS:
                        raise
                    self.prompter.error(spec, str(exc).split(": ", 1)[-1])

        if default is None:
            if spec.required:
                raise ValidationError("no value supplied and no default", parameter=spec.name)
            return None
        return self._normalize(spec, default)

    def _normalize(self, spec: ParameterSpec, raw: Any) -> Any:
        try:
            if spec.secret:
                text = secret_value(raw)
                if spec.validator is not None:
                    spec.validator(text)
                return raw if isinstance(raw, Secret) else Secret(text)
            if isinstance(raw, Secret):
                raw = raw.reveal()
            if spec.kind == BOOL:
                value: Any = coerce_bool(raw)
            elif spec.kind == INT:
                value = int(str(raw).strip())
            elif spec.kind == CHOICE:
                value = str(raw).strip()
                if value not in spec.choices:
                    raise ValueError(f"'{value}' is not one of {', '.join(spec.choices)}")
            else:
                value = str(raw).strip() if isinstance(raw, str) else raw
            if spec.validator is not None:
                value = spec.validator(value)
            return value
        except ValueError as exc:
            raise ValidationError(str(exc), parameter=spec.name) from None


def resolve(schema: Sequence[ParameterSpec], **kwargs: Any) -> RunConfig:
    """Resolve ``schema`` into a :class:`RunConfig`; see :class:`ParameterResolver`."""

    return ParameterResolver(**kwargs).resolve(schema)
