from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Optional

try:  # pragma: no cover
    import boto3  # type: ignore
except Exception:  # pragma: no cover
    boto3 = None

MASK = "********"

# Values of every Secret created in this process; used to scrub log output.
_LIVE_VALUES: set[str] = set()
MIN_SUBSTRING_LENGTH = 8


class Secret:
    """Credential held in memory for the run and never rendered in clear."""

    __slots__ = ("_value",)

    def __init__(self, value: str):
        value = str(value)
        object.__setattr__(self, "_value", value)
        if value:
            _LIVE_VALUES.add(value)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Secret is immutable")

    def reveal(self) -> str:
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return MASK

    def __repr__(self) -> str:
        return f"Secret({MASK})"

    def __reduce__(self):
        raise TypeError("Secret values cannot be pickled")


def redact(text: str) -> str:
    """Replace every known secret value in ``text`` with the mask.

    Values shorter than ``MIN_SUBSTRING_LENGTH`` are only masked where they
    stand alone, so a short password does not eat into words that contain it.
    """

    if not text:
        return text
    # Longest first so a secret that contains another is masked whole.
    for value in sorted(_LIVE_VALUES, key=len, reverse=True):
        if value not in text:
            continue
        if len(value) >= MIN_SUBSTRING_LENGTH:
            text = text.replace(value, MASK)
        else:
            text = re.sub(rf"(?<![\w.-]){re.escape(value)}(?![\w.-])", MASK, text)
    return text


def forget_secrets() -> None:
    _LIVE_VALUES.clear()


class RedactingFilter(logging.Filter):
    """Scrub secret values from log records before they are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not _LIVE_VALUES:
            return True
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        return True


class SecretResolver:
    """Resolves ``aws_secret`` references found in parameter mappings."""

    def __init__(self):
        self._cache: dict[tuple[str, Optional[str]], Any] = {}

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            if "aws_secret" in value:
                return Secret(str(self._resolve_aws_secret(value)))
            return {k: self._resolve_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v) for v in value]
        return value

    def _resolve_aws_secret(self, spec: dict[str, Any]) -> Any:
        if boto3 is None:
            raise RuntimeError("boto3 is required to resolve aws_secret references")
        name = str(spec["aws_secret"])
        key = spec.get("key")
        cache_key = (name, key if key is None else str(key))
        if cache_key in self._cache:
            return self._cache[cache_key]

        client = boto3.client("secretsmanager")
        response = client.get_secret_value(SecretId=name)
        secret_str = response.get("SecretString")
        if secret_str is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise RuntimeError(f"Secret {name} has no SecretString or SecretBinary")
            secret_str = base64.b64decode(binary).decode()

        value: Any = secret_str
        if key is not None:
            payload = json.loads(secret_str)
            value = payload[str(key)]

        self._cache[cache_key] = value
        return value
