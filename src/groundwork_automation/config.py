from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG = Path("/etc/groundwork/main.conf")


@dataclass
class GroundworkConfig:
    profile: Optional[str] = None
    report_file: Optional[Path] = None
    non_interactive: bool = False
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    command_timeout: Optional[float] = None
    fetch_retries: int = 3
    fetch_backoff: float = 2.0
    parameters: dict[str, Any] = field(default_factory=dict)


def _coerce_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "1", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "no", "0", "off"}:
        return False
    raise ValueError(f"defaults.{name} must be a boolean")


def load_config(path: Path) -> GroundworkConfig:
    if not path.exists():
        return GroundworkConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from exc
    defaults = data.get("defaults", {})
    parameters = data.get("parameters", {})
    if not isinstance(defaults, dict) or not isinstance(parameters, dict):
        raise ValueError(f"{path}: [defaults] and [parameters] must be tables")

    profile = defaults.get("profile")
    report_file = defaults.get("report_file")
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    command_timeout = defaults.get("command_timeout")
    try:
        fetch_retries = int(defaults.get("fetch_retries", 3))
        fetch_backoff = float(defaults.get("fetch_backoff", 2.0))
        timeout = float(command_timeout) if command_timeout is not None else None
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{path}: invalid numeric default ({exc})") from exc
    return GroundworkConfig(
        profile=str(profile) if profile else None,
        report_file=Path(report_file) if report_file else None,
        non_interactive=_coerce_bool(defaults.get("non_interactive", False), "non_interactive"),
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
        command_timeout=timeout,
        fetch_retries=fetch_retries,
        fetch_backoff=fetch_backoff,
        parameters=dict(parameters),
    )
