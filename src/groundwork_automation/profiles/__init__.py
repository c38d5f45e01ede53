"""Built-in provisioning profiles.

A profile bundles a parameter schema, a preflight check, a builder turning
the resolved :class:`RunConfig` into an ordered action list, and the
follow-up instructions shown after the run.
"""

from __future__ import annotations

import os
import pwd
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..errors import ValidationError
from ..operations import Action
from ..report import Instruction
from ..resolver import ParameterSpec, RunConfig

OS_RELEASE = Path("/etc/os-release")


@dataclass(frozen=True)
class Profile:
    name: str
    description: str
    schema: tuple[ParameterSpec, ...]
    build: Callable[[RunConfig], list[Action]]
    instructions: tuple[Instruction, ...] = ()
    preflight: Optional[Callable[[], None]] = None

    def check(self) -> None:
        if self.preflight is not None:
            self.preflight()


def require_root() -> None:
    if os.geteuid() != 0:
        raise ValidationError("must be run as root (try sudo)")


def require_non_root() -> None:
    if os.geteuid() == 0:
        raise ValidationError("must be run as the target user, not as root")


def invoking_user() -> Optional[str]:
    """The user behind ``sudo``, or the current user when not elevated."""

    user = os.environ.get("SUDO_USER")
    if user and user != "root":
        return user
    if os.geteuid() != 0:
        return pwd.getpwuid(os.geteuid()).pw_name
    return None


def home_of(username: str) -> Path:
    try:
        return Path(pwd.getpwnam(username).pw_dir)
    except KeyError:
        return Path("/home") / username


def os_codename(path: Path = OS_RELEASE, default: str = "jammy") -> str:
    try:
        content = path.read_text()
    except FileNotFoundError:
        return default
    for line in content.splitlines():
        key, _, value = line.partition("=")
        if key.strip() in {"VERSION_CODENAME", "UBUNTU_CODENAME"} and value.strip():
            return value.strip().strip('"')
    return default


def _registry() -> dict[str, Profile]:
    from . import laravel, server, workstation

    profiles = [server.PROFILE, workstation.PROFILE, laravel.PROFILE]
    return {profile.name: profile for profile in profiles}


def get_profile(name: str) -> Profile:
    profiles = _registry()
    try:
        return profiles[name]
    except KeyError:
        raise ValidationError(f"unknown profile '{name}' (available: {', '.join(sorted(profiles))})") from None


def available_profiles() -> list[Profile]:
    return list(_registry().values())
