from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from .file import ConfigDirectivesAction
from .service import SystemCtl
from ..executors import Executor

SSHD_CONFIG = Path("/etc/ssh/sshd_config")


def hardening_directives(port: int, username: str) -> dict[str, str]:
    return {
        "Port": str(port),
        "PermitRootLogin": "no",
        "PasswordAuthentication": "no",
        "PermitEmptyPasswords": "no",
        "StrictModes": "yes",
        "AllowUsers": username,
    }


class SshdConfigAction(ConfigDirectivesAction):
    """Edit sshd_config, check it with ``sshd -t`` and reload the daemon."""

    kind = "sshd_config"

    def __init__(
        self,
        name: str,
        directives: Mapping[str, str],
        *,
        path: Path = SSHD_CONFIG,
        service: str = "ssh",
        **kwargs: Any,
    ):
        self.service = service
        self.systemctl = SystemCtl()
        super().__init__(
            name,
            path,
            directives,
            validate=["sshd", "-t", "-f", str(path)],
            on_change=self._reload,
            # Directives after a Match block only apply to that block.
            stop_at=r"^[ \t]*Match[ \t]",
            **kwargs,
        )

    def _reload(self, executor: Executor) -> str:
        return self.systemctl.reload_or_restart(executor, self.service)
