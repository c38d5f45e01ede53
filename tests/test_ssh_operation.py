from pathlib import Path

import pytest

from groundwork_automation.errors import FatalSystemError
from groundwork_automation.operations.ssh import SshdConfigAction, hardening_directives
from groundwork_automation.types import APPLIED, SKIPPED

from fakes import FakeExecutor, run_config

UBUNTU_SSHD = """\
Include /etc/ssh/sshd_config.d/*.conf
#Port 22
#PermitRootLogin prohibit-password
#StrictModes yes
#PasswordAuthentication yes
#PermitEmptyPasswords no
KbdInteractiveAuthentication no
UsePAM yes
Subsystem sftp /usr/lib/openssh/sftp-server
"""


def test_hardening_sets_port_and_allowed_user(tmp_path: Path) -> None:
    config = tmp_path / "sshd_config"
    config.write_text(UBUNTU_SSHD)
    executor = FakeExecutor()
    action = SshdConfigAction("ssh-hardening", hardening_directives(2222, "deploy"), path=config)

    result = action.apply(run_config(), executor)

    assert result.outcome == APPLIED
    assert "reloaded" in result.details
    content = config.read_text()
    assert "Port 2222\n" in content
    assert "PermitRootLogin no\n" in content
    assert "AllowUsers deploy\n" in content
    assert ["sshd", "-t", "-f", str(config)] in executor.calls
    assert executor.calls[-1] == ["systemctl", "reload", "ssh"]

    assert action.apply(run_config(), FakeExecutor()).outcome == SKIPPED


def test_rejected_config_is_restored(tmp_path: Path) -> None:
    config = tmp_path / "sshd_config"
    config.write_text(UBUNTU_SSHD)
    executor = FakeExecutor().on(["sshd", "-t"], (255, "", "Unsupported option"))

    with pytest.raises(FatalSystemError):
        SshdConfigAction("ssh-hardening", hardening_directives(2222, "deploy"), path=config).apply(run_config(), executor)

    assert config.read_text() == UBUNTU_SSHD
    assert executor.commands("systemctl") == []


def test_hardening_directives() -> None:
    directives = hardening_directives(2200, "ops")
    assert directives["Port"] == "2200"
    assert directives["PasswordAuthentication"] == "no"
    assert directives["AllowUsers"] == "ops"


def test_duplicate_active_port_is_dropped(tmp_path: Path) -> None:
    config = tmp_path / "sshd_config"
    config.write_text("#Port 22\nListenAddress 0.0.0.0\nPort 22\n")
    action = SshdConfigAction("ssh-hardening", hardening_directives(2222, "deploy"), path=config)

    result = action.apply(run_config(), FakeExecutor())

    assert result.outcome == APPLIED
    content = config.read_text()
    assert content.startswith("Port 2222\nListenAddress 0.0.0.0\n")
    assert "Port 22\n" not in content
    assert action.apply(run_config(), FakeExecutor()).outcome == SKIPPED


def test_match_block_overrides_are_left_alone(tmp_path: Path) -> None:
    config = tmp_path / "sshd_config"
    config.write_text(UBUNTU_SSHD + "\nMatch User backup\n    PasswordAuthentication yes\n")
    action = SshdConfigAction("ssh-hardening", hardening_directives(2222, "deploy"), path=config)

    action.apply(run_config(), FakeExecutor())

    head, block = config.read_text().split("Match User backup")
    assert "PasswordAuthentication no\n" in head
    assert "AllowUsers deploy" in head
    assert block == "\n    PasswordAuthentication yes\n"
    assert action.apply(run_config(), FakeExecutor()).outcome == SKIPPED
