import subprocess
from pathlib import Path

import pytest

from groundwork_automation.errors import ProvisionError
from groundwork_automation.executors import RetryPolicy
from groundwork_automation.operations.exec import ExecAction, FactAction, PublicAddressAction, run_as
from groundwork_automation.resolver import RunConfig
from groundwork_automation.secrets import Secret, forget_secrets
from groundwork_automation.types import APPLIED, SKIPPED

from fakes import FakeExecutor, run_config


def test_creates_guard(tmp_path: Path) -> None:
    keyring = tmp_path / "mongodb.gpg"

    def fetch_key(cmd, _input):
        keyring.write_text("key")
        return 0

    executor = FakeExecutor().on(["sh", "-c"], fetch_key)
    action = ExecAction("mongodb-key", f"curl -fsSL https://example.invalid/key.asc | gpg --dearmor -o {keyring}", creates=keyring)

    result = action.apply(run_config(), executor)

    assert result.outcome == APPLIED
    assert result.details == "ran (rc=0)"
    assert executor.calls[0][:2] == ["sh", "-c"]
    assert action.apply(run_config(), FakeExecutor()).outcome == SKIPPED


def test_unless_guard_skips() -> None:
    executor = FakeExecutor().on(["test"], 0)
    action = ExecAction("noop", ["touch", "/tmp/never"], unless=["test", "-f", "/etc/hostname"])
    assert action.apply(run_config(), executor).outcome == SKIPPED
    assert executor.commands("touch") == []


def test_placeholders_use_public_values_only() -> None:
    config = RunConfig({"domain": "example.com", "db_password": Secret("hidden-pw")})
    try:
        executor = FakeExecutor()
        action = ExecAction("cert", "certbot --nginx -d $domain --pass $db_password", unless=["false"])
        action.mutate(config, executor, None)
        assert executor.calls[0][2] == "certbot --nginx -d example.com --pass $db_password"
    finally:
        forget_secrets()


def test_unexpected_return_code_raises() -> None:
    executor = FakeExecutor().on(["false"], 1).on(["ruby-build"], (2, "", "BUILD FAILED"))
    action = ExecAction("ruby-install", ["ruby-build", "3.2.2"], unless=["false"])
    with pytest.raises(subprocess.CalledProcessError) as excinfo:
        action.apply(run_config(), executor)
    assert excinfo.value.returncode == 2
    assert excinfo.value.stderr == "BUILD FAILED"


def test_allowed_return_codes() -> None:
    state = {"done": False}

    def grep(cmd, _input):
        return 0 if state["done"] else 1

    def command(cmd, _input):
        state["done"] = True
        return 3

    executor = FakeExecutor().on(["grep"], grep).on(["tool"], command)
    result = ExecAction("tool", ["tool"], unless=["grep", "-q", "x", "f"], returns=(0, 3)).apply(run_config(), executor)
    assert result.details == "ran (rc=3)"


def test_exec_requires_a_guard() -> None:
    with pytest.raises(ValueError, match="creates, unless or a probe"):
        ExecAction("unguarded", ["true"])


def test_env_list_normalized() -> None:
    action = ExecAction("x", ["true"], unless=["true"], env=["CHSH=no", "RUNZSH=no"])
    assert action.env == {"CHSH": "no", "RUNZSH": "no"}
    with pytest.raises(ValueError):
        ExecAction("x", ["true"], unless=["true"], env=["BROKEN"])


def test_run_as_quotes_for_login_shell() -> None:
    assert run_as("dev", ["composer", "global", "require", "laravel/installer"]) == [
        "runuser",
        "-l",
        "dev",
        "-c",
        "composer global require laravel/installer",
    ]
    assert run_as("dev", ["echo", "a b"])[-1] == "echo 'a b'"


def test_fact_lands_in_result() -> None:
    executor = FakeExecutor().on(["curl"], (0, "203.0.113.7\n"))
    result = PublicAddressAction().apply(run_config(), executor)
    assert result.outcome == SKIPPED
    assert result.facts == {"public_ip": "203.0.113.7"}
    assert result.details == "public_ip=203.0.113.7"


def test_fact_failure_is_soft_by_default() -> None:
    executor = FakeExecutor().on(["curl"], (7, "", "curl: (7) Failed to connect"))
    action = PublicAddressAction(retry=RetryPolicy(max_retries=1, delay=0.5))
    assert action.fatal is False
    with pytest.raises(ProvisionError, match="Failed to connect"):
        action.apply(run_config(), executor)
    assert executor.sleeps == [0.5]


def test_fact_rejects_unexpected_output() -> None:
    executor = FakeExecutor().on(["hostname"], (0, "<html>"))
    action = FactAction("hostname", "fqdn", ["hostname", "-f"], pattern=r"[a-z0-9.-]+")
    assert action.probe(run_config(), executor).is_unknown
