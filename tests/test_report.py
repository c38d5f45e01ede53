import json
import os
import stat
from pathlib import Path

from groundwork_automation.report import Instruction, Report, summarize, write_report
from groundwork_automation.resolver import RunConfig
from groundwork_automation.secrets import Secret, forget_secrets
from groundwork_automation.types import APPLIED, FAILED, SKIPPED, StepResult


def results() -> list:
    return [
        StepResult("apt-cache", SKIPPED, "noop"),
        StepResult("nginx", APPLIED, "installed=nginx"),
        StepResult("tls-certificate", FAILED, "certbot rc=1: DNS problem", fatal=False),
        StepResult("public-ip", SKIPPED, "public_ip=203.0.113.7", facts={"public_ip": "203.0.113.7"}),
        StepResult("cleanup", SKIPPED, "not attempted (received SIGINT)", attempted=False),
    ]


def test_counts_and_summary_line() -> None:
    report = summarize(results())
    assert (report.applied, report.skipped, report.failed, report.not_attempted) == (1, 2, 1, 1)
    assert report.summary_line() == "Applied: 1 | Skipped: 2 | Failed: 1 | Not attempted: 1"
    assert report.exit_code == 0
    assert [r.action for r in report.failures] == ["tls-certificate"]


def test_summary_line_hides_zero_not_attempted() -> None:
    report = Report(profile="server", results=[StepResult("a", APPLIED)])
    assert report.summary_line() == "Applied: 1 | Skipped: 0 | Failed: 0"


def test_exit_code_on_fatal_or_interrupt() -> None:
    fatal = Report(profile=None, results=[StepResult("ssh", FAILED, "x", fatal=True)])
    assert fatal.halted and fatal.exit_code == 1
    assert Report(profile=None, results=[], interrupted="received SIGTERM").exit_code == 1


def test_instructions_respect_when_and_requires() -> None:
    config = RunConfig({"username": "deploy", "ssh_port": 2222, "enable_tls": True, "domain": "example.com"})
    instructions = [
        Instruction("ssh -p {{ ssh_port }} {{ username }}@{{ public_ip | default('<server-ip>') }}"),
        Instruction("Visit https://{{ domain }}", when=lambda c: c.enabled("enable_tls"), requires=("tls-certificate",)),
        Instruction("Postgres ready", when=lambda c: c.enabled("install_postgres")),
        Instruction("nginx is serving", requires=("nginx",)),
        Instruction("Cleaned up", requires=("cleanup",)),
    ]

    report = summarize(results(), config=config, instructions=instructions, profile="server")

    assert report.instructions == ["ssh -p 2222 deploy@203.0.113.7", "nginx is serving"]
    assert report.facts == {"public_ip": "203.0.113.7"}


def test_missing_template_value_skips_instruction() -> None:
    report = summarize([], config=RunConfig({}), instructions=[Instruction("Ruby {{ ruby_version }}"), Instruction("done")])
    assert report.instructions == ["done"]


def test_json_never_contains_secrets(tmp_path: Path) -> None:
    config = RunConfig({"username": "deploy", "pg_password": Secret("Sup3r-secret")})
    try:
        leaky = [StepResult("postgres-role", FAILED, "psql said Sup3r-secret", fatal=True)]
        report = summarize(leaky, config=config, profile="server")
        payload = report.to_json()
        assert "Sup3r-secret" not in payload
        data = json.loads(payload)
        assert data["parameters"] == {"username": "deploy"}
        assert data["redacted"] == ["pg_password"]
        assert data["exit_code"] == 1
        assert data["counts"]["failed"] == 1

        path = write_report(report, tmp_path / "reports" / "run.json")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert "Sup3r-secret" not in path.read_text()
    finally:
        forget_secrets()


def test_write_report_tightens_existing_file(tmp_path: Path) -> None:
    path = tmp_path / "run.json"
    path.write_text("{}")
    os.chmod(path, 0o644)
    write_report(Report(profile="workstation", results=[]), path)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert json.loads(path.read_text())["profile"] == "workstation"


def test_short_secret_does_not_corrupt_report_text() -> None:
    config = RunConfig({"pg_password": Secret("post")})
    try:
        ran = [
            StepResult("postgresql", APPLIED, "installed=postgresql,postgresql-contrib"),
            StepResult("postgres-role", FAILED, "psql -W post rejected", fatal=True),
        ]
        data = json.loads(summarize(ran, config=config).to_json())
        assert data["results"][0]["action"] == "postgresql"
        assert data["results"][0]["details"] == "installed=postgresql,postgresql-contrib"
        assert data["failures"][0]["reason"] == "psql -W ******** rejected"
    finally:
        forget_secrets()
