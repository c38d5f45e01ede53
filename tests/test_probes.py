from pathlib import Path

import pytest

from groundwork_automation.probes import (
    AptCacheProbe,
    AptSimulationProbe,
    AptSourceProbe,
    CommandOutputProbe,
    CommandProbe,
    DirectiveProbe,
    FirewallRuleProbe,
    FirewallStatusProbe,
    LineProbe,
    LoginShellProbe,
    PackageProbe,
    PathProbe,
    ServiceProbe,
    SqlProbe,
    UserProbe,
)

from fakes import FakeExecutor


def test_package_probe_reads_dpkg_status() -> None:
    executor = FakeExecutor().on(["dpkg-query"], (0, "install ok installed 8.2.12-1+ubuntu22.04"))
    state = PackageProbe("php8.2").check(executor)
    assert state.is_present
    assert state.value == "8.2.12-1+ubuntu22.04"


def test_package_probe_treats_config_files_as_absent() -> None:
    executor = FakeExecutor().on(["dpkg-query"], (0, "deinstall ok config-files 1.0"))
    assert PackageProbe("nginx").check(executor).is_absent


def test_package_probe_unknown_package_is_absent() -> None:
    executor = FakeExecutor().on(["dpkg-query"], (1, "", "no packages found matching nope"))
    assert PackageProbe("nope").check(executor).is_absent


def test_package_probe_without_dpkg_is_unknown() -> None:
    executor = FakeExecutor().on(["dpkg-query"], 127)
    assert PackageProbe("nginx").check(executor).is_unknown


def test_probes_run_during_dry_run() -> None:
    executor = FakeExecutor(dry_run=True).on(["dpkg-query"], (0, "install ok installed 1.2"))
    assert PackageProbe("git").check(executor).is_present
    assert executor.calls == [["dpkg-query", "-W", "-f", "${Status} ${Version}", "git"]]


def test_line_probe_returns_whole_line(tmp_path: Path) -> None:
    path = tmp_path / "pg_hba.conf"
    path.write_text("# comment\nlocal   app  app  md5\nlocal   all  all  peer\n")
    state = LineProbe(path, r"^local\s+app\s").check(FakeExecutor())
    assert state.value == "local   app  app  md5"
    assert LineProbe(tmp_path / "missing", r"x").check(FakeExecutor()).is_absent


def test_directive_probe_ignores_commented_lines(tmp_path: Path) -> None:
    path = tmp_path / "sshd_config"
    path.write_text("#Port 22\nPermitRootLogin no\n")
    executor = FakeExecutor()
    assert DirectiveProbe(path, "Port").check(executor).is_absent
    assert DirectiveProbe(path, "PermitRootLogin").check(executor).value == "no"
    assert DirectiveProbe(tmp_path / "missing", "Port").check(executor).is_unknown


def test_directive_probe_with_equals_separator(tmp_path: Path) -> None:
    path = tmp_path / "php.ini"
    path.write_text("memory_limit = 128M\n;upload_max_filesize = 2M\n")
    executor = FakeExecutor()
    assert DirectiveProbe(path, "memory_limit", separator=" = ").check(executor).value == "128M"
    assert DirectiveProbe(path, "upload_max_filesize", separator=" = ").check(executor).is_absent


def test_path_probe_kinds(tmp_path: Path) -> None:
    directory = tmp_path / "dir"
    directory.mkdir()
    link = tmp_path / "link"
    link.symlink_to("/snap/bin/certbot")
    executor = FakeExecutor()

    assert PathProbe(directory, kind="dir").check(executor).is_present
    assert PathProbe(directory, kind="file").check(executor).is_absent
    assert PathProbe(link, kind="link").check(executor).value == "/snap/bin/certbot"
    assert PathProbe(tmp_path / "nothing").check(executor).is_absent
    with pytest.raises(ValueError):
        PathProbe(directory, kind="socket")


def test_command_probe_uses_command_v() -> None:
    executor = FakeExecutor().on(["sh", "-c"], (0, "/usr/local/bin/composer\n"))
    state = CommandProbe("composer").check(executor)
    assert state.value == "/usr/local/bin/composer"
    assert executor.calls[0] == ["sh", "-c", "command -v composer"]


def test_command_output_probe_pattern() -> None:
    executor = FakeExecutor().on(["node"], (0, "v20.11.1\n"))
    assert CommandOutputProbe(["node", "--version"], pattern=r"^v20\.").check(executor).is_present
    assert CommandOutputProbe(["node", "--version"], pattern=r"^v18\.").check(executor).is_absent


def test_service_probe_reports_enabled_and_active() -> None:
    executor = FakeExecutor().on(["systemctl", "is-enabled"], 0).on(["systemctl", "is-active"], 3)
    assert ServiceProbe("nginx").check(executor).value == "enabled"

    stopped = FakeExecutor().on(["systemctl"], 1)
    assert ServiceProbe("nginx").check(stopped).is_absent


def test_firewall_rule_probe_matches_exact_rule() -> None:
    added = "Added user rules (see 'ufw status' for running firewall):\nufw allow 2222/tcp\nufw allow 80/tcp\n"
    executor = FakeExecutor().on(["ufw", "show", "added"], (0, added))
    assert FirewallRuleProbe("80/tcp").check(executor).is_present
    assert FirewallRuleProbe("22/tcp").check(executor).is_absent
    assert FirewallRuleProbe("443/tcp").check(executor).is_absent


def test_firewall_status_probe() -> None:
    active = FakeExecutor().on(["ufw", "status"], (0, "Status: active\n"))
    inactive = FakeExecutor().on(["ufw", "status"], (0, "Status: inactive\n"))
    assert FirewallStatusProbe().check(active).is_present
    assert FirewallStatusProbe().check(inactive).is_absent


def test_user_and_shell_probes() -> None:
    executor = (
        FakeExecutor()
        .on(["id", "-nG", "deploy"], (0, "deploy sudo\n"))
        .on(["getent", "passwd", "deploy"], (0, "deploy:x:1000:1000::/home/deploy:/usr/bin/zsh\n"))
    )
    assert UserProbe("deploy").check(executor).value == "deploy sudo"
    assert LoginShellProbe("deploy").check(executor).value == "/usr/bin/zsh"

    missing = FakeExecutor().on(["id"], (1, "", "no such user"))
    assert UserProbe("ghost").check(missing).is_absent


def test_sql_probe_states() -> None:
    client = ["psql", "-tAc"]
    assert SqlProbe(client, "SELECT 1").check(FakeExecutor().on(client, (0, "1\n"))).is_present
    assert SqlProbe(client, "SELECT 1").check(FakeExecutor().on(client, (0, ""))).is_absent
    assert SqlProbe(client, "SELECT 1").check(FakeExecutor().on(client, (2, "", "could not connect"))).is_unknown


def test_apt_cache_probe_age(tmp_path: Path) -> None:
    mtime = tmp_path.stat().st_mtime
    fresh = AptCacheProbe(max_age=3600, lists_dir=tmp_path, clock=lambda: mtime + 60)
    stale = AptCacheProbe(max_age=3600, lists_dir=tmp_path, clock=lambda: mtime + 7200)
    assert fresh.check(FakeExecutor()).is_present
    assert stale.check(FakeExecutor()).is_absent
    assert AptCacheProbe(lists_dir=tmp_path / "missing").check(FakeExecutor()).is_absent


def test_apt_simulation_probe() -> None:
    pending = FakeExecutor().on(["apt-get", "-s"], (0, "Inst openssl [3.0.2] (3.0.2-0ubuntu1.15)\n"))
    idle = FakeExecutor().on(["apt-get", "-s"], (0, "0 upgraded, 0 newly installed\n"))
    assert AptSimulationProbe("upgrade").check(pending).is_absent
    assert AptSimulationProbe("upgrade").check(idle).is_present
    with pytest.raises(ValueError):
        AptSimulationProbe("purge")


def test_apt_source_probe(tmp_path: Path) -> None:
    (tmp_path / "nodesource.list").write_text("deb [signed-by=/x.gpg] https://deb.nodesource.com/node_20.x nodistro main\n")
    (tmp_path / "notes.txt").write_text("deb.nodesource.com/node_18.x\n")
    assert AptSourceProbe("deb.nodesource.com/node_20.x", sources_dir=tmp_path).check(FakeExecutor()).is_present
    assert AptSourceProbe("deb.nodesource.com/node_18.x", sources_dir=tmp_path).check(FakeExecutor()).is_absent
