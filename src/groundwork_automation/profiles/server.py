"""Fresh Ubuntu server: admin user, SSH hardening, Node.js, nginx, firewall."""

from __future__ import annotations

from pathlib import Path

from . import Profile, require_root
from ..operations import (
    Action,
    AptCacheAction,
    AptMaintenanceAction,
    AuthorizedKeysAction,
    ExecAction,
    LoginShellAction,
    PackageAction,
    PathAbsentAction,
    PgHbaAction,
    PostgresDatabaseAction,
    PostgresRoleAction,
    PublicAddressAction,
    RemoteScriptAction,
    ServiceAction,
    SnapAction,
    SshdConfigAction,
    SymlinkAction,
    UfwEnableAction,
    UfwRuleAction,
    UserAction,
    hardening_directives,
)
from ..probes import AptSourceProbe, PathProbe
from ..report import Instruction
from ..resolver import BOOL, ParameterSpec, RunConfig, domain, email, port_in_range, sql_identifier, unix_username

OH_MY_ZSH_URL = "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
NODESOURCE_URL = "https://deb.nodesource.com/setup_{major}.x"

ESSENTIAL_PACKAGES = (
    "build-essential",
    "curl",
    "git",
    "zsh",
    "gnupg",
    "software-properties-common",
    "apt-transport-https",
    "ca-certificates",
    "ruby-full",
    "libpq-dev",
    # ruby-build needs these to compile rubies for the workstation profile
    "libssl-dev",
    "libyaml-dev",
    "zlib1g-dev",
)


def node_major(value) -> str:
    text = str(value).strip()
    if not text.isdigit() or not 16 <= int(text) <= 99:
        raise ValueError(f"'{text}' is not a Node.js major version like 20")
    return text


def _postgres(config: RunConfig) -> bool:
    return config.get("install_postgres", False)


def _tls(config: RunConfig) -> bool:
    return config.get("enable_tls", False)


SCHEMA = (
    ParameterSpec("username", "Non-root user to create", validator=unix_username),
    ParameterSpec(
        "user_password",
        "Password for the new user (used by sudo; leave empty to skip)",
        secret=True,
        required=False,
    ),
    ParameterSpec("ssh_port", "SSH port (1024-65535, e.g. 2222)", validator=port_in_range(1024, 65535)),
    ParameterSpec("node_major", "Node.js major version", default="20", validator=node_major),
    ParameterSpec("install_postgres", "Install and configure PostgreSQL?", default=False, kind=BOOL),
    ParameterSpec("pg_username", "PostgreSQL user", validator=sql_identifier, when=_postgres),
    ParameterSpec("pg_password", "PostgreSQL password", secret=True, when=_postgres),
    ParameterSpec("pg_database", "PostgreSQL database", validator=sql_identifier, when=_postgres),
    ParameterSpec("enable_tls", "Obtain a Let's Encrypt certificate with certbot?", default=False, kind=BOOL),
    ParameterSpec("domain", "Domain name (e.g. example.com)", validator=domain, when=_tls),
    ParameterSpec("email", "Email for renewal notices", validator=email, when=_tls),
)


def build(config: RunConfig) -> list[Action]:
    user = config["username"]
    port = config["ssh_port"]
    major = config["node_major"]
    retry = config.retry

    actions: list[Action] = [
        AptCacheAction("apt-cache"),
        AptMaintenanceAction("system-upgrade", "upgrade", depends_on=("apt-cache",)),
        PackageAction("essential-packages", ESSENTIAL_PACKAGES, depends_on=("apt-cache",)),
        RemoteScriptAction(
            "oh-my-zsh-root",
            OH_MY_ZSH_URL,
            probe=PathProbe(Path("/root/.oh-my-zsh"), kind="dir"),
            interpreter=("sh",),
            env={"CHSH": "no", "RUNZSH": "no", "HOME": "/root"},
            retry=retry,
            fatal=False,
            depends_on=("essential-packages",),
        ),
        LoginShellAction("root-shell", "root", "/usr/bin/zsh", fatal=False, depends_on=("essential-packages",)),
        UserAction("create-user", user, groups=("sudo",), password_param="user_password"),
        AuthorizedKeysAction("authorized-keys", user, depends_on=("create-user",)),
        SshdConfigAction("ssh-hardening", hardening_directives(port, user), depends_on=("create-user",)),
        RemoteScriptAction(
            "nodesource-repo",
            NODESOURCE_URL.format(major=major),
            probe=AptSourceProbe(f"deb.nodesource.com/node_{major}.x"),
            retry=retry,
            depends_on=("essential-packages",),
        ),
        PackageAction("nodejs", ["nodejs"], depends_on=("nodesource-repo",)),
    ]

    if _postgres(config):
        pg_user = config["pg_username"]
        database = config["pg_database"]
        actions += [
            PackageAction("postgresql", ["postgresql", "postgresql-contrib"], depends_on=("apt-cache",)),
            ServiceAction("postgresql-service", "postgresql", depends_on=("postgresql",)),
            PostgresRoleAction(
                "postgres-role", pg_user, password_param="pg_password", depends_on=("postgresql-service",)
            ),
            PostgresDatabaseAction("postgres-database", database, owner=pg_user, depends_on=("postgres-role",)),
            PgHbaAction("pg-hba", database, pg_user, depends_on=("postgres-database",)),
        ]

    actions += [
        PackageAction("nginx", ["nginx"], depends_on=("apt-cache",)),
        ServiceAction("nginx-service", "nginx", depends_on=("nginx",)),
        PathAbsentAction("nginx-default-site", Path("/etc/nginx/sites-enabled/default"), depends_on=("nginx",)),
    ]

    if _tls(config):
        site = config["domain"]
        actions += [
            PackageAction("snapd", ["snapd"], fatal=False, depends_on=("apt-cache",)),
            SnapAction("snap-core", "core", fatal=False, depends_on=("snapd",)),
            PackageAction("apt-certbot", ["certbot"], state="absent", fatal=False),
            SnapAction("certbot", "certbot", classic=True, fatal=False, depends_on=("snap-core",)),
            SymlinkAction("certbot-link", Path("/usr/bin/certbot"), "/snap/bin/certbot", fatal=False, depends_on=("certbot",)),
            ExecAction(
                "tls-certificate",
                [
                    "certbot",
                    "--nginx",
                    "-d",
                    site,
                    "--non-interactive",
                    "--agree-tos",
                    "-m",
                    config["email"],
                    "--redirect",
                    "--staple-ocsp",
                ],
                creates=Path("/etc/letsencrypt/live") / site / "fullchain.pem",
                fatal=False,
                resource=site,
                depends_on=("certbot-link", "nginx-service"),
            ),
        ]

    actions += [
        # The firewall only goes up once sshd listens on the new port.
        PackageAction("ufw", ["ufw"], depends_on=("ssh-hardening",)),
        UfwRuleAction("ufw-ssh", f"{port}/tcp", comment="Allow SSH on custom port", depends_on=("ufw", "ssh-hardening")),
        UfwRuleAction("ufw-http", "http", comment="Allow HTTP (port 80)", depends_on=("ufw",)),
        UfwRuleAction("ufw-https", "https", comment="Allow HTTPS (port 443)", depends_on=("ufw",)),
        UfwEnableAction("ufw-enable", depends_on=("ufw-ssh",)),
        AptMaintenanceAction("cleanup", "autoremove", clean=True),
        PublicAddressAction("public-ip", retry=retry),
    ]
    return actions


INSTRUCTIONS = (
    Instruction(
        "Reconnect as the new user: ssh -p {{ ssh_port }} {{ username }}@{{ public_ip | default('<server-ip>') }}",
        requires=("ssh-hardening",),
    ),
    Instruction(
        "Password login is disabled. Make sure your public key is in "
        "/home/{{ username }}/.ssh/authorized_keys before closing this session.",
        requires=("ssh-hardening",),
    ),
    Instruction("Verify sudo as {{ username }}: sudo ls /root", requires=("create-user",)),
    Instruction("Then run the user setup as {{ username }}: groundwork workstation", requires=("create-user",)),
    Instruction(
        "Connect to PostgreSQL with: psql -U {{ pg_username }} -d {{ pg_database }}",
        when=_postgres,
        requires=("pg-hba",),
    ),
    Instruction(
        "A certificate for {{ domain }} is installed and renewed automatically by certbot. "
        "Test it at https://www.ssllabs.com/ssltest/analyze.html?d={{ domain }}",
        when=_tls,
        requires=("tls-certificate",),
    ),
    Instruction(
        "Place web files in /var/www/html or configure sites in /etc/nginx/sites-available/.",
        requires=("nginx-service",),
    ),
    Instruction("Consider unattended-upgrades for automatic security updates: apt-get install unattended-upgrades"),
)


PROFILE = Profile(
    name="server",
    description="Harden a fresh Ubuntu server and install Node.js, nginx and optional PostgreSQL/TLS (run as root)",
    schema=SCHEMA,
    build=build,
    instructions=INSTRUCTIONS,
    preflight=require_root,
)
