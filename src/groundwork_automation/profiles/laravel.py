"""Laravel development environment: PHP, Composer, a database and Node.js.

Runs through sudo; user scoped steps (shell rc, global Composer packages)
target the invoking user.
"""

from __future__ import annotations

from pathlib import Path

from . import Profile, home_of, invoking_user, os_codename, require_root
from ..operations import (
    Action,
    AptCacheAction,
    AptRepositoryAction,
    BlockInFileAction,
    ComposerInstallAction,
    ConfigDirectivesAction,
    ExecAction,
    LineInFileAction,
    MysqlDatabaseAction,
    PackageAction,
    PostgresDatabaseAction,
    PostgresRoleAction,
    RemoteScriptAction,
    ServiceAction,
    run_as,
)
from ..probes import AptSourceProbe, CommandOutputProbe
from ..report import Instruction
from ..resolver import BOOL, CHOICE, ParameterSpec, RunConfig, sql_identifier, unix_username

PHP_VERSIONS = ("8.3", "8.2", "8.1", "8.0", "7.4")
DATABASES = ("mysql", "postgresql", "mongodb", "none")
PHP_EXTENSIONS = ("cli", "common", "curl", "mbstring", "xml", "bcmath", "zip", "gd", "intl", "readline")

NODESOURCE_LTS_URL = "https://deb.nodesource.com/setup_lts.x"
MONGODB_RELEASE = "7.0"
MONGODB_KEY_URL = f"https://www.mongodb.org/static/pgp/server-{MONGODB_RELEASE}.asc"
MONGODB_KEYRING = Path(f"/usr/share/keyrings/mongodb-server-{MONGODB_RELEASE}.gpg")
MONGODB_SOURCE = Path(f"/etc/apt/sources.list.d/mongodb-org-{MONGODB_RELEASE}.list")

COMPOSER_PATH = """\
# Composer global bin directory
export PATH="$HOME/.config/composer/vendor/bin:$PATH"
"""

PHP_INI_TUNING = {
    "memory_limit": "512M",
    "upload_max_filesize": "64M",
    "post_max_size": "64M",
}


def php_packages(php: str) -> list[str]:
    return [f"php{php}", *(f"php{php}-{ext}" for ext in PHP_EXTENSIONS), "unzip"]


def _sql_database(config) -> bool:
    return config.get("database") in {"mysql", "postgresql"}


def _create_database(config) -> bool:
    return _sql_database(config) and bool(config.get("create_database"))


SCHEMA = (
    ParameterSpec(
        "username",
        "Developer account to configure",
        default=lambda values: invoking_user(),
        validator=unix_username,
    ),
    ParameterSpec("php_version", "PHP version", default="8.2", kind=CHOICE, choices=PHP_VERSIONS),
    ParameterSpec("database", "Database server", default="none", kind=CHOICE, choices=DATABASES),
    ParameterSpec(
        "create_database",
        "Create a database and user for Laravel?",
        default=False,
        kind=BOOL,
        when=_sql_database,
    ),
    ParameterSpec("db_name", "Database name", validator=sql_identifier, when=_create_database),
    ParameterSpec("db_user", "Database user", validator=sql_identifier, when=_create_database),
    ParameterSpec("db_password", "Database password", secret=True, when=_create_database),
    ParameterSpec("install_node", "Install Node.js and npm for frontend assets?", default=True, kind=BOOL),
    ParameterSpec("tune_php_ini", "Raise PHP CLI memory_limit and upload sizes?", default=False, kind=BOOL),
    ParameterSpec("install_laravel", "Install the Laravel installer globally?", default=True, kind=BOOL),
)


def _database_actions(config: RunConfig, php: str) -> list[Action]:
    choice = config["database"]
    create = _create_database(config)
    if choice == "mysql":
        actions: list[Action] = [
            PackageAction("mysql", ["mysql-server", f"php{php}-mysql"], depends_on=("php",)),
            ServiceAction("mysql-service", "mysql", depends_on=("mysql",)),
        ]
        if create:
            actions.append(
                MysqlDatabaseAction(
                    "mysql-database",
                    config["db_name"],
                    config["db_user"],
                    password_param="db_password",
                    depends_on=("mysql-service",),
                )
            )
        return actions
    if choice == "postgresql":
        actions = [
            PackageAction("postgresql", ["postgresql", "postgresql-contrib", f"php{php}-pgsql"], depends_on=("php",)),
            ServiceAction("postgresql-service", "postgresql", depends_on=("postgresql",)),
        ]
        if create:
            actions += [
                PostgresRoleAction(
                    "postgres-role",
                    config["db_user"],
                    password_param="db_password",
                    depends_on=("postgresql-service",),
                ),
                PostgresDatabaseAction(
                    "postgres-database",
                    config["db_name"],
                    owner=config["db_user"],
                    depends_on=("postgres-role",),
                ),
            ]
        return actions
    if choice == "mongodb":
        codename = os_codename()
        source = (
            f"deb [ arch=amd64,arm64 signed-by={MONGODB_KEYRING} ] "
            f"https://repo.mongodb.org/apt/ubuntu {codename}/mongodb-org/{MONGODB_RELEASE} multiverse"
        )
        return [
            ExecAction(
                "mongodb-key",
                f"curl -fsSL {MONGODB_KEY_URL} | gpg --batch --yes --dearmor -o {MONGODB_KEYRING}",
                creates=MONGODB_KEYRING,
                retry=config.retry,
                resource=str(MONGODB_KEYRING),
            ),
            LineInFileAction(
                "mongodb-repo",
                MONGODB_SOURCE,
                source,
                r"^deb .*repo\.mongodb\.org.*$",
                create=True,
                mode=0o644,
                on_change=["apt-get", "update"],
                depends_on=("mongodb-key",),
            ),
            PackageAction("mongodb", ["mongodb-org", f"php{php}-mongodb"], depends_on=("mongodb-repo", "php")),
            ServiceAction("mongodb-service", "mongod", depends_on=("mongodb",)),
        ]
    return []


def build(config: RunConfig) -> list[Action]:
    php = config["php_version"]
    user = config["username"]
    home = home_of(user)
    retry = config.retry

    actions: list[Action] = [
        AptCacheAction("apt-cache"),
        PackageAction("software-properties", ["software-properties-common"], depends_on=("apt-cache",)),
        AptRepositoryAction(
            "php-ppa",
            "ondrej/php",
            ["add-apt-repository", "-y", "ppa:ondrej/php"],
            retry=retry,
            depends_on=("software-properties",),
        ),
        PackageAction("php", php_packages(php), depends_on=("php-ppa",)),
    ]
    actions += _database_actions(config, php)
    actions.append(ComposerInstallAction("composer", retry=retry, depends_on=("php",)))

    if config.enabled("install_node"):
        actions += [
            RemoteScriptAction(
                "nodesource-repo",
                NODESOURCE_LTS_URL,
                probe=AptSourceProbe("deb.nodesource.com"),
                retry=retry,
            ),
            PackageAction("nodejs", ["nodejs"], depends_on=("nodesource-repo",)),
        ]

    if config.enabled("tune_php_ini"):
        actions.append(
            ConfigDirectivesAction(
                "php-ini",
                Path(f"/etc/php/{php}/cli/php.ini"),
                PHP_INI_TUNING,
                separator=" = ",
                comment=";",
                depends_on=("php",),
            )
        )

    actions.append(
        BlockInFileAction("composer-path", home / ".zshrc", COMPOSER_PATH, anchor=r"composer/vendor/bin", owner=user)
    )

    if config.enabled("install_laravel"):
        actions.append(
            ExecAction(
                "laravel-installer",
                run_as(user, ["composer", "global", "require", "laravel/installer"]),
                probe=CommandOutputProbe(run_as(user, ["composer", "global", "show", "laravel/installer"])),
                retry=retry,
                resource="laravel/installer",
                depends_on=("composer",),
            )
        )
    return actions


def _database_is(name: str):
    return lambda config: config.get("database") == name


INSTRUCTIONS = (
    Instruction("Run 'source ~/.zshrc' or open a new terminal to pick up the Composer PATH.", requires=("composer-path",)),
    Instruction(
        "MySQL is running. Secure it with 'sudo mysql_secure_installation'; connect with 'sudo mysql'.",
        when=_database_is("mysql"),
        requires=("mysql-service",),
    ),
    Instruction(
        "PostgreSQL is running. Connect with 'sudo -u postgres psql'.",
        when=_database_is("postgresql"),
        requires=("postgresql-service",),
    ),
    Instruction("MongoDB is running. Connect with 'mongosh'.", when=_database_is("mongodb"), requires=("mongodb-service",)),
    Instruction(
        "Database '{{ db_name }}' is ready for user '{{ db_user }}'; put these credentials in your project's .env file.",
        when=lambda config: _create_database(config) and config.get("database") == "mysql",
        requires=("mysql-database",),
    ),
    Instruction(
        "Database '{{ db_name }}' is ready for user '{{ db_user }}'; put these credentials in your project's .env file.",
        when=lambda config: _create_database(config) and config.get("database") == "postgresql",
        requires=("postgres-database",),
    ),
    Instruction(
        "Create a project with 'laravel new project-name'.",
        when=lambda config: config.enabled("install_laravel"),
        requires=("laravel-installer",),
    ),
    Instruction("Or with Composer: composer create-project laravel/laravel project-name", requires=("composer",)),
    Instruction("Inside the project, run 'php artisan serve' to start the development server."),
)


PROFILE = Profile(
    name="laravel",
    description="PHP {0}, Composer, a database and Node.js for Laravel development (run with sudo)".format(
        "/".join(PHP_VERSIONS)
    ),
    schema=SCHEMA,
    build=build,
    instructions=INSTRUCTIONS,
    preflight=require_root,
)
