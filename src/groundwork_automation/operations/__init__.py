"""Idempotent provisioning actions."""

from .authorized_key import AuthorizedKeysAction
from .base import Action
from .database import MysqlDatabaseAction, PgHbaAction, PostgresDatabaseAction, PostgresRoleAction
from .exec import ExecAction, FactAction, PublicAddressAction, run_as
from .file import (
    BlockInFileAction,
    ConfigDirectivesAction,
    LineInFileAction,
    PathAbsentAction,
    SymlinkAction,
)
from .firewall import UfwEnableAction, UfwRuleAction
from .package import (
    AptCacheAction,
    AptMaintenanceAction,
    AptRepositoryAction,
    PackageAction,
    SnapAction,
)
from .remote import ComposerInstallAction, GitCloneAction, RemoteScriptAction
from .service import ServiceAction
from .ssh import SshdConfigAction, hardening_directives
from .user import LoginShellAction, UserAction

__all__ = [
    "Action",
    "AptCacheAction",
    "AptMaintenanceAction",
    "AptRepositoryAction",
    "AuthorizedKeysAction",
    "BlockInFileAction",
    "ComposerInstallAction",
    "ConfigDirectivesAction",
    "ExecAction",
    "FactAction",
    "GitCloneAction",
    "LineInFileAction",
    "LoginShellAction",
    "MysqlDatabaseAction",
    "PackageAction",
    "PathAbsentAction",
    "PgHbaAction",
    "PostgresDatabaseAction",
    "PostgresRoleAction",
    "PublicAddressAction",
    "RemoteScriptAction",
    "ServiceAction",
    "SnapAction",
    "SshdConfigAction",
    "SymlinkAction",
    "UfwEnableAction",
    "UfwRuleAction",
    "UserAction",
    "hardening_directives",
    "run_as",
]
