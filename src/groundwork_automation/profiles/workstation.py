"""Per-user shell setup: Oh My Zsh and rbenv with an optional Ruby."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from . import Profile, require_non_root
from .server import OH_MY_ZSH_URL
from ..operations import Action, BlockInFileAction, ExecAction, GitCloneAction, RemoteScriptAction
from ..probes import LineProbe, PathProbe
from ..report import Instruction
from ..resolver import ParameterSpec, RunConfig, version

RBENV_REPO = "https://github.com/rbenv/rbenv.git"
RUBY_BUILD_REPO = "https://github.com/rbenv/ruby-build.git"

RBENV_INIT = """\
# rbenv setup
export PATH="$HOME/.rbenv/bin:$PATH"
eval "$(rbenv init - zsh)"
"""

SCHEMA = (
    ParameterSpec(
        "ruby_version",
        "Ruby version to install with rbenv (e.g. 3.2.2; leave empty to skip)",
        validator=version,
        required=False,
    ),
)


def build(config: RunConfig, home: Optional[Path] = None) -> list[Action]:
    home = home or Path.home()
    rbenv_root = home / ".rbenv"
    rbenv = str(rbenv_root / "bin" / "rbenv")
    retry = config.retry

    actions: list[Action] = [
        RemoteScriptAction(
            "oh-my-zsh",
            OH_MY_ZSH_URL,
            probe=PathProbe(home / ".oh-my-zsh", kind="dir"),
            interpreter=("sh",),
            env={"CHSH": "no", "RUNZSH": "no"},
            retry=retry,
            fatal=False,
        ),
        GitCloneAction("rbenv", RBENV_REPO, rbenv_root, retry=retry),
        GitCloneAction("ruby-build", RUBY_BUILD_REPO, rbenv_root / "plugins" / "ruby-build", retry=retry, depends_on=("rbenv",)),
        BlockInFileAction("rbenv-init", home / ".zshrc", RBENV_INIT, anchor=r"rbenv init", depends_on=("rbenv",)),
    ]

    ruby = config.get("ruby_version")
    if ruby:
        actions += [
            ExecAction(
                "ruby-install",
                [rbenv, "install", "--skip-existing", ruby],
                creates=rbenv_root / "versions" / ruby,
                timeout=3600,
                resource=f"ruby {ruby}",
                depends_on=("ruby-build",),
            ),
            ExecAction(
                "ruby-global",
                [rbenv, "global", ruby],
                probe=LineProbe(rbenv_root / "version", rf"^{re.escape(ruby)}$"),
                resource=f"ruby {ruby}",
                depends_on=("ruby-install",),
            ),
        ]
    return actions


INSTRUCTIONS = (
    Instruction("Run 'source ~/.zshrc' or open a new terminal so rbenv is on your PATH.", requires=("rbenv-init",)),
    Instruction("Make zsh your login shell: chsh -s /usr/bin/zsh", requires=("oh-my-zsh",)),
    Instruction(
        "Ruby {{ ruby_version }} is the global default; check with 'ruby -v'.",
        when=lambda config: bool(config.get("ruby_version")),
        requires=("ruby-global",),
    ),
    Instruction(
        "Install a Ruby later with 'rbenv install <version>' and 'rbenv global <version>'.",
        when=lambda config: not config.get("ruby_version"),
        requires=("ruby-build",),
    ),
)


PROFILE = Profile(
    name="workstation",
    description="Oh My Zsh and rbenv for the current user (run as that user, not root)",
    schema=SCHEMA,
    build=build,
    instructions=INSTRUCTIONS,
    preflight=require_non_root,
)
