"""Run options, built once from the command line and passed to every step."""

import enum
import os
from dataclasses import dataclass, field
from pathlib import Path


class Mode(enum.Enum):
    FORCE_NEW = "new"
    AUTOMATIC = "auto"
    INTERACTIVE = "interactive"


def default_gnupg_home():
    home = os.environ.get("GNUPGHOME")
    return Path(home).expanduser() if home else Path.home() / ".gnupg"


@dataclass(frozen=True)
class RunOptions:
    dry_run: bool = False
    auto: bool = False
    new_key: bool = False
    # None keeps every backup
    keep_backups: int | None = None
    gnupg_home: Path = field(default_factory=default_gnupg_home)

    @property
    def mode(self):
        if self.new_key:
            return Mode.FORCE_NEW
        if self.auto:
            return Mode.AUTOMATIC
        return Mode.INTERACTIVE

    @property
    def interactive(self):
        """True when the operator may be prompted (``--auto`` never prompts)."""
        return not self.auto

    @property
    def agent_conf(self):
        return self.gnupg_home / "gpg-agent.conf"
