"""
Git's global configuration: identity, signing settings, global gitignore.

``apply`` is the only writer of the signing settings and touches a key only
when its value differs, so running it twice performs no writes the second
time.
"""

from dataclasses import dataclass, field
from pathlib import Path

from . import shell
from .console import ok, info, dry_run
from .errors import GitConfigError

SIGNING_KEY = "user.signingkey"
GPG_PROGRAM = "gpg.program"
COMMIT_SIGN = "commit.gpgsign"
SIGNING_KEYS = (SIGNING_KEY, GPG_PROGRAM, COMMIT_SIGN)

# Settings of other signing mechanisms (SSH / X.509) that would override GPG
ALTERNATE_SIGNING_KEYS = ("gpg.format", "gpg.ssh.program", "gpg.ssh.allowedSignersFile")

GLOBAL_GITIGNORE = """\
# macOS
.DS_Store
.DS_Store?
._*
.Spotlight-V100
.Trashes
ehthumbs.db
Thumbs.db

# Editor files
*~
*.swp
*.swo
.vscode/
.idea/

# Log files
*.log
npm-debug.log*
yarn-debug.log*
yarn-error.log*

# Runtime data
pids
*.pid
*.seed
*.pid.lock

# Temporary files
*.tmp
*.temp
"""


@dataclass(frozen=True)
class Identity:
    name: str = ""
    email: str = ""

    @property
    def complete(self):
        return bool(self.name and self.email)

    def __str__(self):
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class SigningConfiguration:
    signing_key: str = ""
    gpg_program: str = ""
    commit_sign: bool = False


@dataclass
class AppliedDelta:
    changes: list = field(default_factory=list)  # (key, old, new)
    removed: list = field(default_factory=list)  # (key, old)

    @property
    def writes(self):
        return len(self.changes) + len(self.removed)

    @property
    def changed(self):
        return self.writes > 0


class GitConfig:
    """``git config --global`` reads and writes."""

    def __init__(self, options):
        self.options = options

    def get(self, key):
        return shell.sh(["git", "config", "--global", key])

    def set(self, key, value):
        if self.options.dry_run:
            dry_run(f"run: git config --global {key} {value}")
            return
        r = shell.run(["git", "config", "--global", key, str(value)])
        if r.returncode != 0:
            raise GitConfigError(f"Could not set git {key}: {r.stderr.strip()}")

    def unset(self, key):
        if self.options.dry_run:
            dry_run(f"run: git config --global --unset {key}")
            return
        r = shell.run(["git", "config", "--global", "--unset", key])
        # 5: the key was not set
        if r.returncode not in (0, 5):
            raise GitConfigError(f"Could not unset git {key}: {r.stderr.strip()}")

    def identity(self):
        return Identity(name=self.get("user.name"), email=self.get("user.email"))

    def signing(self):
        return SigningConfiguration(
            signing_key=self.get(SIGNING_KEY),
            gpg_program=self.get(GPG_PROGRAM),
            commit_sign=self.get(COMMIT_SIGN) == "true",
        )


def apply(git, desired):
    """Bring git's signing settings to ``desired``, writing only what differs."""
    delta = AppliedDelta()

    for key in ALTERNATE_SIGNING_KEYS:
        current = git.get(key)
        if not current or (key == "gpg.format" and current == "openpgp"):
            continue
        git.unset(key)
        info(f"Removed conflicting {key} ({current})")
        delta.removed.append((key, current))

    wanted = [
        (SIGNING_KEY, desired.signing_key),
        (GPG_PROGRAM, desired.gpg_program),
        (COMMIT_SIGN, "true" if desired.commit_sign else "false"),
    ]
    for key, new in wanted:
        old = git.get(key)
        if old == new:
            info(f"{key} already configured: {new}")
            continue
        git.set(key, new)
        info(f"Updated {key}: {old or '(unset)'} → {new}")
        delta.changes.append((key, old, new))

    if delta.changed:
        ok(f"Git configured for GPG signing with key {desired.signing_key}")
    else:
        ok(f"Git already properly configured for GPG signing with key {desired.signing_key}")
    return delta


def setup_global_gitignore(git, options, path=None):
    """Point core.excludesfile at ~/.gitignore_global and create it if missing."""
    path = Path(path) if path else Path.home() / ".gitignore_global"
    if git.get("core.excludesfile") != str(path):
        git.set("core.excludesfile", str(path))

    if path.exists():
        info("Global gitignore already exists")
    elif options.dry_run:
        dry_run(f"create {path}")
    else:
        path.write_text(GLOBAL_GITIGNORE)
        ok(f"Created {path}")
