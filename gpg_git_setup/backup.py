"""
Snapshot of the keyring directory taken before anything is changed, and the
rollback that puts it back.

Backups are siblings of the keyring directory named
``<keyring dir name>_backup_YYYYmmdd_HHMMSS``. They are only pruned when a
retention count is configured.
"""

import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .console import ok, info, warn, fail, dim, dry_run
from .errors import BackupError, GitConfigError
from .git_config import SIGNING_KEYS

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Agent sockets and lock files cannot (and must not) be copied
_RUNTIME_FILES = shutil.ignore_patterns("S.*", ".#*")


@dataclass(frozen=True)
class BackupHandle:
    path: Path | None
    keyring_existed: bool
    dry_run: bool = False


class BackupManager:
    def __init__(self, options, git, now=datetime.now):
        self.options = options
        self.git = git
        self.home = Path(options.gnupg_home)
        self.now = now

    @property
    def prefix(self):
        return f"{self.home.name}_backup_"

    def backup_path(self):
        path = self.home.parent / f"{self.prefix}{self.now().strftime(TIMESTAMP_FORMAT)}"
        n = 1
        while path.exists():
            path = path.with_name(f"{self.prefix}{self.now().strftime(TIMESTAMP_FORMAT)}_{n}")
            n += 1
        return path

    def backups(self):
        """Existing backups, oldest first."""
        if not self.home.parent.is_dir():
            return []
        found = [p for p in self.home.parent.glob(f"{self.prefix}*") if p.is_dir()]
        return sorted(found, key=lambda p: p.name)

    def snapshot(self):
        if self.options.dry_run:
            dry_run(f"backup GPG config to: {self.home.parent / (self.prefix + '<timestamp>')}")
            return BackupHandle(None, self.home.is_dir(), dry_run=True)

        if not self.home.is_dir():
            info("No existing GPG configuration to backup")
            return BackupHandle(None, keyring_existed=False)

        path = self.backup_path()
        info("Backing up existing GPG configuration...")
        try:
            shutil.copytree(self.home, path, symlinks=True, ignore=_RUNTIME_FILES)
            path.chmod(0o700)
        except OSError as e:
            shutil.rmtree(path, ignore_errors=True)
            raise BackupError(
                f"Could not back up {self.home}: {e}",
                hint=f"Check permissions on {self.home} and free space in {self.home.parent}, then retry.",
            ) from e
        ok(f"GPG config backed up to: {path}")

        if self.options.keep_backups:
            self.prune(self.options.keep_backups)
        else:
            dim("Backups accumulate between runs; pass --keep-backups N to prune old ones")
        return BackupHandle(path, keyring_existed=True)

    def prune(self, keep):
        """Delete all but the newest ``keep`` backups. Returns the removed paths."""
        existing = self.backups()
        stale = existing[:-keep] if keep > 0 else existing
        removed = []
        for path in stale:
            try:
                shutil.rmtree(path)
            except OSError as e:
                warn(f"Could not remove old backup {path.name}: {e}")
                continue
            dim(f"Removed old backup {path.name}")
            removed.append(path)
        return removed

    def rollback(self, handle):
        """Restore the keyring from ``handle`` and unset git's signing settings."""
        warn("Rolling back changes...")

        if handle.dry_run:
            dry_run(f"restore {self.home} from backup")
        elif handle.path is not None and handle.path.is_dir():
            info("Restoring GPG configuration from backup...")
            try:
                if self.home.exists():
                    shutil.rmtree(self.home)
                shutil.copytree(handle.path, self.home, symlinks=True)
                self.home.chmod(0o700)
                ok("GPG configuration restored")
            except OSError as e:
                fail(f"Could not restore {self.home}: {e}")
                dim(f"Restore it by hand: rm -rf {self.home} && cp -R {handle.path} {self.home}")
        elif not handle.keyring_existed and self.home.exists():
            info(f"Removing {self.home} created during this run...")
            shutil.rmtree(self.home, ignore_errors=True)

        for key in SIGNING_KEYS:
            try:
                self.git.unset(key)
            except GitConfigError as e:
                fail(e.message)

        warn("Rollback complete. Please check your configuration.")
