"""Registering the signing key with GitHub through the ``gh`` CLI."""

import os
import re
import tempfile

from . import shell
from .console import info, dry_run
from .errors import KeyUploadError

GITHUB_GPG_URL = "https://github.com/settings/gpg/new"

_KEY_ID = re.compile(r"[A-F0-9]{16}")


class GitHubRegistry:
    name = "GitHub"

    def __init__(self, options, keyring):
        self.options = options
        self.keyring = keyring

    def available(self):
        return shell.cmd_exists("gh")

    def authenticated(self):
        return shell.sh_ok(["gh", "auth", "status"])

    def login(self):
        if self.options.dry_run:
            dry_run("run: gh auth login")
            return True
        shell.interactive(["gh", "auth", "login"])
        return self.authenticated()

    def existing_key_ids(self):
        return set(_KEY_ID.findall(shell.sh(["gh", "gpg-key", "list"]).upper()))

    def upload_key(self, key_id):
        """Add the public half of ``key_id`` to the account. Returns False if already there."""
        if self.options.dry_run:
            dry_run(f"export public key: gpg --armor --export {key_id}")
            dry_run("upload to GitHub: gh gpg-key add")
            return True

        if key_id.upper() in self.existing_key_ids():
            info(f"GPG key {key_id} already exists on GitHub")
            return False

        armored = self.keyring.export_public(key_id)
        if not armored:
            raise KeyUploadError(f"Failed to export public key for {key_id}")

        fd, path = tempfile.mkstemp(prefix=f"gpg_key_{key_id}_", suffix=".asc")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(armored)
            r = shell.run(["gh", "gpg-key", "add", path])
        finally:
            os.unlink(path)

        if r.returncode != 0:
            raise KeyUploadError(
                "Failed to upload GPG key to GitHub",
                hint=f"You can manually add it at: {GITHUB_GPG_URL}",
            )
        return True
