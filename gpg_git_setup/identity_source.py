"""
Keybase as a source of PGP keys for the operator's identity.

Candidates come from ``keybase pgp list``; key material is exported with
``keybase pgp export`` and handed to the Keyring for import.
"""

import re
import time
from dataclasses import dataclass

from . import shell
from .console import info, warn, dry_run
from .errors import (
    ValidationError,
    SourceError,
    NotAuthenticated,
    KeyImportError,
    KeyUploadError,
)
from .keyring import normalize_fingerprint

MAX_ATTEMPTS = 3
RETRY_DELAY = 1.0

_EMAIL = re.compile(r"<([^>]*)>")


@dataclass(frozen=True)
class KeybaseKey:
    keybase_id: str
    fingerprint: str
    identities: tuple = ()

    def matches_email(self, email):
        needle = email.lower()
        return any(needle in identity.lower() for identity in self.identities)


def parse_pgp_list(output):
    """Parse ``keybase pgp list`` into one KeybaseKey per fingerprint.

    The listing is a sequence of blocks::

        Keybase Key ID:  0101f56e...
        PGP Fingerprint: 8062bb876817badb404dcd95add781f2d92daa2e
        PGP Identities:
           Jane Doe <jane@example.com>
    """
    keys = []
    keybase_id = ""
    fingerprint = None
    identities = []

    def flush():
        if fingerprint is not None:
            keys.append(KeybaseKey(keybase_id, fingerprint, tuple(identities)))

    for line in output.splitlines():
        if line.startswith("Keybase Key ID:"):
            flush()
            keybase_id = line.split(":", 1)[1].strip()
            fingerprint = None
            identities = []
        elif line.startswith("PGP Fingerprint:"):
            if fingerprint is not None:
                flush()
                identities = []
            fingerprint = line.split(":", 1)[1].strip()
        elif line.startswith("   ") and line.strip():
            identities.append(line.strip())

    flush()
    return keys


class KeybaseSource:
    name = "Keybase"

    def __init__(self, options):
        self.options = options

    def available(self):
        return shell.cmd_exists("keybase")

    def authenticated(self):
        return shell.sh_ok(["keybase", "status"])

    def require_authenticated(self):
        if not self.available():
            raise SourceError("Keybase not available", hint="Install it from https://keybase.io/")
        if not self.authenticated():
            raise NotAuthenticated("Keybase is not logged in or accessible")

    def login(self):
        if self.options.dry_run:
            dry_run("run: keybase login")
            return True
        shell.interactive(["keybase", "login"])
        return self.authenticated()

    def list_keys(self):
        """Fetch the account's PGP keys, retrying while the listing comes back empty.

        An empty listing from a logged-in client is often transient; a failing
        command is not retried.
        """
        self.require_authenticated()
        for attempt in range(1, MAX_ATTEMPTS + 1):
            r = shell.run(["keybase", "pgp", "list"])
            if r.returncode != 0:
                raise SourceError(f"keybase pgp list failed: {r.stderr.strip()[:200]}")
            keys = parse_pgp_list(r.stdout)
            if keys:
                return keys
            if attempt < MAX_ATTEMPTS:
                warn(f"Failed to get keybase keys, retrying... ({attempt}/{MAX_ATTEMPTS})")
                time.sleep(RETRY_DELAY)
        raise SourceError(f"No keybase PGP keys found after {MAX_ATTEMPTS} attempts")

    def list_candidates(self, email, keyring=None):
        """Fingerprints to try, keys matching ``email`` first, then the rest.

        A key matches when its Keybase identities or, for keys already in the
        local keyring, its UIDs contain the email.
        """
        matching = []
        others = []
        for n, key in enumerate(self.list_keys(), 1):
            try:
                fingerprint = normalize_fingerprint(key.fingerprint).value
            except ValidationError:
                warn(f"Skipping invalid fingerprint: {key.fingerprint}")
                continue

            local = keyring.find(fingerprint) if keyring is not None else None
            if key.matches_email(email) or (local is not None and local.matches_email(email)):
                info(f"Found matching key #{n}: {fingerprint}")
                matching.append(fingerprint)
            else:
                others.append(fingerprint)

        if matching:
            info(f"Found {len(matching)} keys matching git email {email}")
        else:
            warn(f"No keys found matching git email {email}")
            info("Will try all available keys in order")

        candidates = []
        for fingerprint in matching + others:
            if fingerprint not in candidates:
                candidates.append(fingerprint)
        if not candidates:
            raise SourceError("No valid keys available in Keybase")
        return candidates

    def export(self, fingerprint, secret=False):
        args = ["keybase", "pgp", "export", "-q", str(fingerprint)]
        if secret:
            args.insert(3, "--secret")
        r = shell.run(args)
        if r.returncode != 0 or not r.stdout.strip():
            kind = "secret" if secret else "public"
            raise KeyImportError(f"Keybase did not export the {kind} key {fingerprint}")
        return r.stdout

    def identity_hints(self):
        """Best-effort (name, email) from the Keybase account, either may be empty."""
        name = ""
        for line in shell.sh(["keybase", "id"]).splitlines():
            if "username:" in line:
                name = line.split(":", 1)[1].strip()
                break
        m = _EMAIL.search(shell.sh(["keybase", "pgp", "list"]))
        return name, (m.group(1) if m else "")

    def upload_key(self, key_id):
        """Make ``key_id`` the account's PGP key. Returns False if it was already there."""
        if self.options.dry_run:
            dry_run(f"select GPG key for Keybase: keybase pgp select {key_id}")
            return True
        listing = shell.sh(["keybase", "pgp", "list"]).upper()
        if key_id.upper() in listing:
            info(f"GPG key {key_id} already exists in Keybase")
            return False
        r = shell.run(["keybase", "pgp", "select", key_id])
        if r.returncode != 0:
            raise KeyUploadError(
                "Failed to upload GPG key to Keybase",
                hint=f"You can manually add it with: keybase pgp select {key_id}",
            )
        return True
