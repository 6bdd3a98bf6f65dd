"""
Choosing the signing key.

``KeySelector.resolve`` returns the short key id git should sign with. The
three modes differ only in which fallbacks they may take and whether the
operator is asked before each one:

Automatic
    1. the key already configured in git, if the configuration is consistent
    2. the newest local secret key whose UID carries the git email
    3. the first Keybase candidate that imports with usable secret material
    Nothing else; automatic mode never generates keys.

Interactive
    The same steps, each confirmed by the operator, then an offer to
    generate a new passphrase-protected key.

Force new
    Always generates. Unattended (``--auto``) generation has no passphrase.

Adapters report failures by raising; this module decides whether a failure
means "try the next step" or "give up".
"""

import enum

from rich.table import Table
from rich import box

from .console import console, ok, info, warn, fail, dim, ask, confirm
from .errors import (
    ValidationError,
    SourceError,
    KeyImportError,
    KeySelectionError,
)
from .git_config import Identity
from .keyring import normalize_fingerprint
from .options import Mode


class Issue(enum.Enum):
    NO_SECRET_KEYS = "no-secret-keys"
    NO_SIGNING_KEY = "no-signing-key-configured"
    SIGNING_KEY_MISSING = "signing-key-missing-from-keyring"
    EMAIL_MISMATCH = "signing-key-email-mismatch"
    AGENT_NOT_CONFIGURED = "agent-not-configured"
    COMMIT_SIGNING_DISABLED = "commit-signing-disabled"


def check_consistency(options, git, keyring):
    """Diagnose the current signing setup. An empty set means it is usable as is.

    Signing-key checks only run when there is something to check: with no
    secret keys at all only that is reported, and the email comparison needs
    both a present key and a configured email.
    """
    issues = set()
    signing = git.signing()
    email = git.get("user.email")

    if not keyring.list_secret_keys():
        issues.add(Issue.NO_SECRET_KEYS)
    elif not signing.signing_key:
        issues.add(Issue.NO_SIGNING_KEY)
    elif not keyring.has_secret(signing.signing_key):
        issues.add(Issue.SIGNING_KEY_MISSING)
    elif email:
        record = keyring.find(signing.signing_key)
        if record is None or not record.matches_email(email):
            issues.add(Issue.EMAIL_MISMATCH)

    if not options.agent_conf.is_file():
        issues.add(Issue.AGENT_NOT_CONFIGURED)

    if not signing.commit_sign:
        issues.add(Issue.COMMIT_SIGNING_DISABLED)

    return frozenset(issues)


ISSUE_MESSAGES = {
    Issue.NO_SECRET_KEYS: "No GPG secret keys found",
    Issue.NO_SIGNING_KEY: "No git signing key configured",
    Issue.SIGNING_KEY_MISSING: "Configured signing key not found in GPG keyring",
    Issue.EMAIL_MISMATCH: "Signing key does not contain git email",
    Issue.AGENT_NOT_CONFIGURED: "GPG agent not configured",
    Issue.COMMIT_SIGNING_DISABLED: "Git commit signing not enabled",
}


def report_issues(issues):
    if not issues:
        ok("GPG configuration is consistent and complete")
        return
    for issue in sorted(issues, key=lambda i: i.value):
        warn(ISSUE_MESSAGES[issue])
    info(f"Found {len(issues)} configuration issues: {', '.join(sorted(i.value for i in issues))}")


def _date(moment):
    return moment.strftime("%Y-%m-%d") if moment else ""


def _grouped(fingerprint):
    value = fingerprint.upper()
    return " ".join(value[i:i + 4] for i in range(0, len(value), 4))


class KeySelector:
    def __init__(self, options, git, keyring, source=None):
        self.options = options
        self.git = git
        self.keyring = keyring
        self.source = source

    def resolve(self):
        mode = self.options.mode
        if mode is Mode.FORCE_NEW:
            info("New key mode: Generating fresh GPG key...")
            return self.generate(interactive=self.options.interactive)
        if mode is Mode.AUTOMATIC:
            return self._automatic()
        return self._interactive()

    # ─── Modes ───────────────────────────────────────────────────────────
    def _automatic(self):
        info("Auto mode: Checking existing GPG configuration...")
        key_id = self.configured_key()
        if key_id:
            ok(f"Using existing configured key: {key_id}")
            return key_id

        email = self.git.get("user.email")
        key_id = self.best_existing_key(email)
        if key_id:
            ok(f"Using existing GPG key: {key_id}")
            return key_id

        key_id = self.import_from_source(email)
        if key_id:
            ok(f"Auto-imported key from {self.source.name}: {key_id}")
            return key_id

        raise KeySelectionError(
            "No suitable GPG key found and auto mode doesn't generate new keys",
            hint=(
                "Run in interactive mode to generate a new key, run with --auto --new "
                "to generate one unattended, or set up keybase: keybase pgp gen"
            ),
        )

    def _interactive(self):
        info("Checking existing GPG configuration...")
        key_id = self.configured_key()
        if key_id:
            info("Your GPG setup appears to be correctly configured.")
            if confirm("Continue with existing setup?", default=True):
                ok(f"Using existing configured key: {key_id}")
                return key_id

        email = self.git.get("user.email")
        key_id = self.best_existing_key(email)
        if key_id and confirm(f"Found existing GPG key {key_id}. Use this existing key?", default=True):
            ok(f"Using existing GPG key: {key_id}")
            return key_id

        if self.source is not None and self.source.available():
            self.show_source_keys()
            if confirm(f"Try importing your key from {self.source.name}?", default=True):
                key_id = self.import_from_source(email)
                if key_id:
                    return key_id
                warn(f"Failed to import any keys from {self.source.name}")
        else:
            info("Keybase not available, skipping keybase import")

        if confirm("Would you like to generate a new GPG key?", default=False):
            return self.generate(interactive=True)

        raise KeySelectionError("No GPG key available for git signing")

    # ─── Steps ───────────────────────────────────────────────────────────
    def configured_key(self):
        """The key git is already set up with, if the whole setup checks out."""
        issues = check_consistency(self.options, self.git, self.keyring)
        report_issues(issues)
        if issues:
            return None
        key_id = self.git.get("user.signingkey")
        if key_id and self.keyring.has_secret(key_id):
            return key_id
        return None

    def best_existing_key(self, email):
        info("Looking for best existing GPG key...")
        if not email:
            warn("No git email configured, cannot match existing keys")
            return None

        record = self.keyring.newest_key_for_email(email)
        if record is None:
            info(f"No existing secret key matches {email}")
            return None

        # The listing said secret, but a stub or card key may still be unusable
        if not self.keyring.has_secret(record.short_id):
            warn(f"Key {record.short_id} exists but is not usable for signing")
            return None
        info(f"Found newest key matching git email: {record.short_id}")
        return record.short_id

    def show_source_keys(self):
        """Print the source's keys, with dates for any already in the local keyring."""
        try:
            keys = self.source.list_keys()
        except SourceError as e:
            warn(e.message)
            if e.hint:
                dim(e.hint)
            return []

        info(f"Available {self.source.name} PGP keys:")
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("#", justify="right", style="dim")
        table.add_column("Fingerprint", style="cyan", no_wrap=True)
        table.add_column("Identities")
        table.add_column("Created")
        table.add_column("Expires")

        for n, key in enumerate(keys, 1):
            local = self.keyring.find(key.fingerprint)
            if local is None:
                identities = list(key.identities)
                created = expires = "[dim]not in local keyring[/]"
            else:
                identities = local.emails
                created = _date(local.created_at)
                expires = _date(local.expires_at) or "never"
            table.add_row(str(n), _grouped(key.fingerprint), "\n".join(identities), created, expires)

        console.print(table)
        return keys

    def import_from_source(self, email):
        """Import candidates from the identity source in order; first usable key wins."""
        if self.source is None or not self.source.available():
            info("Keybase not available, skipping keybase import")
            return None
        if not email:
            fail('No git email configured. Set with: git config --global user.email "your@email.com"')
            return None

        info(f"Finding and importing best matching key from {self.source.name}...")
        try:
            candidates = self.source.list_candidates(email, self.keyring)
        except SourceError as e:
            warn(e.message)
            if e.hint:
                dim(e.hint)
            return None

        total = len(candidates)
        info(f"Found {total} candidate keys, trying in priority order...")
        for n, fingerprint in enumerate(candidates, 1):
            info(f"Trying key {n}/{total}: {fingerprint}")
            try:
                key_id = self._import_candidate(fingerprint)
            except (ValidationError, KeyImportError, SourceError) as e:
                warn(f"Failed to import key {fingerprint}: {e.message}, trying next...")
                continue
            if key_id:
                ok(f"Successfully imported key {n}/{total}: {key_id}")
                return key_id
            warn(f"Key {fingerprint} imported but is not usable for signing, trying next...")

        fail(f"Failed to import any of the {total} candidate keys")
        return None

    def _import_candidate(self, raw):
        fingerprint = normalize_fingerprint(raw)
        if fingerprint.short:
            warn(fingerprint.warning)

        self.keyring.import_public(fingerprint, self.source)
        try:
            self.keyring.import_secret(fingerprint, self.source)
        except KeyImportError as e:
            warn(f"Secret key import failed or requires interactive input ({e.message})")

        if self.options.dry_run:
            return self.keyring.short_id_of(fingerprint) or fingerprint.value[-16:]

        key_id = self.keyring.wait_for_short_id(fingerprint)
        if key_id is None:
            raise KeyImportError(f"Could not determine short key ID for {fingerprint}")
        if not self.keyring.has_secret(key_id):
            return None
        return key_id

    def generate(self, interactive):
        """Generate a fresh RSA 4096 key for the git identity.

        Interactive runs prompt for missing name/email (saving them to git)
        and protect the key with a passphrase. Unattended runs require both
        fields and create an unprotected key.
        """
        current = self.git.identity()
        name = self._require_field("user.name", "full name", current.name, interactive)
        email = self._require_field("user.email", "email address", current.email, interactive)
        identity = Identity(name=name, email=email)

        info(f"Generating new GPG key for: {identity}")
        if interactive:
            info("This will create a new 4096-bit RSA GPG key with 2-year expiration.")
            if not confirm("Continue with key generation?", default=True):
                raise KeySelectionError("Key generation cancelled")
        else:
            warn("Auto mode: Generating key without passphrase protection for automation. This is less secure!")

        record = self.keyring.generate(identity, protect=interactive)
        ok(f"Generated new GPG key: {record.short_id}")
        return record.short_id

    def _require_field(self, key, label, value, interactive):
        if value:
            return value
        if not interactive:
            example = "Your Name" if key == "user.name" else "you@example.com"
            raise KeySelectionError(
                f"Git {key} not configured",
                hint=f'Set with: git config --global {key} "{example}"',
            )
        value = ask(f"Enter your {label}")
        if not value:
            raise KeySelectionError(f"{label.capitalize()} is required for GPG key generation")
        self.git.set(key, value)
        return value
