"""
Shared fixtures.

``FakeSystem`` stands in for every external command (git, gpg, gpgconf,
keybase, gh) by replacing ``subprocess.run`` inside ``gpg_git_setup.shell``.
It keeps just enough state (a global git config, a keyring, a Keybase
account) for the setup steps to behave as they would on a real Mac.
"""

import subprocess
from unittest import mock

import pytest

from gpg_git_setup import shell
from gpg_git_setup.options import RunOptions

ARMORED_PUBLIC = "-----BEGIN PGP PUBLIC KEY BLOCK-----\nfake\n-----END PGP PUBLIC KEY BLOCK-----\n"
ARMORED_SIGNATURE = "-----BEGIN PGP SIGNATURE-----\nfake\n-----END PGP SIGNATURE-----\n"


def make_fingerprint(n):
    return f"{0xC0FFEE00 + n:08X}" + "D" * 16 + f"{0xBEEF0000 + n:016X}"


class FakeKey:
    def __init__(self, fingerprint, uids, created=1700000000, secret=True, stub=False,
                 signing_subkey=False):
        self.fingerprint = fingerprint.upper()
        self.uids = list(uids)
        self.created = created
        self.secret = secret
        self.stub = stub
        self.signing_subkey = signing_subkey

    @property
    def key_id(self):
        return self.fingerprint[-16:]

    def colons(self, kind):
        serial = "#" if kind == "sec" and self.stub else "+"
        lines = [
            f"{kind}:u:4096:1:{self.key_id}:{self.created}:::u:::scESC:::{serial}:::23::0:",
            f"fpr:::::::::{self.fingerprint}:",
        ]
        for uid in self.uids:
            lines.append(f"uid:u::::{self.created}::HASH::{uid}::::::::::0:")
        sub = "ssb" if kind == "sec" else "sub"
        usage = "s" if self.signing_subkey else "e"
        lines.append(f"{sub}:u:4096:1:{'E' * 16}:{self.created}::::::{usage}:::+:::23:")
        lines.append(f"fpr:::::::::{'E' * 40}:")
        return "\n".join(lines)


class FakeSystem:
    """A scriptable stand-in for the commands the setup drives."""

    def __init__(self):
        self.calls = []
        self.tools = {"uname", "curl", "git", "gpg", "gpgconf", "brew"}
        self.git = {}
        self.keys = []
        self.generated = 0
        self.clock = 1700000000
        self.report_key_created = True
        self.gpg_healthy = True
        self.generate_fails = False

        self.keybase_logged_in = False
        self.keybase_keys = []          # FakeKey objects held by the Keybase account
        self.keybase_username = ""
        self.keybase_export_fails = set()  # fingerprints whose export fails
        self.keybase_list_rc = 0
        self.keybase_selected = []

        self.gh_logged_in = False
        self.gh_key_ids = set()

    # ─── Helpers used by tests ───────────────────────────────────────────
    def add_key(self, uids, created=None, secret=True, stub=False, fingerprint=None,
                signing_subkey=False):
        self.generated += 1
        key = FakeKey(
            fingerprint or make_fingerprint(self.generated),
            uids,
            created=created if created is not None else self.clock,
            secret=secret,
            stub=stub,
            signing_subkey=signing_subkey,
        )
        self.keys.append(key)
        return key

    def keybase_key(self, uids, fingerprint=None):
        self.generated += 1
        key = FakeKey(fingerprint or make_fingerprint(self.generated), uids)
        self.keybase_keys.append(key)
        return key

    def commands(self, program):
        return [c for c in self.calls if c[0].endswith(program)]

    def mutating_calls(self):
        """Calls that would change state on a real machine."""
        mutating = []
        for c in self.calls:
            if c[0] == "git" and len(c) > 4:
                mutating.append(c)
            elif c[0] == "git" and "--unset" in c:
                mutating.append(c)
            elif c[0].endswith("gpg") and ({"--import", "--generate-key"} & set(c)):
                mutating.append(c)
            elif c[:2] in (["gh", "gpg-key"],) and "add" in c:
                mutating.append(c)
            elif c[:3] == ["keybase", "pgp", "select"]:
                mutating.append(c)
            elif c[0] == "gpgconf" and "--kill" in c:
                mutating.append(c)
        return mutating

    def which(self, name, *args, **kwargs):
        return f"/usr/local/bin/{name}" if name in self.tools else None

    # ─── subprocess.run replacement ──────────────────────────────────────
    def __call__(self, args, input=None, capture_output=False, text=False, env=None, **kwargs):
        args = list(args)
        self.calls.append(args)
        program = args[0]
        if program not in self.tools and not program.startswith("/"):
            raise FileNotFoundError(program)

        if program == "git":
            return self._git(args)
        if program.endswith("gpg"):
            return self._gpg([a for a in args[1:] if a != "--batch"], input or "")
        if program == "keybase":
            return self._keybase(args[1:])
        if program == "gh":
            return self._gh(args[1:])
        if program == "brew" and args[1:] == ["--prefix"]:
            return self._done(args, "/usr/local\n")
        return self._done(args)

    def _done(self, args, stdout="", rc=0, stderr=""):
        return subprocess.CompletedProcess(args, rc, stdout, stderr)

    def _git(self, args):
        rest = args[3:]
        if rest and rest[0] == "--unset":
            if rest[1] not in self.git:
                return self._done(args, rc=5)
            del self.git[rest[1]]
            return self._done(args)
        if len(rest) == 1:
            if rest[0] in self.git:
                return self._done(args, self.git[rest[0]] + "\n")
            return self._done(args, rc=1)
        self.git[rest[0]] = rest[1]
        return self._done(args)

    def _find(self, query, secret):
        q = query.upper()
        if q.startswith("0X"):
            q = q[2:]
        pool = [k for k in self.keys if k.secret] if secret else self.keys
        return [k for k in pool if k.fingerprint.endswith(q)]

    def _gpg(self, args, stdin):
        if not self.gpg_healthy and "--list-keys" in args and len(args) == 1:
            return self._done(args, rc=2, stderr="gpg: keydb_search failed: Invalid argument")

        for listing, secret in (("--list-secret-keys", True), ("--list-keys", False)):
            if listing in args:
                index = args.index(listing)
                query = args[index + 1] if len(args) > index + 1 else None
                if query is None:
                    found = [k for k in self.keys if k.secret] if secret else list(self.keys)
                else:
                    found = self._find(query, secret)
                    if not found:
                        return self._done(args, rc=2, stderr="gpg: error reading key: No secret key")
                kind = "sec" if secret else "pub"
                return self._done(args, "\n".join(k.colons(kind) for k in found) + "\n")

        if "--generate-key" in args:
            if self.generate_fails:
                return self._done(args, rc=2, stderr="gpg: agent_genkey failed: Operation cancelled")
            params = dict(
                line.split(": ", 1) for line in stdin.splitlines() if ": " in line
            )
            uid = f"{params['Name-Real']} <{params['Name-Email']}>"
            key = self.add_key([uid])
            key.protected = "%no-protection" not in stdin
            key.batch = stdin
            out = f"[GNUPG:] KEY_CREATED P {key.fingerprint}\n" if self.report_key_created else ""
            return self._done(args, out)

        if "--import" in args:
            # Material produced by _keybase export: FAKEKEY:<fingerprint>:<public|secret>
            kind, _, rest = stdin.partition(":")
            if kind != "FAKEKEY":
                return self._done(args, rc=2, stderr="gpg: no valid OpenPGP data found.")
            fingerprint, _, which = rest.strip().partition(":")
            source = next(k for k in self.keybase_keys if k.fingerprint == fingerprint)
            existing = self._find(fingerprint, secret=False)
            if existing:
                existing[0].secret = existing[0].secret or which == "secret"
            else:
                self.keys.append(FakeKey(fingerprint, source.uids, source.created, secret=which == "secret"))
            return self._done(args)

        if "--export" in args:
            return self._done(args, ARMORED_PUBLIC)
        if "--detach-sign" in args:
            return self._done(args, ARMORED_SIGNATURE)
        return self._done(args)

    def _keybase(self, args):
        if args == ["status"]:
            return self._done(args, rc=0 if self.keybase_logged_in else 1)
        if args == ["id"]:
            return self._done(args, f"username: {self.keybase_username}\n")
        if args == ["pgp", "list"]:
            if self.keybase_list_rc:
                return self._done(args, rc=self.keybase_list_rc, stderr="keybase: error")
            blocks = []
            for n, key in enumerate(self.keybase_keys):
                blocks.append(f"Keybase Key ID:  0120{n:060x}")
                blocks.append(f"PGP Fingerprint: {key.fingerprint.lower()}")
                blocks.append("PGP Identities:")
                blocks.extend(f"   {uid}" for uid in key.uids)
                blocks.append("")
            return self._done(args, "\n".join(blocks))
        if args[:2] == ["pgp", "export"]:
            fingerprint = args[-1].upper()
            if fingerprint in self.keybase_export_fails:
                return self._done(args, rc=1, stderr="export failed")
            which = "secret" if "--secret" in args else "public"
            return self._done(args, f"FAKEKEY:{fingerprint}:{which}\n")
        if args[:2] == ["pgp", "select"]:
            self.keybase_selected.append(args[2])
            return self._done(args)
        return self._done(args)

    def _gh(self, args):
        if args == ["auth", "status"]:
            return self._done(args, rc=0 if self.gh_logged_in else 1)
        if args == ["gpg-key", "list"]:
            return self._done(args, "\n".join(f"jane  {k}  2026-01-01" for k in sorted(self.gh_key_ids)))
        if args[:2] == ["gpg-key", "add"]:
            return self._done(args, "✓ GPG key added to your account\n")
        return self._done(args)


@pytest.fixture
def fake():
    """Route every external command through a fresh FakeSystem."""
    system = FakeSystem()
    with mock.patch.object(shell.subprocess, "run", side_effect=system), \
            mock.patch.object(shell.shutil, "which", side_effect=system.which), \
            mock.patch("gpg_git_setup.keyring.time.sleep"), \
            mock.patch("gpg_git_setup.identity_source.time.sleep"):
        yield system


@pytest.fixture
def quiet():
    """Silence the shared console."""
    with mock.patch("gpg_git_setup.console.console"), \
            mock.patch("gpg_git_setup.cli.console"), \
            mock.patch("gpg_git_setup.selection.console"), \
            mock.patch("gpg_git_setup.verify.console"):
        yield


@pytest.fixture
def options(tmp_path):
    def build(**overrides):
        overrides.setdefault("gnupg_home", tmp_path / ".gnupg")
        return RunOptions(**overrides)
    return build
