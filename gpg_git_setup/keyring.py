"""
GnuPG keyring access.

Everything that reads or writes the local keyring goes through ``Keyring``.
GnuPG's ``--with-colons`` listing is the only output format parsed here; see
doc/DETAILS in the GnuPG sources for the field layout.
"""

import enum
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from . import shell
from .console import ok, info, warn, dim, dry_run
from .errors import ValidationError, KeyImportError, KeyGenerationError

DRY_RUN_KEY_ID = "DRYRUN0000000000"
SHORT_ID_WARNING = "Using short key ID (16 chars). Full fingerprint (40 chars) is recommended."

# Seconds to wait before looking a freshly generated key up by creation time.
SETTLE_DELAY = 1.0
LOOKUP_ATTEMPTS = 3

_HEX = re.compile(r"[0-9A-F]+")
_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")
_KEY_CREATED = re.compile(r"^\[GNUPG:\] KEY_CREATED [BPS] ([0-9A-Fa-f]{40})", re.M)
_EMAIL = re.compile(r"<([^>]*)>")


class Algorithm(enum.Enum):
    RSA = "RSA"
    DSA = "DSA"
    ECDH = "ECDH"
    ECDSA = "ECDSA"
    EdDSA = "EdDSA"
    Unknown = "Unknown"


# OpenPGP public key algorithm ids (RFC 4880 section 9.1)
ALGORITHM_IDS = {
    "1": Algorithm.RSA,
    "2": Algorithm.RSA,
    "3": Algorithm.RSA,
    "17": Algorithm.DSA,
    "18": Algorithm.ECDH,
    "19": Algorithm.ECDSA,
    "22": Algorithm.EdDSA,
}

# Batch parameters per primary key algorithm: (primary lines, subkey lines)
BATCH_PARAMS = {
    Algorithm.RSA: (["Key-Type: RSA", "Key-Length: {bits}"],
                    ["Subkey-Type: RSA", "Subkey-Length: {bits}"]),
    Algorithm.DSA: (["Key-Type: DSA", "Key-Length: {bits}"],
                    ["Subkey-Type: ELG-E", "Subkey-Length: {bits}"]),
    Algorithm.EdDSA: (["Key-Type: EDDSA", "Key-Curve: ed25519"],
                      ["Subkey-Type: ECDH", "Subkey-Curve: cv25519"]),
    Algorithm.ECDSA: (["Key-Type: ECDSA", "Key-Curve: nistp256"],
                      ["Subkey-Type: ECDH", "Subkey-Curve: nistp256"]),
}


@dataclass(frozen=True)
class Fingerprint:
    value: str
    short: bool = False

    @property
    def warning(self):
        return SHORT_ID_WARNING if self.short else ""

    def __str__(self):
        return self.value


def normalize_fingerprint(raw):
    """Canonicalise a fingerprint or 16-character key id.

    Whitespace and colons are stripped, the text is uppercased and a leading
    ``0X`` is dropped. Only 40 or 16 hex characters survive; short ids are
    flagged so callers can surface the collision risk.
    """
    if raw is None or not str(raw).strip():
        raise ValidationError("Empty fingerprint provided")

    value = re.sub(r"[\s:]", "", str(raw)).upper()
    if value.startswith("0X"):
        value = value[2:]

    if _HEX.fullmatch(value) and len(value) == 40:
        return Fingerprint(value)
    if _HEX.fullmatch(value) and len(value) == 16:
        return Fingerprint(value, short=True)
    raise ValidationError(
        f"Invalid fingerprint format. Expected 40-character hex string, "
        f"got: '{value}' ({len(value)} chars)"
    )


@dataclass(frozen=True)
class KeyRecord:
    fingerprint: str
    created: int
    algorithm: Algorithm
    bits: int
    uids: tuple = ()
    has_secret: bool = False
    key_id: str = ""
    expires: int = 0

    @property
    def short_id(self):
        return self.key_id or self.fingerprint[-16:]

    @property
    def emails(self):
        found = []
        for uid in self.uids:
            m = _EMAIL.search(uid)
            found.append(m.group(1) if m else uid)
        return found

    @property
    def created_at(self):
        if not self.created:
            return None
        return datetime.fromtimestamp(self.created, tz=timezone.utc)

    @property
    def expires_at(self):
        if not self.expires:
            return None
        return datetime.fromtimestamp(self.expires, tz=timezone.utc)

    def matches_email(self, email):
        needle = email.lower()
        return any(needle in uid.lower() for uid in self.uids)


def _unescape(text):
    return _ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), text)


def _field(fields, index):
    return fields[index] if len(fields) > index else ""


def parse_colons(output):
    """Turn ``gpg --with-colons`` output into KeyRecords, one per primary key."""
    records = []
    current = None
    in_subkey = False

    def finish():
        if current is not None:
            records.append(KeyRecord(uids=tuple(current.pop("uids")), **current))

    for line in output.splitlines():
        fields = line.split(":")
        kind = fields[0]

        if kind in ("pub", "sec"):
            finish()
            created = _field(fields, 5)
            expires = _field(fields, 6)
            bits = _field(fields, 2)
            current = {
                "fingerprint": "",
                "created": int(created) if created.isdigit() else 0,
                "expires": int(expires) if expires.isdigit() else 0,
                "algorithm": ALGORITHM_IDS.get(_field(fields, 3), Algorithm.Unknown),
                "bits": int(bits) if bits.isdigit() else 0,
                "uids": [],
                # Field 15 is "#" for a secret key stub without key material
                "has_secret": kind == "sec" and _field(fields, 14) != "#",
                "key_id": _field(fields, 4).upper(),
            }
            in_subkey = False
        elif current is None:
            continue
        elif kind in ("sub", "ssb"):
            in_subkey = True
            # An offline primary still signs through a subkey holding its material
            if kind == "ssb" and "s" in _field(fields, 11) and _field(fields, 14) != "#":
                current["has_secret"] = True
        elif kind == "fpr" and not in_subkey and not current["fingerprint"]:
            current["fingerprint"] = _field(fields, 9).upper()
        elif kind == "uid":
            current["uids"].append(_unescape(_field(fields, 9)))

    finish()
    return records


def batch_spec(identity, algorithm=Algorithm.RSA, bits=4096, expiry="2y", protect=True):
    """Declarative parameter block for ``gpg --batch --generate-key``."""
    for value in (identity.name, identity.email):
        if "\n" in value or "\r" in value:
            raise KeyGenerationError("Name and email must be single-line values")
    if algorithm not in BATCH_PARAMS:
        raise KeyGenerationError(f"Cannot generate {algorithm.value} primary keys")

    primary, subkey = BATCH_PARAMS[algorithm]
    lines = ["%echo Generating GPG key..."]
    lines += [p.format(bits=bits) for p in primary + subkey]
    lines += [
        f"Name-Real: {identity.name}",
        f"Name-Email: {identity.email}",
        f"Expire-Date: {expiry}",
    ]
    if not protect:
        lines.append("%no-protection")
    lines += ["%commit", "%echo GPG key generation complete"]
    return "\n".join(lines) + "\n"


class Keyring:
    """The local GnuPG keyring in ``options.gnupg_home``."""

    def __init__(self, options, gpg="gpg"):
        self.options = options
        self.gpg = gpg
        self.env = dict(os.environ, GNUPGHOME=str(options.gnupg_home))

    def _gpg(self, *args, input_text=None):
        return shell.run([self.gpg, "--batch", *args], input_text=input_text, env=self.env)

    # ─── Queries ─────────────────────────────────────────────────────────
    def list_secret_keys(self, email=None):
        r = self._gpg("--with-colons", "--with-fingerprint", "--list-secret-keys")
        if r.returncode != 0:
            return []
        keys = [k for k in parse_colons(r.stdout) if k.has_secret]
        if email:
            keys = [k for k in keys if k.matches_email(email)]
        return keys

    def newest_key_for_email(self, email):
        """Newest secret key whose UIDs mention ``email``.

        Keys created within the same second are ambiguous; which one wins is
        unspecified.
        """
        if not email:
            return None
        dated = [k for k in self.list_secret_keys(email) if k.created]
        if not dated:
            return None
        return max(dated, key=lambda k: k.created)

    def find(self, key, secret=False):
        listing = "--list-secret-keys" if secret else "--list-keys"
        r = self._gpg("--with-colons", "--with-fingerprint", listing, key)
        if r.returncode != 0:
            return None
        records = parse_colons(r.stdout)
        return records[0] if records else None

    def exists(self, fingerprint):
        if not fingerprint:
            return False
        value = str(fingerprint)
        for candidate in (value, f"0x{value}", value[-16:]):
            if self.find(candidate) is not None:
                return True
        return False

    def short_id_of(self, fingerprint):
        record = self.find(str(fingerprint))
        return record.short_id if record else None

    def has_secret(self, key_id):
        record = self.find(key_id, secret=True)
        return bool(record and record.has_secret)

    def wait_for_short_id(self, fingerprint):
        """Look up the key id of a just-imported key, allowing the keyring to catch up."""
        for attempt in range(1, LOOKUP_ATTEMPTS + 1):
            key_id = self.short_id_of(fingerprint)
            if key_id:
                return key_id
            if attempt < LOOKUP_ATTEMPTS:
                warn(f"Could not determine short key ID, retrying... ({attempt}/{LOOKUP_ATTEMPTS})")
                time.sleep(SETTLE_DELAY)
        return None

    def export_public(self, key_id):
        r = self._gpg("--armor", "--export", key_id)
        return r.stdout if r.returncode == 0 else ""

    def healthy(self):
        return self._gpg("--list-keys").returncode == 0

    def test_signature(self, key_id):
        r = self._gpg("--armor", "--detach-sign", "--default-key", key_id, input_text="test\n")
        return r.returncode == 0 and "BEGIN PGP SIGNATURE" in r.stdout

    # ─── Mutations ───────────────────────────────────────────────────────
    def repair(self):
        """Kill GnuPG daemons and clear stale sockets and lock files."""
        home = self.options.gnupg_home
        if self.options.dry_run:
            dry_run("run: gpgconf --kill all")
            dry_run(f"remove stale sockets and locks in {home}")
            return True
        shell.run(["gpgconf", "--kill", "all"], env=self.env)
        if home.is_dir():
            for stale in list(home.glob("S.*")) + list(home.glob(".#*")):
                try:
                    stale.unlink()
                except OSError as e:
                    dim(f"Could not remove {stale.name}: {e}")
        return self.healthy()

    def import_key(self, material, secret=False):
        kind = "secret" if secret else "public"
        if self.options.dry_run:
            dry_run(f"import {kind} key material into {self.options.gnupg_home}")
            return
        if not material.strip():
            raise KeyImportError(f"No {kind} key material to import")
        r = self._gpg("--import", "--quiet", input_text=material)
        if r.returncode != 0:
            raise KeyImportError(f"gpg could not import the {kind} key: {r.stderr.strip()[:200]}")

    def import_public(self, fingerprint, source):
        """Import a public key from ``source``. Returns False if it was already here."""
        fingerprint = str(fingerprint)
        if self.exists(fingerprint):
            info(f"Key {fingerprint} already imported")
            return False
        if self.options.dry_run:
            dry_run(f"import public key {fingerprint} from {source.name}")
            return True

        last_error = None
        for attempt in range(1, LOOKUP_ATTEMPTS + 1):
            try:
                self.import_key(source.export(fingerprint))
                ok("Public key imported")
                return True
            except KeyImportError as e:
                last_error = e
                if attempt < LOOKUP_ATTEMPTS:
                    warn(f"Public key import failed, retrying... ({attempt}/{LOOKUP_ATTEMPTS})")
                    time.sleep(SETTLE_DELAY)
        raise KeyImportError(
            f"Failed to import public key after {LOOKUP_ATTEMPTS} attempts: {last_error.message}"
        )

    def import_secret(self, fingerprint, source):
        fingerprint = str(fingerprint)
        if self.has_secret(fingerprint):
            info(f"Secret key for {fingerprint} already present")
            return False
        if self.options.dry_run:
            dry_run(f"import secret key {fingerprint} from {source.name}")
            return True
        info("Importing secret key (may require passphrase)...")
        self.import_key(source.export(fingerprint, secret=True), secret=True)
        ok("Secret key imported")
        return True

    def generate(self, identity, algorithm=Algorithm.RSA, bits=4096, expiry="2y", protect=True):
        """Create a key pair for ``identity`` and return its KeyRecord.

        Without ``protect`` the key has no passphrase. With it, gpg-agent asks
        for one through pinentry. Blocks until GnuPG finishes.
        """
        spec = batch_spec(identity, algorithm, bits, expiry, protect)
        uid = f"{identity.name} <{identity.email}>"

        if self.options.dry_run:
            dry_run(f"generate {algorithm.value} {bits}-bit key for {uid}, expiring in {expiry}")
            if protect:
                dry_run("prompt for a passphrase")
            else:
                dry_run("create the key without passphrase protection")
            return KeyRecord(
                fingerprint="0" * 24 + DRY_RUN_KEY_ID,
                created=int(time.time()),
                algorithm=algorithm,
                bits=bits,
                uids=(uid,),
                has_secret=True,
                key_id=DRY_RUN_KEY_ID,
            )

        info("Generating GPG key (this may take a while)...")
        r = self._gpg("--status-fd", "1", "--generate-key", input_text=spec)
        if r.returncode != 0:
            raise KeyGenerationError(f"Failed to generate GPG key: {r.stderr.strip()[:200]}")
        ok("GPG key generated successfully!")

        created = _KEY_CREATED.search(r.stdout)
        if created:
            record = self.find(created.group(1).upper(), secret=True)
        else:
            # Older GnuPG without KEY_CREATED: fall back to the newest key by
            # creation time, which is ambiguous for two keys in one second.
            warn("GnuPG did not report the new fingerprint; looking it up by creation time")
            time.sleep(SETTLE_DELAY)
            record = self.newest_key_for_email(identity.email)

        if record is None:
            raise KeyGenerationError("Could not find the newly generated key")
        ok(f"New key ID: {record.short_id}")
        dim(f"Fingerprint: {record.fingerprint}")
        return record
