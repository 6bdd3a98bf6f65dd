"""
Against a real gpg binary, in a throwaway GNUPGHOME.

Skipped when gpg is not installed. Key generation is slow (RSA 4096), so
everything that needs a key shares one module-scoped keyring.
"""

import shutil

import pytest

from gpg_git_setup.git_config import Identity, SigningConfiguration, apply
from gpg_git_setup.keyring import Keyring, Algorithm
from gpg_git_setup.options import RunOptions
from gpg_git_setup.selection import KeySelector

pytestmark = pytest.mark.skipif(shutil.which("gpg") is None, reason="gpg not installed")


class StubGit:
    """In-memory stand-in for `git config --global`."""

    def __init__(self, **values):
        self.values = dict(values)
        self.writes = 0

    def get(self, key):
        return self.values.get(key, "")

    def set(self, key, value):
        self.writes += 1
        self.values[key] = str(value)

    def unset(self, key):
        self.writes += 1
        self.values.pop(key, None)

    def identity(self):
        return Identity(self.get("user.name"), self.get("user.email"))

    def signing(self):
        return SigningConfiguration(
            signing_key=self.get("user.signingkey"),
            gpg_program=self.get("gpg.program"),
            commit_sign=self.get("commit.gpgsign") == "true",
        )


@pytest.fixture(scope="module")
def generated(tmp_path_factory):
    home = tmp_path_factory.mktemp("gnupg")
    home.chmod(0o700)
    opts = RunOptions(auto=True, new_key=True, gnupg_home=home)
    git = StubGit(**{"user.name": "Jane Doe", "user.email": "jane@example.com"})
    keyring = Keyring(opts)
    key_id = KeySelector(opts, git, keyring).resolve()
    yield opts, git, keyring, key_id
    shutil.rmtree(home, ignore_errors=True)


class TestRealGpg:
    """Generate, find, configure and sign with an actual key."""

    def test_generated_key(self, generated):
        opts, git, keyring, key_id = generated
        record = keyring.find(key_id, secret=True)
        assert record.algorithm is Algorithm.RSA
        assert record.bits == 4096
        assert record.has_secret
        assert record.matches_email("jane@example.com")
        assert len(record.fingerprint) == 40

    def test_newest_key_lookup(self, generated):
        opts, git, keyring, key_id = generated
        assert keyring.newest_key_for_email("jane@example.com").short_id == key_id

    def test_apply_is_idempotent(self, generated):
        opts, git, keyring, key_id = generated
        desired = SigningConfiguration(signing_key=key_id, gpg_program="gpg", commit_sign=True)
        apply(git, desired)
        writes = git.writes
        assert apply(git, desired).writes == 0
        assert git.writes == writes

    def test_signs(self, generated):
        opts, git, keyring, key_id = generated
        assert keyring.test_signature(key_id)

    def test_public_export(self, generated):
        opts, git, keyring, key_id = generated
        assert "BEGIN PGP PUBLIC KEY BLOCK" in keyring.export_public(key_id)
