"""
Tests for gpg_git_setup.environment

platform.system() is patched so the macOS checks run on Linux CI.
"""

from pathlib import Path
from unittest import mock

import pytest

from gpg_git_setup import environment as env
from gpg_git_setup.errors import EnvironmentCheckError


@pytest.fixture
def darwin():
    with mock.patch("gpg_git_setup.environment.platform.system", return_value="Darwin"), \
            mock.patch("gpg_git_setup.environment.platform.machine", return_value="arm64"):
        yield


# ═════════════════════════════════════════════════════════════════════════════
#  validate()
# ═════════════════════════════════════════════════════════════════════════════

class TestValidate:
    """Preflight platform and tool checks."""

    @mock.patch("gpg_git_setup.environment.platform.machine", return_value="x86_64")
    @mock.patch("gpg_git_setup.environment.platform.system", return_value="Linux")
    def test_rejects_linux(self, mock_system, mock_machine, fake, quiet):
        with pytest.raises(EnvironmentCheckError) as exc_info:
            env.validate()
        err = exc_info.value
        assert err.os_name == "Linux"
        assert err.architecture == "x86_64"
        assert any("Linux" in alt for alt in err.alternatives)
        assert any("Windows" in alt for alt in err.alternatives)
        assert "macOS" in err.hint
        # Nothing beyond the platform check ran
        assert fake.calls == []

    def test_passes_on_darwin(self, fake, darwin, quiet):
        fake.tools.add("sw_vers")
        env.validate()

    def test_missing_tools_listed(self, fake, darwin, quiet):
        fake.tools -= {"curl", "git"}
        with pytest.raises(EnvironmentCheckError) as exc_info:
            env.validate()
        assert exc_info.value.missing_tools == ["curl", "git"]

    def test_without_sw_vers(self, fake, darwin, quiet):
        # sw_vers missing only warns
        env.validate()

    def test_unknown_architecture_only_warns(self, fake, quiet):
        with mock.patch("gpg_git_setup.environment.platform.system", return_value="Darwin"), \
                mock.patch("gpg_git_setup.environment.platform.machine", return_value="ppc"):
            env.validate()


# ═════════════════════════════════════════════════════════════════════════════
#  detect_toolchain()
# ═════════════════════════════════════════════════════════════════════════════

class TestDetectToolchain:
    """Locating Homebrew, gpg and pinentry-mac."""

    def test_gpg_on_path(self, fake, quiet):
        toolchain = env.detect_toolchain()
        assert toolchain.brew_prefix == Path("/usr/local")
        assert toolchain.pinentry_path == Path("/usr/local/bin/pinentry-mac")
        assert toolchain.gpg_path.name == "gpg"

    def test_no_homebrew(self, fake, quiet):
        fake.tools.discard("brew")
        with mock.patch("gpg_git_setup.environment.Path.exists", return_value=False):
            with pytest.raises(EnvironmentCheckError, match="Homebrew"):
                env.detect_toolchain()

    def test_no_gpg(self, fake, quiet):
        fake.tools.discard("gpg")
        with mock.patch("gpg_git_setup.environment.Path.exists", return_value=False):
            with pytest.raises(EnvironmentCheckError) as exc_info:
                env.detect_toolchain()
        assert exc_info.value.missing_tools == ["gpg"]
        assert "brew install gnupg" in exc_info.value.hint
