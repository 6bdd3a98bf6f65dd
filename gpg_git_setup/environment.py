"""
Preflight: confirm we are on macOS with the tools we need.

Nothing here mutates the machine; a failure stops the run before a backup is
taken.
"""

import platform
import shutil
from dataclasses import dataclass
from pathlib import Path

from . import shell
from .console import ok, info, warn
from .errors import EnvironmentCheckError

SUPPORTED_SYSTEM = "Darwin"
REQUIRED_TOOLS = ("uname", "curl", "git")

ALTERNATIVES = [
    "Linux: Use your distribution's package manager for GPG setup",
    "Windows: Use GPG4Win or Windows Subsystem for Linux",
]

ARCHITECTURES = {
    "x86_64": "Intel (x86_64)",
    "arm64": "Apple Silicon (arm64)",
}


@dataclass(frozen=True)
class Toolchain:
    brew_prefix: Path
    gpg_path: Path
    pinentry_path: Path


def validate():
    """Fail fast unless the host is macOS with git, curl and uname on PATH."""
    os_name = platform.system()
    arch = platform.machine()

    if os_name != SUPPORTED_SYSTEM:
        raise EnvironmentCheckError(
            f"Unsupported operating system: {os_name}",
            os_name=os_name,
            architecture=arch,
            alternatives=ALTERNATIVES,
            hint=(
                "This script is designed specifically for macOS (Darwin).\n"
                f"Your system: {os_name} on {arch}\n\n"
                "For other platforms, consider:\n"
                + "\n".join(f"  • {alt}" for alt in ALTERNATIVES)
            ),
        )

    version = shell.sh(["sw_vers", "-productVersion"])
    if version:
        ok(f"macOS detected: {version}")
        major = version.split(".")[0]
        if major.isdigit() and int(major) < 10:
            warn(f"Very old macOS version detected ({version})")
            warn("Some features may not work correctly on macOS < 10.x")
    else:
        warn("Could not determine macOS version (sw_vers not available)")

    missing = [tool for tool in REQUIRED_TOOLS if not shutil.which(tool)]
    if missing:
        raise EnvironmentCheckError(
            f"Missing required system tools: {', '.join(missing)}",
            os_name=os_name,
            architecture=arch,
            missing_tools=missing,
            hint="Install the missing tools and try again. Git ships with: xcode-select --install",
        )

    if arch in ARCHITECTURES:
        info(f"Architecture: {ARCHITECTURES[arch]}")
    else:
        warn(f"Unknown architecture: {arch}")
        warn("Script may work but hasn't been tested on this architecture")

    ok("Environment validation passed")


def detect_toolchain():
    """Locate Homebrew and the gpg / pinentry-mac binaries it provides."""
    prefix = shell.sh(["brew", "--prefix"])
    if prefix:
        brew_prefix = Path(prefix)
    elif Path("/opt/homebrew/bin/brew").exists():
        # Apple Silicon
        brew_prefix = Path("/opt/homebrew")
    elif Path("/usr/local/bin/brew").exists():
        brew_prefix = Path("/usr/local")
    else:
        raise EnvironmentCheckError(
            "Homebrew not found",
            os_name=platform.system(),
            architecture=platform.machine(),
            hint="Install Homebrew from https://brew.sh/ and re-run.",
        )
    ok(f"Homebrew found at: {brew_prefix}")

    gpg_path = brew_prefix / "bin" / "gpg"
    if not gpg_path.exists():
        found = shutil.which("gpg")
        if not found:
            raise EnvironmentCheckError(
                "GnuPG is not installed",
                os_name=platform.system(),
                architecture=platform.machine(),
                missing_tools=["gpg"],
                hint="Install it with: brew install gnupg pinentry-mac",
            )
        gpg_path = Path(found)
    version_line = shell.sh([str(gpg_path), "--version"]).split("\n")[0]
    ok(f"GnuPG installed  ({version_line or gpg_path})")

    pinentry_path = brew_prefix / "bin" / "pinentry-mac"
    if not pinentry_path.exists():
        warn("pinentry-mac not found. GPG passphrase prompts may behave oddly.")
        warn("Install it with: brew install pinentry-mac")

    return Toolchain(brew_prefix=brew_prefix, gpg_path=gpg_path, pinentry_path=pinentry_path)
