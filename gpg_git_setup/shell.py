"""Thin wrappers around the external commands this tool drives."""

import shutil
import subprocess


def run(args, input_text=None, env=None):
    """Run a command and return the CompletedProcess.

    Never raises for a non-zero exit; a missing executable is reported as
    exit code 127 like a shell would.
    """
    try:
        return subprocess.run(
            list(args),
            input=input_text,
            capture_output=True,
            text=True,
            env=env,
        )
    except FileNotFoundError as e:
        return subprocess.CompletedProcess(list(args), 127, "", str(e))


def sh(args, input_text=None, env=None):
    """Run a command, return stdout (empty string on failure)."""
    r = run(args, input_text=input_text, env=env)
    return r.stdout.strip() if r.returncode == 0 else ""


def sh_ok(args, input_text=None, env=None):
    """Return True if a command exits 0."""
    return run(args, input_text=input_text, env=env).returncode == 0


def cmd_exists(name):
    """Check if a command exists on PATH."""
    return shutil.which(name) is not None


def interactive(args):
    """Run a command attached to the terminal (login flows, pinentry)."""
    try:
        return subprocess.run(list(args)).returncode
    except FileNotFoundError:
        return 127
