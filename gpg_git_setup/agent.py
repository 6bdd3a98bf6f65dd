"""gpg-agent configuration: pinentry-mac and passphrase cache lifetimes."""

import os

from . import shell
from .console import ok, info, dry_run

DEFAULT_CACHE_TTL = 28800   # 8 hours
MAX_CACHE_TTL = 86400       # 24 hours


def render_agent_conf(pinentry_path):
    return (
        f"pinentry-program {pinentry_path}\n"
        f"default-cache-ttl {DEFAULT_CACHE_TTL}\n"
        f"max-cache-ttl {MAX_CACHE_TTL}\n"
    )


def configure_agent(options, toolchain):
    """Write gpg-agent.conf when it differs from what we want, then reload the agent.

    Returns True if the file was (or in a dry run, would be) rewritten.
    """
    home = options.gnupg_home
    conf = options.agent_conf
    expected = render_agent_conf(toolchain.pinentry_path)

    if options.dry_run:
        dry_run(f"create {home} with mode 700")
        dry_run(f"write {conf} with pinentry-program: {toolchain.pinentry_path}")
        dry_run("run: gpgconf --reload gpg-agent")
        return True

    home.mkdir(mode=0o700, parents=True, exist_ok=True)
    home.chmod(0o700)

    current = conf.read_text() if conf.exists() else None
    changed = current is None or current.strip() != expected.strip()
    if current is None:
        info("Creating new GPG agent configuration")
    elif changed:
        info("Updating GPG agent configuration")

    if changed:
        conf.write_text(expected)

    # Reload regardless so the agent is running with this configuration
    shell.run(["gpgconf", "--reload", "gpg-agent"], env=dict(os.environ, GNUPGHOME=str(home)))

    if changed:
        ok("GPG agent configured with pinentry-mac")
    else:
        ok("GPG agent already properly configured")
    return changed
