"""
Command line entry point and the setup pipeline.

    setup-gpg-git [--dry-run] [--auto] [--new] [--keep-backups N]

Preflight runs first and touches nothing. Every later step runs after the
keyring backup; if any of them fails the backup is restored before exit.
"""

from dataclasses import dataclass
from typing import Optional

import typer

from . import agent, environment
from .backup import BackupManager
from .console import (
    console,
    phase,
    ok,
    info,
    warn,
    fail,
    dim,
    confirm,
    error_panel,
    reattach_tty,
)
from .errors import SetupError, EnvironmentCheckError, KeyUploadError
from .git_config import GitConfig, SigningConfiguration, apply, setup_global_gitignore
from .github import GitHubRegistry
from .identity_source import KeybaseSource
from .keyring import Keyring
from .options import RunOptions, Mode
from .selection import KeySelector
from .verify import verify, done_summary

PROG_NAME = "setup-gpg-git"

# Exit status click gives usage errors; this tool reports them as 1
USAGE_ERROR = 2

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=(
        "Configure GPG signing for git commits on macOS. Works with existing GPG "
        "keys, Keybase keys, or generates a new key as needed."
    ),
)


@dataclass
class Services:
    git: GitConfig
    keyring: Keyring
    source: KeybaseSource
    github: GitHubRegistry
    backups: BackupManager


def build_services(options, toolchain=None):
    git = GitConfig(options)
    keyring = Keyring(options, gpg=str(toolchain.gpg_path) if toolchain else "gpg")
    return Services(
        git=git,
        keyring=keyring,
        source=KeybaseSource(options),
        github=GitHubRegistry(options, keyring),
        backups=BackupManager(options, git),
    )


# ─── Steps ───────────────────────────────────────────────────────────────────
def banner(options):
    console.print()
    console.print("[bold blue]GPG and Git Setup[/]")
    if options.mode is Mode.FORCE_NEW:
        dim("New key mode: generating a fresh GPG key and configuring git signing")
    elif options.mode is Mode.AUTOMATIC:
        dim("Auto mode: using existing keys or importing from keybase as needed")
    else:
        dim("Working with existing GPG keys, keybase keys, or generating new keys as needed")
    if options.dry_run:
        dim("Dry run: nothing will be changed")


def populate_identity(options, git, source):
    """Fill an unset git user.name / user.email from Keybase (automatic mode only)."""
    if not options.auto:
        return
    info("Auto mode: Configuring git user settings...")
    current = git.identity()
    if current.complete:
        info(f"Git identity already set: {current}")
        return
    if not source.available():
        warn("Git identity incomplete and Keybase is not installed to fill it in")
        return

    name, email = source.identity_hints()
    if not current.name and name:
        info(f"Setting git user.name from keybase: {name}")
        git.set("user.name", name)
    if not current.email:
        if email:
            info(f"Setting git user.email from keybase: {email}")
            git.set("user.email", email)
        else:
            warn("Could not auto-detect email. You may need to set it manually:")
            dim('git config --global user.email "your@email.com"')


def ensure_keyring_healthy(keyring):
    info("Checking GPG database...")
    if keyring.healthy():
        ok("GPG database is healthy")
        return
    warn("GPG database appears corrupted, attempting fix...")
    if not keyring.repair():
        raise SetupError(
            "Failed to fix GPG database",
            hint="Run 'gpgconf --kill all' and check permissions on your keyring directory.",
        )
    ok("GPG database fixed")


def publish_key(options, service, key_id):
    """Upload ``key_id`` to an optional service. Failures only warn."""
    if not service.available():
        warn(f"{service.name} CLI not available, skipping {service.name} key upload")
        return False

    if not service.authenticated():
        if options.auto:
            warn(f"Not authenticated with {service.name}, skipping key upload")
            return False
        if not confirm(f"{service.name} authentication required for key upload. Log in now?", default=False):
            info(f"Skipping {service.name} key upload")
            return False
        if not service.login():
            warn(f"{service.name} authentication failed, skipping key upload")
            return False

    info(f"Uploading GPG key to {service.name}...")
    try:
        uploaded = service.upload_key(key_id)
    except KeyUploadError as e:
        warn(e.message)
        if e.hint:
            dim(e.hint)
        return False
    if uploaded:
        ok(f"GPG key uploaded to {service.name} successfully")
    return True


def configure(options, toolchain, services):
    """Everything between the backup and the summary. Returns the signing key id."""
    git, keyring = services.git, services.keyring

    phase(3, "Git Identity & GPG Agent")
    populate_identity(options, git, services.source)
    setup_global_gitignore(git, options)
    ensure_keyring_healthy(keyring)
    agent.configure_agent(options, toolchain)

    phase(4, "Signing Key", "Reuse, import, or generate the key that signs your commits")
    selector = KeySelector(options, git, keyring, services.source)
    key_id = selector.resolve()

    phase(5, "Git Signing Configuration")
    apply(git, SigningConfiguration(
        signing_key=key_id,
        gpg_program=str(toolchain.gpg_path),
        commit_sign=True,
    ))

    phase(6, "Publish Key", "GitHub shows signed commits as Verified")
    publish_key(options, services.github, key_id)
    publish_key(options, services.source, key_id)
    return key_id


def run(options, services=None):
    """Run the whole setup. Returns the process exit code."""
    phase(1, "Preflight Checks", "Making sure your system has what we need")
    try:
        environment.validate()
        toolchain = environment.detect_toolchain()
    except EnvironmentCheckError as e:
        error_panel(e.message, e.hint)
        fail("Environment validation failed. Cannot continue.")
        return 1

    services = services or build_services(options, toolchain)
    banner(options)

    phase(2, "Backup", "Snapshot of your keyring before anything changes")
    try:
        handle = services.backups.snapshot()
    except SetupError as e:
        error_panel(e.message, e.hint)
        fail("Backup failed. Nothing was changed.")
        return 1

    completed = False
    rolled_back = False
    try:
        key_id = configure(options, toolchain, services)
        all_good = True
        if not options.dry_run:
            phase(7, "Verification", "Making sure it all works end to end")
            all_good = verify(options, services.git, services.keyring, key_id)
        completed = True
    except SetupError as e:
        error_panel(e.message, e.hint)
        return 1
    except KeyboardInterrupt:
        console.print("\n\n  [dim]Cancelled. Run again whenever you're ready.[/]\n")
        return 130
    except Exception as e:
        console.print(f"\n  [red]Something broke: {e}[/]")
        services.backups.rollback(handle)
        rolled_back = True
        console.print("  [dim]Your previous configuration has been restored. It's safe to retry.[/]\n")
        raise
    finally:
        if not completed and not rolled_back:
            services.backups.rollback(handle)

    done_summary(options, key_id, all_good, handle, services.github, services.source)
    return 0


# ═════════════════════════════════════════════════════════════════════════════
#  CLI
# ═════════════════════════════════════════════════════════════════════════════
@app.command()
def setup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done without making changes."),
    auto: bool = typer.Option(False, "--auto", help="Make the best decisions without prompting."),
    new: bool = typer.Option(False, "--new", help="Always generate a new GPG key (skip existing key detection)."),
    keep_backups: Optional[int] = typer.Option(
        None, "--keep-backups", min=1, envvar="GPG_GIT_SETUP_KEEP_BACKUPS",
        help="Keep only the newest N keyring backups (default: keep all).",
    ),
):
    """Configure GPG signing for git commits."""
    options = RunOptions(dry_run=dry_run, auto=auto, new_key=new, keep_backups=keep_backups)
    if options.interactive:
        reattach_tty()
    raise typer.Exit(code=run(options))


def main(argv=None):
    """Run the CLI and return its exit status instead of exiting."""
    command = typer.main.get_command(app)
    try:
        command.main(args=argv, prog_name=PROG_NAME)
    except SystemExit as e:
        code = e.code or 0
        return 1 if code == USAGE_ERROR else code
    return 0
