"""Post-setup verification and the closing summary."""

from rich.panel import Panel
from rich.table import Table
from rich.padding import Padding
from rich import box

from . import shell
from .console import console, ok, info, warn, dim

GIT_KEYS = ["user.name", "user.email", "user.signingkey", "gpg.program", "commit.gpgsign"]


def verify(options, git, keyring, key_id):
    """Show what is configured and try a test signature. Returns True if all checks pass."""
    info("Verifying configuration...")
    console.print()

    checks = []
    for key in GIT_KEYS:
        value = git.get(key)
        passed = bool(value) and (key != "commit.gpgsign" or value == "true")
        checks.append((key, value or "NOT SET", passed))

    has_secret = keyring.has_secret(key_id)
    checks.append(("Secret key", key_id if has_secret else "not found", has_secret))

    conf = options.agent_conf
    if conf.is_file():
        pinentry = next(
            (line.split(None, 1)[1] for line in conf.read_text().splitlines()
             if line.startswith("pinentry-program ")),
            "no pinentry-program",
        )
        checks.append(("GPG agent config", pinentry, True))
    else:
        checks.append(("GPG agent config", "missing", False))

    table = Table(box=box.ROUNDED, border_style="dim", padding=(0, 2))
    table.add_column("Check", style="white")
    table.add_column("Value", style="dim")
    table.add_column("", width=3)
    for label, value, passed in checks:
        icon = "[green]✓[/]" if passed else "[red]✗[/]"
        table.add_row(label, value, icon)
    console.print(Padding(table, (0, 4)))

    # Signing may need the passphrase; a failure here is not fatal
    info("Testing GPG signing...")
    if keyring.test_signature(key_id):
        ok("GPG signing test successful")
    else:
        warn("GPG signing test failed (may require passphrase entry)")
        dim("This is normal - signing will work when you make commits")

    return all(passed for _, _, passed in checks)


def _mark(flag, yes="✓", no="✗"):
    return f"[green]{yes}[/]" if flag else f"[red]{no}[/]"


def done_summary(options, key_id, all_good, backup, github=None, keybase=None):
    console.print()
    if options.dry_run:
        follow_up = (
            "Run with --auto (without --dry-run) to apply changes automatically."
            if options.auto else "Run without --dry-run to apply changes."
        )
        console.print(Panel(
            "[bold yellow]This was a dry run. No changes were made.[/]\n\n" + follow_up,
            title="[bold yellow] Dry Run Complete [/]",
            border_style="yellow",
            box=box.DOUBLE,
            padding=(1, 2),
        ))
        console.print()
        return

    lines = []
    if options.auto:
        lines.append("[bold green]Automatic setup completed successfully![/]\n")
        lines.append(f"  {_mark(shell.cmd_exists('gpg'))}  GPG tools")
        lines.append(f"  {_mark(shell.sh_ok(['brew', 'list', 'pinentry-mac']))}  pinentry-mac")
        lines.append(f"  {_mark(shell.sh_ok(['pgrep', 'gpg-agent']), no='!')}  GPG agent running")
        lines.append(f"  {_mark(all_good)}  Git signing with key {key_id}")
        for service in (github, keybase):
            if service is None:
                continue
            if not service.available():
                lines.append(f"  [red]✗[/]  {service.name}: CLI not installed")
            elif service.authenticated():
                lines.append(f"  [green]✓[/]  {service.name}: authenticated")
            else:
                lines.append(f"  [yellow]![/]  {service.name}: not authenticated")
    else:
        lines.append("[bold green]You're all set.[/]\n" if all_good else "[bold yellow]Almost there.[/]\n")
        lines.append("[bold]Next steps:[/]")
        lines.append("  1. Make a test commit to verify GPG signing works")
        lines.append("  2. When prompted, enter your passphrase in the GUI dialog")
        lines.append("  3. Your commits will now be automatically signed\n")
        lines.append("[dim]To set ultimate trust on your key (optional):[/]")
        lines.append(f"  [dim]gpg --edit-key {key_id}   then: trust, 5, y, quit[/]")
        lines.append(f"[dim]To publish it to a keyserver: gpg --send-keys {key_id}[/]")

    lines.append("\n[bold]Test your setup:[/]")
    lines.append('  [dim]git commit --allow-empty -m "Test GPG signing"[/]')
    if backup is not None and backup.path is not None:
        lines.append(f"\n[dim]Backup created at: {backup.path}[/]")

    console.print(Panel(
        "\n".join(lines),
        title="[bold green] Setup Complete [/]" if all_good else "[bold yellow] Needs Attention [/]",
        border_style="green" if all_good else "yellow",
        box=box.DOUBLE,
        padding=(1, 2),
    ))
    console.print()
