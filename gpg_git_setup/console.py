"""
Terminal output and prompt helpers.

Every message the tool prints goes through the shared ``console`` so tests can
patch a single object.
"""

import sys

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt, Confirm
from rich import box

console = Console()


# ─── Output Helpers ──────────────────────────────────────────────────────────
def phase(num, title, subtitle=""):
    text = f"[bold cyan]STEP {num}[/]  [bold white]{title}[/]"
    if subtitle:
        text += f"\n[dim]{subtitle}[/]"
    console.print()
    console.print(Panel(text, box=box.ROUNDED, border_style="cyan", padding=(0, 2)))


def ok(msg):
    console.print(f"  [green]✓[/] {msg}")


def info(msg):
    console.print(f"  [cyan]›[/] {msg}")


def warn(msg):
    console.print(f"  [yellow]![/] {msg}")


def fail(msg):
    console.print(f"  [red]✗[/] {msg}")


def dim(msg):
    console.print(f"  [dim]{msg}[/]")


def dry_run(msg):
    console.print(f"  [magenta][DRY RUN][/] Would {msg}")


def error_panel(message, hint=""):
    """Render a fatal error with its remediation text."""
    body = f"[bold red]{message}[/]"
    if hint:
        body += f"\n\n{hint}"
    console.print()
    console.print(Panel(
        body,
        title="[bold red] Setup Failed [/]",
        border_style="red",
        box=box.HEAVY,
        padding=(1, 2),
    ))


# ─── Prompt Helpers ──────────────────────────────────────────────────────────
def confirm(question, default=True):
    return Confirm.ask(f"  [bold]{question}[/]", default=default)


def ask(question, default=None):
    answer = Prompt.ask(f"  [bold]{question}[/]", default=default or "")
    return (answer or "").strip()


def reattach_tty():
    """Reopen stdin from the terminal when the script arrived through a pipe.

    With ``curl ... | python3`` stdin is the script itself and is exhausted
    before any prompt runs.
    """
    if sys.stdin.isatty():
        return
    try:
        sys.stdin = open("/dev/tty", "r")
    except OSError:
        # No controlling terminal (CI, pytest); a prompt hits end of input and raises EOFError.
        dim("No terminal attached; interactive prompts cannot be answered, use --auto")
