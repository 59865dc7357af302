# nhclean/report.py
"""
report.py - plan presentation and the confirmation gate

render_plan() prints the policy, the gcroot candidates and every
profile's generations (newest first) tagged OK (kept) or DEL (removed).
It only reads the plan.
"""

from __future__ import annotations

from typing import Callable, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

from nhclean.errors import UserRejected
from nhclean.logging import get_logger
from nhclean.models import CleanPlan
from nhclean.policy import format_duration

logger = get_logger("report")

OK_TAG = "[green]OK [/green]"
DEL_TAG = "[red]DEL[/red]"

_console: Optional[Console] = None
_err_console: Optional[Console] = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console(highlight=False)
    return _console


def get_err_console() -> Console:
    global _err_console
    if _err_console is None:
        _err_console = Console(stderr=True, highlight=False)
    return _err_console


def _tag(remove: bool) -> str:
    return DEL_TAG if remove else OK_TAG


def render_plan(plan: CleanPlan, console: Optional[Console] = None) -> None:
    console = console or get_console()
    out = console.print
    out()
    out("[bold]Welcome to nhclean[/bold]")
    out(f"Keeping [green]{plan.policy.keep}[/green] generation(s)")
    out(f"Keeping paths newer than [green]{format_duration(plan.policy.keep_since)}[/green]")
    out()
    out("legend:")
    out("[green]OK[/green]:  path to be kept")
    out(f"{DEL_TAG}: path to be removed")
    out()
    if plan.gcroots:
        out("[bold blue]gcroots (matching the following regex patterns)[/bold blue]")
        for pattern in plan.patterns:
            out(f"- [magenta]RE[/magenta]  {escape(pattern)}")
        for path, remove in plan.gcroots.items():
            out(f"- {_tag(remove)} {escape(path)}")
        out()
    for profile in sorted(plan.profiles):
        out(f"[bold blue]{escape(profile)}[/bold blue]")
        for generation, remove in plan.profiles[profile].newest_first():
            out(f"- {_tag(remove)} {escape(generation.path)}")
        out()


def ask_confirmation(question: str = "Confirm the cleanup plan?", console: Optional[Console] = None) -> bool:
    console = console or get_console()
    try:
        return Confirm.ask(question, default=False, console=console)
    except EOFError:
        return False


def confirm_or_abort(prompt: Callable[[], bool] = ask_confirmation) -> None:
    logger.debug("waiting for plan confirmation")
    if not prompt():
        raise UserRejected("User rejected the cleanup plan")


# small status helpers shared with the CLI
def print_ok(msg: str, console: Optional[Console] = None):
    (console or get_console()).print(f"[bold green]✔[/] {escape(msg)}")

def print_warn(msg: str, console: Optional[Console] = None):
    (console or get_console()).print(f"[bold yellow]![/] {escape(msg)}")

def print_err(msg: str, console: Optional[Console] = None):
    (console or get_err_console()).print(f"[bold red]✖[/] {escape(msg)}")
