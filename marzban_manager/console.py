"""Themed terminal output and operator prompts."""

from typing import Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.theme import Theme

theme = Theme({
    "info": "bright_blue",
    "success": "bright_green",
    "warning": "bright_yellow",
    "error": "bright_red",
    "detail": "bright_cyan",
    "accent": "bright_magenta",
    "header": "bold bright_blue",
})

console = Console(theme=theme, highlight=False)


def info(text: str):
    console.print(text, style="info")


def success(text: str):
    console.print(text, style="success")


def warning(text: str):
    console.print(text, style="warning")


def error(text: str):
    console.print(text, style="error")


def detail(text: str):
    console.print(text, style="detail")


def banner(title: str, style: str = "info"):
    """Print a title framed by rules of '=' characters."""
    rule = "=" * 37
    console.print(rule, style=style)
    console.print(f"{title:^37}", style=style)
    console.print(rule, style=style)


def ask(question: str, default: Optional[str] = None) -> str:
    """Prompt for free text; an empty answer returns ``default`` or ''."""
    answer = Prompt.ask(question, default=default or "", show_default=bool(default), console=console)
    return answer.strip()


def ask_required(question: str, empty_message: str) -> str:
    """Prompt until a non-empty answer is given."""
    while True:
        answer = ask(question)
        if answer:
            return answer
        error(empty_message)


def confirm(question: str) -> bool:
    return Confirm.ask(question, console=console, default=False)
