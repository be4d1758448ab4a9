"""Command Line Interface (CLI) for operator interaction."""

from typing import Any, Callable, Dict, List, Optional, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt
from rich.table import Table
from rich.text import Text

import config
from utils.error_handler import UserCancelledError
from utils.logger import get_logger

logger = get_logger()
console = Console()

T = TypeVar('T')  # Generic type for selection items

MODE_LOOP = "loop"
MODE_ASSISTED = "assisted"
MODE_CHECK = "check"

_EVENT_STYLES = {
    "submitted": "green",
    "waiting_refresh": "bold yellow",
    "no_more_items": "bold cyan",
    "stopped": "magenta",
    "url_changed": "blue",
    "environment_changed": "dim",
    "answer_card_status": "dim",
}


def display_welcome():
    """Displays a welcome message."""
    console.print(Panel(
        "[bold green]Answer-Sheet Auto Grader[/bold green]",
        title="Welcome",
        border_style="blue"
    ))
    console.print("Grades the answer sheets of an open marking tab and submits the scores for you.")
    console.rule()


def display_farewell():
    console.rule()
    console.print("[bold cyan]Done. Detached from the browser.[/bold cyan]")


def display_error(message: str):
    """Displays an error message in a standard format."""
    console.print(Panel(f"[bold red]Error:[/bold red] {message}", title="Error", border_style="red"))


def display_warning(message: str):
    console.print(f"[yellow]Warning:[/yellow] {message}")


def display_success(message: str):
    console.print(f"[green]Success:[/green] {message}")


def display_step(step_number: int, description: str):
    """Displays the current step in the process."""
    console.print(f"\n[bold blue]Step {step_number}:[/bold blue] {description}")
    console.rule()


def prompt_for_selection(items: List[T], display_func: Callable[[T], str], prompt_message: str) -> Optional[T]:
    """Prompts the user to select an item from a list.

    Args:
        items: The list of items to choose from.
        display_func: Renders one item for the selection table.
        prompt_message: The message to display before the list.

    Returns:
        The selected item, or None if no items are available.

    Raises:
        UserCancelledError: If the user enters 0.
    """
    if not items:
        console.print("[yellow]No items available for selection.[/yellow]")
        return None

    console.print(prompt_message)
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Details", style="cyan")
    choices = []
    for i, item in enumerate(items):
        table.add_row(str(i + 1), display_func(item))
        choices.append(str(i + 1))
    console.print(table)
    console.print("Enter 0 to cancel.")

    choice = IntPrompt.ask("Select item number", choices=choices + ["0"], show_choices=False)
    if choice == 0:
        raise UserCancelledError("User cancelled selection.")
    return items[choice - 1]


def confirm_action(message: str, default: bool = True) -> bool:
    return Confirm.ask(message, default=default)


def prompt_mode() -> str:
    console.print("  [bold]loop[/bold]      grade and submit every answer sheet until the queue is empty")
    console.print("  [bold]assisted[/bold]  grade the current sheet and confirm before the score is written")
    console.print("  [bold]check[/bold]     only check that the tab is ready for grading")
    return Prompt.ask("Mode", choices=[MODE_LOOP, MODE_ASSISTED, MODE_CHECK], default=MODE_LOOP)


def prompt_strategy() -> str:
    return Prompt.ask("Grading strategy", choices=list(config.STRATEGIES), default=config.DEFAULT_STRATEGY)


def prompt_pinned_question(detected: Optional[str]) -> Optional[str]:
    """Optional question number override; empty input keeps auto-detection."""
    answer = Prompt.ask(
        f"Pin question number (detected: {detected or 'none'}, leave empty for auto)",
        default="", show_default=False,
    ).strip()
    return answer or None


def prompt_score(suggested: float, max_score: Optional[float]) -> float:
    """Lets the operator accept or correct the suggested score."""
    while True:
        score = FloatPrompt.ask("Score to write", default=suggested)
        if score < 0 or (max_score is not None and score > max_score):
            display_warning(f"Score must be between 0 and {max_score:g}.")
            continue
        return score


def format_tab_for_display(tab: Any) -> str:
    title = tab.title or "(untitled)"
    return f"{title[:50]}  [dim]{tab.url[:70]}[/dim]  [{tab.platform}]"


def display_page_context(context: Dict[str, Any]):
    table = Table(title="Grading View", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value", style="cyan")
    table.add_row("Platform", context.get("platform", "-"))
    table.add_row("Paper", str(context.get("markingPaperId") or "-"))
    table.add_row("Question", str(context.get("questionNo") or "-"))
    table.add_row("Question key", context.get("questionKey", "-"))
    table.add_row("Student", context.get("studentName", "-"))
    console.print(table)


def display_scoring_result(result: Any, student_name: str = ""):
    """Shows a ScoringResult with its per-item breakdown."""
    max_text = f"/{result.max_score:g}" if result.max_score is not None else ""
    console.print(Panel(
        f"[bold]{result.score:g}{max_text}[/bold]\n{result.comment or ''}",
        title=f"Suggested score{f' for {student_name}' if student_name else ''}",
        border_style="green",
    ))
    if result.breakdown:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Item")
        table.add_column("Score", justify="right")
        table.add_column("Comment", style="dim")
        for item in result.breakdown:
            score = item.get("score", "-")
            max_score = item.get("max")
            table.add_row(str(item.get("label", "-")),
                          f"{score}/{max_score}" if max_score is not None else str(score),
                          str(item.get("comment", "")))
        console.print(table)


def event_line(event: str, payload: Dict[str, Any]) -> Text:
    """One-line rendering of a loop notification."""
    if event == "submitted":
        result = payload.get("result") or {}
        body = (f"#{payload.get('processed')} {result.get('studentName', '')} "
                f"{result.get('score')}/{result.get('maxScore') if result.get('maxScore') is not None else '-'}")
    elif event == "waiting_refresh":
        body = "The page has not moved on; refresh it (F5) to continue."
    elif event == "url_changed":
        body = f"{payload.get('from')} -> {payload.get('to')}"
    elif event == "answer_card_status":
        body = payload.get("message", "")
    else:
        body = ", ".join(f"{k}={v}" for k, v in payload.items())
    return Text.assemble((f"{event:<20}", _EVENT_STYLES.get(event, "")), " ", body)


def status_text(status: Dict[str, Any]) -> str:
    text = (f"[bold]{status['phase']}[/bold]  processed {status['processed']}  "
            f"streak {status['consecutiveSuccess']}  waits {status['waitCount']}")
    if status.get("lastError"):
        text += f"  [red]{status['lastError'][:60]}[/red]"
    return text


def display_loop_summary(status: Dict[str, Any], submitted: List[Dict[str, Any]]):
    """Displays a summary table of the scores submitted during the run."""
    console.print("\n[bold]Run Summary:[/bold]")
    if submitted:
        table = Table(title="Submitted Scores", show_header=True, header_style="bold magenta")
        table.add_column("#", style="dim")
        table.add_column("Student", style="cyan")
        table.add_column("Question", style="dim")
        table.add_column("Score", justify="right", style="green")
        for idx, result in enumerate(submitted, start=1):
            max_score = result.get("maxScore")
            table.add_row(str(idx), str(result.get("studentName", "-")), str(result.get("questionKey", "-")),
                          f"{result.get('score'):g}" + (f"/{max_score:g}" if max_score is not None else ""))
        console.print(table)
    else:
        console.print("[yellow]No scores were submitted.[/yellow]")

    ending = status["phase"]
    if ending == "no_more_items":
        console.print("[bold cyan]Queue empty: every available paper has been marked.[/bold cyan]")
    elif status.get("lastError"):
        console.print(f"Stopped in phase [bold]{ending}[/bold]: [yellow]{status['lastError']}[/yellow]")
    console.print(f"Summary: {status['processed']} submitted.")


if __name__ == "__main__":
    display_welcome()
    display_step(1, "Testing Event Rendering")
    console.print(event_line("submitted", {"processed": 3, "result": {"studentName": "张三", "score": 7, "maxScore": 10}}))
    console.print(event_line("waiting_refresh", {"waitCount": 5}))
    display_step(2, "Testing Summary Display")
    display_loop_summary(
        {"phase": "no_more_items", "processed": 1, "lastError": None, "consecutiveSuccess": 1, "waitCount": 0},
        [{"studentName": "张三", "questionKey": "ZHIXUE:p1:24", "score": 7.0, "maxScore": 10.0}],
    )
    display_farewell()
