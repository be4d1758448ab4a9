"""Main execution script for the answer-sheet auto grader."""

from typing import Any, Dict, List

from dotenv import load_dotenv

# config reads the environment at import time.
load_dotenv()

import config  # noqa: E402
import ui.cli as cli  # noqa: E402
from api_clients import BrowserSession  # noqa: E402
from core.agent import GradingAgent  # noqa: E402
from services.gemini_ai import GeminiScoringClient  # noqa: E402
from services.scoring_client import HttpScoringClient, RubricStore, ScoringClient  # noqa: E402
from utils.error_handler import (  # noqa: E402
    AutoGraderError, BrowserConnectionError, ConfigError, GradingError, UserCancelledError,
)
from utils.logger import setup_logger  # noqa: E402

logger = setup_logger()


def create_scoring_client(backend: str = config.SCORING_BACKEND) -> ScoringClient:
    """Builds the configured scoring client. Raises ConfigError."""
    rubrics = RubricStore()
    if backend == "gemini":
        return GeminiScoringClient(rubrics=rubrics)
    if backend == "http":
        return HttpScoringClient(rubrics=rubrics)
    raise ConfigError(f"Unknown scoring backend {backend!r} (expected 'http' or 'gemini').")


def run_loop_mode(agent: GradingAgent, strategy: str, pinned_question, submitted: List[Dict[str, Any]]):
    agent.start_loop(strategy, pinned_question)
    with cli.console.status(cli.status_text(agent.status())) as live:
        def before_step():
            agent.poll_page()
            live.update(cli.status_text(agent.status()))

        agent.loop.before_step = before_step
        try:
            agent.run_loop()
        except KeyboardInterrupt:
            logger.info("Loop interrupted by user (Ctrl+C).")
            agent.stop_loop()
    cli.display_loop_summary(agent.status(), submitted)


def run_assisted_mode(agent: GradingAgent, strategy: str, pinned_question):
    with cli.console.status("Reading the answer sheet..."):
        outcome = agent.request_scan(pinned_question)
    if not outcome.success:
        cli.display_error(outcome.error or "Scan failed.")
        return

    with cli.console.status(f"Grading {outcome.context.question_key}..."):
        result = agent.grade(outcome, strategy)
    cli.display_scoring_result(result, outcome.context.student_name)

    score = cli.prompt_score(result.score, result.max_score)
    if not cli.confirm_action(f"Write {score:g} into the page and submit?", default=True):
        raise UserCancelledError("Score not written.")

    written = agent.fill_score(score)
    if written.success:
        cli.display_success(f"Score {score:g} written via {written.strategy} "
                            f"({written.confirmation or 'no confirmation observed'}).")
    else:
        cli.display_error(f"Could not write the score: {written.error}")


def run_check_mode(agent: GradingAgent):
    readiness = agent.check_ready()
    card = agent.answer_card_status()
    if readiness.ready:
        cli.display_success(readiness.message)
    else:
        cli.display_warning(readiness.message)
    cli.console.print(f"Answer card: [bold]{card.status}[/bold] ({card.message})")


def main():
    """Main function to run the grading workflow."""
    logger.info("Starting answer-sheet auto grader.")
    cli.display_welcome()

    session = BrowserSession()
    submitted: List[Dict[str, Any]] = []

    def on_event(event: str, payload: Dict[str, Any]):
        if event == "submitted" and payload.get("result"):
            submitted.append(payload["result"])
        if event not in ("environment_changed", "answer_card_status") or config.DEBUG:
            cli.console.print(cli.event_line(event, payload))

    try:
        # --- Step 1: Browser ---
        cli.display_step(1, f"Attaching to Chrome at {config.CDP_URL}...")
        session.connect()
        cli.display_success("Attached to the browser.")

        # --- Step 2: Tab ---
        cli.display_step(2, "Selecting the marking tab...")
        tabs = session.list_tabs()
        tab = cli.prompt_for_selection(tabs, cli.format_tab_for_display, "Which tab shows the marking page?")
        if tab is None:
            cli.display_error("No open tabs found. Open the marking page first.")
            return
        surface = session.open_surface(tab.index)

        # --- Step 3: Scoring service ---
        cli.display_step(3, f"Initializing the {config.SCORING_BACKEND} scoring client...")
        agent = GradingAgent(surface, create_scoring_client(), notify=on_event)
        context = agent.get_page_context()
        cli.display_page_context(context)

        # --- Step 4: Mode ---
        cli.display_step(4, "Choosing what to do...")
        mode = cli.prompt_mode()
        if mode == cli.MODE_CHECK:
            run_check_mode(agent)
            return
        strategy = cli.prompt_strategy()
        pinned_question = cli.prompt_pinned_question(context.get("questionNo"))

        # --- Step 5: Run ---
        if mode == cli.MODE_LOOP:
            cli.display_step(5, "Grading until the queue is empty (Ctrl+C to stop)...")
            cli.display_warning("Keep the marking tab in the foreground; the loop stops when it is hidden.")
            run_loop_mode(agent, strategy, pinned_question, submitted)
        else:
            cli.display_step(5, "Grading the current answer sheet...")
            run_assisted_mode(agent, strategy, pinned_question)

    except (BrowserConnectionError, ConfigError) as e:
        logger.critical(f"Setup Error: {e}", exc_info=config.DEBUG)
        cli.display_error(f"Setup Error: {e}")
    except GradingError as e:
        logger.error(f"Grading failed: {e}", exc_info=config.DEBUG)
        cli.display_error(f"Grading failed: {e}")
    except UserCancelledError as e:
        logger.info(f"Operation cancelled by user: {e}")
        cli.display_warning(f"Operation cancelled: {e}")
    except KeyboardInterrupt:
        logger.info("Operation interrupted by user (Ctrl+C).")
        cli.display_warning("Operation interrupted.")
    except AutoGraderError as e:
        logger.error(f"Application error: {e}", exc_info=config.DEBUG)
        cli.display_error(str(e))
    except Exception as e:
        # Catch-all for unexpected errors
        logger.critical(f"An unexpected error occurred: {e}", exc_info=True)
        cli.display_error(f"An unexpected error occurred: {e}. Check logs for details.")
    finally:
        session.close()
        cli.display_farewell()


if __name__ == "__main__":
    main()
