"""Host-controller facade: the operations a front end may invoke on one grading tab."""

import time
from typing import Any, Callable, Dict, Optional

import config
from core import page_meta
from core.loop import LoopController, Notify
from core.pacing import SUBMIT_ENTER, Pacer
from core.page_watcher import PageWatcher
from core.profiles import PlatformProfile, resolve_profile
from core.scanner import ExtractionOutcome, Readiness, Scanner
from core.writer import ScoreWriter, WriteOptions, WriteOutcome
from services.page_surface import PageSurface
from services.scoring_client import ScoringClient, ScoringResult
from utils.error_handler import GradingError
from utils.logger import get_logger
from utils.retry import retry_outcome

logger = get_logger()


class GradingAgent:
    """Bundles the engine components for one tab and exposes request/response operations.

    Push notifications (``submitted``, ``waiting_refresh``, ``stopped``,
    ``no_more_items``, ``url_changed``, ``environment_changed``,
    ``answer_card_status``) go to ``notify(event, payload)``.
    """

    def __init__(
        self,
        surface: PageSurface,
        scoring_client: ScoringClient,
        notify: Optional[Notify] = None,
        pacer: Optional[Pacer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.surface = surface
        self.scoring_client = scoring_client
        self._listener = notify
        self.pacer = pacer or Pacer()
        self.scanner = Scanner(surface)
        self.writer = ScoreWriter(surface)
        self.watcher = PageWatcher(surface, self.profile(), self._notify)
        self.loop = LoopController(
            surface, scoring_client, scanner=self.scanner, writer=self.writer, pacer=self.pacer,
            notify=self._notify, before_step=self.poll_page, clock=clock,
        )

    def _notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"Notify {event}: {payload}")
        if self._listener:
            self._listener(event, payload)

    def profile(self) -> PlatformProfile:
        return resolve_profile(self.surface.url(), self.surface)

    def poll_page(self) -> None:
        """Runs one page-watcher observation against the tab's current profile."""
        self.watcher.profile = self.profile()
        self.watcher.poll()

    # --- page context ---

    def get_page_context(self) -> Dict[str, Any]:
        """Platform and question identifiers of the current view."""
        profile = self.profile()
        meta = page_meta.page_meta(self.surface, profile)
        context = meta.to_dict()
        context["url"] = self.surface.url()
        context["studentName"] = page_meta.student_name(self.surface)
        return context

    def answer_card_status(self) -> page_meta.CardStatus:
        return page_meta.answer_card_status(self.surface, self.profile())

    # --- loop control ---

    def start_loop(self, strategy: str = config.DEFAULT_STRATEGY, pinned_question: Optional[str] = None) -> Dict[str, Any]:
        return self.loop.start(strategy, pinned_question)

    def run_loop(self) -> Dict[str, Any]:
        """Blocks in the loop scheduler until it stops; returns the final status."""
        return self.loop.run()

    def stop_loop(self) -> Dict[str, Any]:
        return self.loop.stop()

    def status(self) -> Dict[str, Any]:
        return self.loop.status()

    # --- manual and assisted operations ---

    def request_scan(self, pinned_question: Optional[str] = None) -> ExtractionOutcome:
        """Single synchronous scan with the long retry policy used for manual grading."""
        profile = self.profile()

        def scan() -> ExtractionOutcome:
            return self.scanner.scan(profile, pinned_question)

        return retry_outcome(scan, retries=config.SCAN_RETRIES, delay=config.SCAN_RETRY_DELAY,
                             spread=0.18, sleep=self.surface.sleep, jitter=self.pacer.jitter)

    def check_ready(self) -> Readiness:
        return self.scanner.check_ready(self.profile())

    def grade(self, outcome: ExtractionOutcome, strategy: str = config.DEFAULT_STRATEGY) -> ScoringResult:
        """Scores a successful scan outcome. Raises GradingError."""
        if not outcome.success or outcome.artifact is None:
            raise GradingError(outcome.error or "Nothing to grade")
        return self.scoring_client.grade(outcome.artifact, outcome.context, strategy)

    def fill_score(self, score: float, auto_submit: bool = True, submit_mode: str = SUBMIT_ENTER) -> WriteOutcome:
        """Writes a score outside the loop, retrying a failed write a few times."""
        profile = self.profile()
        options = WriteOptions(auto_submit=auto_submit, submit_mode=submit_mode)

        def fill_score() -> WriteOutcome:
            return self.writer.write(score, profile, options)

        return retry_outcome(fill_score, retries=config.FILL_RETRIES, delay=config.FILL_RETRY_DELAY_MANUAL,
                             spread=0.15, sleep=self.surface.sleep, jitter=self.pacer.jitter)

    def confirm_submit(self, score: float) -> WriteOutcome:
        """Enables auto-submit and presses the keypad button for ``score``."""
        return self.writer.confirm(score, self.profile())
