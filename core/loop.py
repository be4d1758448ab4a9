"""Autonomous grading loop: a phase state machine driven by one cooperative scheduler.

Each ``step()`` runs one cycle (scan, fingerprint gate, grade, write) and
returns the delay before the next cycle, or None to finish. ``run()`` sleeps
through the page surface between steps so the host page keeps handling its
own events, and re-checks the running flag after every suspension.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

import config
from core import scanner as scan_codes
from core.pacing import Pacer
from core.profiles import PlatformProfile, resolve_profile
from core.scanner import ExtractionOutcome, Scanner
from core.writer import ScoreWriter, WriteOptions, WriteOutcome
from services.page_surface import PageSurface
from services.scoring_client import ScoringClient
from utils.error_handler import GradingError, PageSurfaceError
from utils.logger import get_logger
from utils.retry import retry_outcome

logger = get_logger()

HIDDEN_ERROR = "Paused: page not in foreground"

Notify = Callable[[str, Dict[str, Any]], None]


class Phase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    EXTRACTING = "extracting"
    EXTRACT_FAILED = "extract_failed"
    WAITING_NEXT = "waiting_next"
    WAITING_REFRESH = "waiting_refresh"
    GRADING = "grading"
    GRADING_FAILED = "grading_failed"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"
    NO_MORE_ITEMS = "no_more_items"
    STOPPED = "stopped"


@dataclass
class LoopState:
    """Everything the loop knows; replaced wholesale at every start."""
    running: bool = False
    phase: Phase = Phase.IDLE
    strategy: str = config.DEFAULT_STRATEGY
    pinned_question: Optional[str] = None
    processed: int = 0
    consecutive_success: int = 0
    wait_count: int = 0
    last_error: Optional[str] = None
    last_fingerprint: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None
    speed_multiplier: float = 1.0
    refresh_notified: bool = False
    started_at: Optional[float] = None
    updated_at: Optional[float] = None
    last_pause_at: float = 0.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "phase": self.phase.value,
            "strategy": self.strategy,
            "pinnedQuestion": self.pinned_question,
            "processed": self.processed,
            "consecutiveSuccess": self.consecutive_success,
            "waitCount": self.wait_count,
            "lastError": self.last_error,
            "lastSignature": self.last_fingerprint,
            "lastResult": dict(self.last_result) if self.last_result else None,
            "startedAt": self.started_at,
            "updatedAt": self.updated_at,
        }


def _no_op(event: str, payload: Dict[str, Any]) -> None:
    pass


class LoopController:
    """Owns one LoopState and is its only mutator.

    Args:
        surface: Page the loop drives.
        scoring_client: External scoring service.
        scanner: Scan pipeline; built on ``surface`` when omitted.
        writer: Score writer; built on ``surface`` when omitted.
        pacer: Source of every delay; injectable for deterministic tests.
        notify: ``notify(event, payload)`` push channel to the host controller.
        before_step: Called before every cycle (the page watcher's poll).
        clock: Wall clock used for timestamps and pause spacing.
    """

    def __init__(
        self,
        surface: PageSurface,
        scoring_client: ScoringClient,
        scanner: Optional[Scanner] = None,
        writer: Optional[ScoreWriter] = None,
        pacer: Optional[Pacer] = None,
        notify: Optional[Notify] = None,
        before_step: Optional[Callable[[], None]] = None,
        resolve: Callable[..., PlatformProfile] = resolve_profile,
        clock: Callable[[], float] = time.time,
    ):
        self.surface = surface
        self.scoring_client = scoring_client
        self.scanner = scanner or Scanner(surface)
        self.writer = writer or ScoreWriter(surface)
        self.pacer = pacer or Pacer()
        self.notify = notify or _no_op
        self.before_step = before_step
        self.resolve = resolve
        self.clock = clock
        self.state = LoopState()
        self.phase_log: Deque[Phase] = deque(maxlen=200)
        self.surface.on_visibility_change(self._on_visibility_change)

    # --- external control surface ---

    def start(self, strategy: str = config.DEFAULT_STRATEGY, pinned_question: Optional[str] = None) -> Dict[str, Any]:
        """Resets the state and arms the loop; ``run()`` does the work.

        Returns:
            The status snapshot after starting.
        """
        if self.state.running:
            logger.warning("Loop already running; start request ignored.")
            return self.status()
        if strategy not in config.STRATEGIES:
            logger.warning(f"Unknown strategy {strategy!r}, using {config.DEFAULT_STRATEGY!r}")
            strategy = config.DEFAULT_STRATEGY

        now = self.clock()
        self.state = LoopState(
            running=True, strategy=strategy, pinned_question=pinned_question or None,
            started_at=now, updated_at=now, last_pause_at=now,
        )
        self.phase_log.clear()
        self._set_phase(Phase.STARTING)
        logger.info(f"Grading loop started (strategy={strategy}, question={pinned_question or 'auto'})")
        return self.status()

    def stop(self, reason: Optional[str] = None) -> Dict[str, Any]:
        """Clears the running flag. An in-flight phase completes, nothing further is scheduled."""
        was_running = self.state.running
        self.state.running = False
        if reason:
            self.state.last_error = reason
        if self.state.phase != Phase.NO_MORE_ITEMS:
            self._set_phase(Phase.STOPPED)
        if was_running:
            logger.info(f"Grading loop stopped after {self.state.processed} submission(s)"
                        f"{f': {reason}' if reason else ''}")
            self.notify("stopped", {"reason": reason, "processed": self.state.processed})
        return self.status()

    def status(self) -> Dict[str, Any]:
        return self.state.snapshot()

    # --- scheduler ---

    def run(self) -> Dict[str, Any]:
        """Drives cycles until stopped, finished or hidden. Returns the final status."""
        delay = 0.0
        while self.state.running:
            if delay:
                self.surface.sleep(delay)
            if not self.state.running:
                break
            if self.surface.is_hidden():
                self._on_visibility_change(True)
                break
            if self.before_step:
                try:
                    self.before_step()
                except PageSurfaceError as e:
                    logger.debug(f"Pre-step hook failed: {e}")
            try:
                delay = self.step()
            except Exception as e:
                # Nothing may end the loop except stop, finish or visibility.
                logger.error(f"Unexpected error in grading cycle: {e}", exc_info=True)
                self.state.last_error = f"Unexpected error: {e}"
                self.state.consecutive_success = 0
                delay = self._paced(0.4, 0.15)
            if delay is None:
                break
        return self.status()

    def step(self) -> Optional[float]:
        """One cycle. Returns the delay before the next cycle, or None when the loop must end."""
        state = self.state
        profile = self.resolve(self.surface.url(), self.surface)

        self._set_phase(Phase.EXTRACTING)
        outcome = retry_outcome(
            self._scan_once(profile), retries=1, delay=config.EXTRACT_RETRY_DELAY,
            spread=0.18, sleep=self.surface.sleep, jitter=self.pacer.jitter,
        )
        if not state.running:
            return None

        if outcome.error_code == scan_codes.NO_MORE_ITEMS:
            return self._finish(outcome)

        if not outcome.success:
            self._set_phase(Phase.EXTRACT_FAILED)
            state.wait_count += 1
            state.consecutive_success = 0
            state.last_error = outcome.error
            return self._paced(0.4, 0.15)

        signature = outcome.fingerprint
        if signature is not None and signature == state.last_fingerprint:
            return self._same_artifact()

        state.wait_count = 0
        state.refresh_notified = False
        state.last_fingerprint = signature
        state.last_error = None

        self._set_phase(Phase.GRADING)
        try:
            result = self.scoring_client.grade(outcome.artifact, outcome.context, state.strategy)
        except GradingError as e:
            if not state.running:
                logger.info(f"Grading failed after the loop was stopped: {e}")
                return None
            self._set_phase(Phase.GRADING_FAILED)
            state.consecutive_success = 0
            state.last_error = str(e)
            return self._paced(0.6, 0.2)
        if not state.running:
            return None

        context = outcome.context
        state.last_result = {
            "score": result.score,
            "maxScore": result.max_score,
            "comment": result.comment,
            "studentName": context.student_name,
            "questionKey": context.question_key,
        }

        self._set_phase(Phase.SUBMITTING)
        options = WriteOptions(auto_submit=True, submit_mode=self.pacer.submit_mode())
        written = retry_outcome(
            self._write_once(result.score, profile, options), retries=1, delay=config.FILL_RETRY_DELAY,
            spread=0.15, sleep=self.surface.sleep, jitter=self.pacer.jitter,
        )
        if written.cancelled:
            return None
        if not written.success:
            if not state.running:
                return None
            self._set_phase(Phase.SUBMIT_FAILED)
            state.consecutive_success = 0
            state.last_error = written.error
            return self._paced(0.4, 0.15)

        return self._submitted(written)

    # --- phase helpers ---

    def _scan_once(self, profile: PlatformProfile) -> Callable[[], ExtractionOutcome]:
        def scan() -> ExtractionOutcome:
            if not self.state.running:
                return ExtractionOutcome(False, error="stopped", error_code=scan_codes.CANCELLED)
            return self.scanner.scan(profile, self.state.pinned_question)
        return scan

    def _write_once(self, score: float, profile: PlatformProfile, options: WriteOptions) -> Callable[[], WriteOutcome]:
        def fill_score() -> WriteOutcome:
            if not self.state.running:
                return WriteOutcome(False, error="stopped", cancelled=True)
            return self.writer.write(score, profile, options)
        return fill_score

    def _same_artifact(self) -> float:
        state = self.state
        state.wait_count += 1
        if state.wait_count >= config.WAIT_REFRESH_THRESHOLD:
            self._set_phase(Phase.WAITING_REFRESH)
            if not state.refresh_notified:
                state.refresh_notified = True
                logger.warning(f"Same answer sheet seen {state.wait_count} times; the page may need a refresh.")
                self.notify("waiting_refresh", {"waitCount": state.wait_count})
            return config.REFRESH_DELAY
        self._set_phase(Phase.WAITING_NEXT)
        return self.pacer.jitter(1.5, 0.3)

    def _submitted(self, written: WriteOutcome) -> Optional[float]:
        state = self.state
        state.processed += 1
        state.consecutive_success += 1
        if not state.running:
            # Stopped mid-write: the page still took the score.
            logger.info(f"Submitted #{state.processed} while stopping; not scheduling another cycle.")
            return None
        self._set_phase(Phase.SUBMITTED)
        logger.info(f"Submitted #{state.processed} ({written.strategy}, "
                    f"confirmed by {written.confirmation or 'nothing observed'})")
        self.notify("submitted", {"processed": state.processed, "result": dict(state.last_result or {})})

        delay = self._paced(2.5, 0.4)
        now = self.clock()
        pause = self.pacer.maybe_pause(now, state.last_pause_at)
        if pause:
            state.last_pause_at = now
            logger.debug(f"Inserting a {pause:.1f}s pause")
        return delay + pause

    def _finish(self, outcome: ExtractionOutcome) -> None:
        state = self.state
        self._set_phase(Phase.NO_MORE_ITEMS)
        state.running = False
        state.last_error = outcome.error
        logger.info(f"No more items to mark; loop finished after {state.processed} submission(s).")
        self.notify("no_more_items", {"message": outcome.error, "processed": state.processed})
        return None

    def _paced(self, base: float, spread: float) -> float:
        multiplier = self.pacer.speed_multiplier(self.state.consecutive_success)
        self.state.speed_multiplier = multiplier
        return self.pacer.jitter(base, spread) * multiplier

    def _set_phase(self, phase: Phase) -> None:
        if not self.state.running and self.state.phase in (Phase.STOPPED, Phase.NO_MORE_ITEMS):
            return
        self.state.phase = phase
        self.state.updated_at = self.clock()
        self.phase_log.append(phase)
        logger.debug(f"Loop phase -> {phase.value}")

    def _on_visibility_change(self, hidden: bool) -> None:
        if hidden and self.state.running:
            logger.warning("Grading tab went to the background; stopping the loop.")
            self.stop(HIDDEN_ERROR)
