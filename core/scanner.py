"""One scan of the grading view: queue check, metadata, locate, select, extract."""

from dataclasses import dataclass
from typing import Optional

import config
from core import page_meta
from core.extractor import Artifact, ImageExtractor
from core.fingerprint import fingerprint
from core.locator import CandidateLocator
from core.profiles import PlatformProfile
from services.page_surface import PageSurface
from services.scoring_client import ScoringContext
from utils.error_handler import PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

NO_CANDIDATE = "no_candidate"
EXTRACTION_FAILED = "extraction_failed"
NO_MORE_ITEMS = "no_more_items"
CANCELLED = "cancelled"

NO_CANDIDATE_MESSAGE = "No answer-sheet image found on the page"
EXTRACTION_FAILED_MESSAGE = "Answer-sheet image could not be read (maybe not loaded yet)"


@dataclass
class ExtractionOutcome:
    """Result of one scan; failures are values, never exceptions."""
    success: bool
    artifact: Optional[Artifact] = None
    context: Optional[ScoringContext] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.error_code in (NO_MORE_ITEMS, CANCELLED)

    @property
    def fingerprint(self) -> Optional[str]:
        return fingerprint(self.artifact.b64) if self.artifact else None


@dataclass
class Readiness:
    ready: bool
    candidate_count: int
    message: str


def _failure(code: str, message: str) -> ExtractionOutcome:
    return ExtractionOutcome(False, error=message, error_code=code)


class Scanner:
    """Runs the scan pipeline against one page surface."""

    def __init__(self, surface: PageSurface, locator: Optional[CandidateLocator] = None,
                 extractor: Optional[ImageExtractor] = None):
        self.surface = surface
        self.locator = locator or CandidateLocator(surface)
        self.extractor = extractor or ImageExtractor(surface)

    def scan(self, profile: PlatformProfile, pinned_question: Optional[str] = None) -> ExtractionOutcome:
        """Produces the cycle's artifact and scoring context.

        Args:
            profile: Platform profile of the tab.
            pinned_question: Question number chosen by the operator; replaces the detected one.

        Returns:
            A successful outcome, or a failure coded NO_MORE_ITEMS (terminal),
            NO_CANDIDATE or EXTRACTION_FAILED (both retryable).
        """
        try:
            notice = page_meta.queue_empty_message(self.surface, profile)
            if notice:
                logger.info(f"Platform reports no more papers: {notice[:60]!r}")
                return _failure(NO_MORE_ITEMS, f"No more papers to mark: {notice[:60]}")

            meta = page_meta.page_meta(self.surface, profile, pinned_question)
            student = page_meta.student_name(self.surface)

            candidates = self.locator.locate(profile)
            if not candidates:
                return _failure(NO_CANDIDATE, NO_CANDIDATE_MESSAGE)
            selected = self.locator.select(candidates, profile)
            logger.debug(f"Selected {len(selected)} of {len(candidates)} candidate(s): "
                         f"{[(c.tag, c.reason, round(c.area)) for c in selected]}")

            artifact = self.extractor.extract(selected, profile.compress_threshold)
        except PageSurfaceError as e:
            logger.warning(f"Scan interrupted by the page: {e}", exc_info=config.DEBUG)
            return _failure(EXTRACTION_FAILED, f"{EXTRACTION_FAILED_MESSAGE}: {e}")

        if artifact is None or len(artifact.b64) < config.ARTIFACT_MIN_LENGTH:
            return _failure(EXTRACTION_FAILED, EXTRACTION_FAILED_MESSAGE)

        context = ScoringContext(
            platform=profile.id,
            question_key=meta.question_key,
            question_no=meta.question_no,
            marking_paper_id=meta.marking_paper_id,
            student_name=student,
        )
        logger.info(f"Scanned {context.question_key} for {student}: {artifact.width}x{artifact.height}, "
                    f"{artifact.parts} part(s)")
        return ExtractionOutcome(True, artifact=artifact, context=context)

    def check_ready(self, profile: PlatformProfile) -> Readiness:
        """Cheap readiness probe: is any answer-sheet candidate present? No extraction."""
        try:
            count = len(self.locator.locate(profile))
        except PageSurfaceError as e:
            return Readiness(False, 0, f"Page not readable: {e}")
        if count:
            return Readiness(True, count, f"{count} answer-sheet candidate(s) on the page")
        return Readiness(False, 0, NO_CANDIDATE_MESSAGE)
