"""Polled watcher that tells the host controller when the grading view moved on underneath it."""

import re
from typing import Callable, Optional

from core import page_meta
from core.profiles import PlatformProfile
from services.page_surface import PageSurface
from utils.error_handler import PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

_PROGRESS = re.compile(r"(?:已评量|已评).*?(\d+)\s*/\s*\d+")
_NAME_SELECTORS = (".student-name", ".name-text", "#studentName", ".stu-name")
_MAIN_IMAGE_SELECTOR = 'div[name="topicImg"] img, .answer-sheet img, .paper-img img'

Notify = Callable[[str, dict], None]


class PageWatcher:
    """Compares the page against the previous poll and emits change events.

    Events: ``url_changed`` (address changed), ``environment_changed`` (the
    composite of student name, question number, marking progress and image
    address tail changed) and ``answer_card_status`` (classification changed,
    on profiles that monitor it).
    """

    def __init__(self, surface: PageSurface, profile: PlatformProfile, notify: Notify):
        self.surface = surface
        self.profile = profile
        self.notify = notify
        self.last_url: Optional[str] = None
        self.last_fingerprint: Optional[str] = None
        self.last_card_status: Optional[str] = None

    def environment_fingerprint(self) -> str:
        name = page_meta.student_name(self.surface, _NAME_SELECTORS)
        if name == page_meta.DEFAULT_STUDENT:
            name = ""
        number = page_meta.question_no(self.surface) or page_meta.UNKNOWN

        match = _PROGRESS.search(self.surface.body_text())
        progress = match.group(1) if match else ""

        image_tail = ""
        images = self.surface.find_elements(_MAIN_IMAGE_SELECTOR)
        if images:
            src = self.surface.prop(images[0], "src") or self.surface.attribute(images[0], "src") or ""
            image_tail = src[-30:]

        return f"{name}|{number}|{progress}|{image_tail}"

    def poll(self) -> None:
        """One observation; safe to call at any cadence."""
        url = self.surface.url()
        if self.last_url is not None and url != self.last_url:
            logger.info(f"URL changed: {self.last_url} -> {url}")
            self.notify("url_changed", {"from": self.last_url, "to": url})
        self.last_url = url

        try:
            current = self.environment_fingerprint()
        except PageSurfaceError as e:
            logger.debug(f"Environment probe failed: {e}")
            return
        if self.last_fingerprint is not None and current != self.last_fingerprint:
            logger.info(f"Grading view changed ({self.last_fingerprint!r} -> {current!r})")
            self.notify("environment_changed", {"fingerprint": current})
        self.last_fingerprint = current

        if self.profile.monitors_answer_card:
            status = page_meta.answer_card_status(self.surface, self.profile)
            if status.status != self.last_card_status:
                self.last_card_status = status.status
                self.notify("answer_card_status", {"status": status.status, "message": status.message})
