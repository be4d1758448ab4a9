"""Platform profiles and the resolver that picks one for the current tab.

A profile is plain data: the ordered selector lists and the few per-platform
thresholds the generic locator, extractor and score writer consult. Unknown
hosts always resolve to the generic profile.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

import config
from services.page_surface import PageSurface
from utils.error_handler import PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

ZHIXUE = "ZHIXUE"
HAOFENSHU = "HAOFENSHU"
GENERIC = "GENERIC"


@dataclass(frozen=True)
class PlatformProfile:
    """Discovery and submission configuration for one grading platform."""
    id: str
    image_selectors: Tuple[str, ...]
    score_input_selectors: Tuple[str, ...]
    submit_selectors: Tuple[str, ...]
    keypad_selectors: Tuple[str, ...] = ()
    # Sources on these hosts are the platform's own answer-sheet store and rank first.
    trusted_source_patterns: Tuple[str, ...] = ()
    max_candidates: int = 3
    compress_threshold: int = 1_500_000
    detects_queue_empty: bool = False
    monitors_answer_card: bool = False
    prefers_text_submit: bool = False
    # The page unticks its auto-submit toggle after a manual submit.
    resets_auto_submit: bool = False
    # With no score input found, press the keypad even when too few digits were visible to detect it.
    keypad_last_resort: bool = False


def _merge(*lists: Tuple[str, ...]) -> Tuple[str, ...]:
    """Concatenates selector lists, keeping first occurrences only."""
    seen: Dict[str, None] = {}
    for selectors in lists:
        for sel in selectors:
            seen.setdefault(sel, None)
    return tuple(seen)


_GENERIC_IMAGES = (
    'canvas',
    'img[src^="blob:"]',
    'img',
    '.paper-image',
    '.answer-card',
)

_GENERIC_INPUTS = (
    'input[type="number"]',
    'input.score',
    'input.mark',
    'input[placeholder*="分"]',
    'input[placeholder*="score"]',
)

_GENERIC_SUBMITS = (
    'button[type="submit"]',
    '.submit-btn',
    '.btn-submit',
)

_ZHIXUE_IMAGES = (
    'div[name="topicImg"] img',
    'div[id^="topicImg"] img',
    '#topicImg0 img',
    '.paper-img-container img',
    '#paperImg',
    '.answer-sheet img',
    '.img-box img',
    '.img-view img',
    'image.svg-image',
    'svg image',
    '.svg-image',
    '.sy-image image',
    '.paper-viewer svg image',
    '.topic-img img',
    '.topic-content img',
    '.marking-area img',
    '.paper-wrapper img',
    '.answer-area img',
    '.stu-answer img',
    '.student-answer img',
    '[class*="topic"] img',
    '[class*="paper"] img',
    '[class*="answer"] img',
    '.mark-view img',
    '.mark-box img',
    '.marking-view img',
    '.marking-box img',
    '.paper-view img',
    '.paper-box img',
    '.question-view img',
    '.question-box img',
    '.grading-view img',
    '.grading-area img',
    '.left-panel img',
    '.right-panel img',
    '.answer-card-panel img',
    '.student-paper img',
    '.sheet-container img',
    '.el-image img',
    '.el-image-viewer__canvas img',
    '[class*="img-"] img',
    '[class*="image-"] img',
    '[class*="mark"] img',
    '[class*="question"] img',
    '[class*="grading"] img',
    '[class*="view"] img:not([width="32"])',
    '[class*="box"] img:not([height="32"])',
    '.paper-canvas',
    'canvas.marking-canvas',
    'canvas[class*="paper"]',
    'canvas[class*="mark"]',
    'canvas[class*="answer"]',
    'img[src*="blob"]',
    'img[src*="data:image"]',
    'img[src*="oss"]',
    'img[src*="cdn"]',
    'img[src*="paper"]',
    'img[src*="answer"]',
    'img[src*="zhixue"]',
)

_ZHIXUE_INPUTS = (
    'input[name="topicTxt"]',
    'input.topictxt_input',
    '#containter_topicTxt input',
    '.score_box input',
    '.score-input-box input',
    '.score-panel input',
    '.mark-score input',
    '.marking-score input',
    'input[class*="score"]',
    'input[class*="mark"]',
    'input[type="number"]',
    'input[type="tel"]',
    '.score-input',
    '.score-box input',
    '.postil-score input',
    '.mark-input',
)

_ZHIXUE_SUBMITS = (
    'button.el-button--success',
    '#containter_topicTxt button.el-button--success',
    '.score_box button.el-button--success',
    'button.el-button.right',
    '.next-btn',
    '.btn-next',
    '.same-topic-btn',
    '.same-question-btn',
    '.submit-score',
    '.btn-submit',
    '.score-submit',
    '.mark-submit',
    '.save-btn',
    '.confirm-btn',
    'button[title*="提交"]',
    'button[title*="确定"]',
    'button[title*="保存"]',
    'button[aria-label*="提交"]',
    'button[aria-label*="确定"]',
    '.score-panel button',
    '.mark-panel button',
    '.scoring-area button',
)

_HAOFENSHU_IMAGES = (
    'svg image[href*="yunxiao"]',
    'svg image[href*="yj-oss"]',
    'image[href*="yunxiao"]',
    'image[href*="yj-oss"]',
    'image.svg-image',
    'svg image',
    '#canvas_paper',
    '.mark-img-wrap img',
    '.stu-paper img',
    '.paper-img',
    'canvas',
    'img',
)

_HAOFENSHU_INPUTS = (
    'input.score-input.active',
    'input.score-input',
    'input.el-input__inner',
    'input[placeholder*="满分"]',
    'input[placeholder*="分"]',
    '#scoreInput',
    '.score-input',
    'input[type="number"]',
)

_HAOFENSHU_SUBMITS = (
    'a.save-answer',
    'button.submit-button',
    '.submit-auto button',
    '.submit-button',
    'button.el-button--primary.el-button--small',
    'button.el-button--primary',
    '.next-btn',
    '[class*="submit"]',
)

PROFILES: Dict[str, PlatformProfile] = {
    ZHIXUE: PlatformProfile(
        id=ZHIXUE,
        image_selectors=_merge(_ZHIXUE_IMAGES, _GENERIC_IMAGES),
        score_input_selectors=_merge(_ZHIXUE_INPUTS, _GENERIC_INPUTS),
        submit_selectors=_merge(_ZHIXUE_SUBMITS, _GENERIC_SUBMITS),
        keypad_selectors=('a[name="ratingPlatBtn"]',),
        # One answer sheet per cycle; merging more only costs CPU and upload size.
        max_candidates=1,
        compress_threshold=config.COMPRESS_THRESHOLD,
        detects_queue_empty=True,
        monitors_answer_card=True,
        resets_auto_submit=True,
        keypad_last_resort=True,
    ),
    HAOFENSHU: PlatformProfile(
        id=HAOFENSHU,
        image_selectors=_merge(_HAOFENSHU_IMAGES, _GENERIC_IMAGES),
        score_input_selectors=_merge(_HAOFENSHU_INPUTS, _GENERIC_INPUTS),
        submit_selectors=_merge(_HAOFENSHU_SUBMITS, _GENERIC_SUBMITS),
        keypad_selectors=('button.score-cell', '.el-button.score-cell', 'div.el-col.el-col-5'),
        trusted_source_patterns=("yunxiao", "yj-oss"),
        max_candidates=3,
        prefers_text_submit=True,
        resets_auto_submit=True,
    ),
    GENERIC: PlatformProfile(
        id=GENERIC,
        image_selectors=_GENERIC_IMAGES,
        score_input_selectors=_GENERIC_INPUTS,
        submit_selectors=_GENERIC_SUBMITS,
    ),
}

_HOST_RULES: Tuple[Tuple[str, str], ...] = (
    ("zhixue", ZHIXUE),
    ("haofenshu", HAOFENSHU),
    ("7net", HAOFENSHU),
    ("yunxiao", HAOFENSHU),
)

# Markup signatures for white-labelled deployments on unfamiliar hosts.
_MARKUP_RULES: Tuple[Tuple[str, str], ...] = (
    ('a[name="ratingPlatBtn"]', ZHIXUE),
    ('div[name="topicImg"]', ZHIXUE),
    ('button.score-cell', HAOFENSHU),
    ('a.save-answer', HAOFENSHU),
)


def get_profile(profile_id: str) -> PlatformProfile:
    return PROFILES.get(profile_id, PROFILES[GENERIC])


def resolve_profile(url: str, surface: Optional[PageSurface] = None) -> PlatformProfile:
    """Classifies the tab into exactly one platform profile.

    Args:
        url: Address of the top-level document.
        surface: When given, markup probes are used for hosts the address alone does not identify.

    Returns:
        The matching profile; the generic profile when nothing matches.
    """
    host = (urlparse(url).hostname or "").lower()
    for needle, profile_id in _HOST_RULES:
        if needle in host:
            return PROFILES[profile_id]

    if surface is not None:
        for selector, profile_id in _MARKUP_RULES:
            try:
                if surface.find_elements(selector):
                    logger.debug(f"Host {host!r} matched {profile_id} by markup signature {selector!r}")
                    return PROFILES[profile_id]
            except PageSurfaceError as e:
                logger.debug(f"Markup probe {selector!r} failed: {e}")

    return PROFILES[GENERIC]
