"""Page metadata: which paper, question and student the current view belongs to.

Also hosts the two platform probes the loop and the host controller consult
besides the answer sheet itself: queue-empty detection and answer-card
status classification.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

from core.profiles import PlatformProfile
from services.page_surface import PageSurface
from utils.error_handler import PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

UNKNOWN = "unknown"
DEFAULT_STUDENT = "未知学生"

_QUESTION_PATTERNS = (
    re.compile(r"第\s*(\d+)\s*题"),                                   # 第24题
    re.compile(r"^(\d+)\s*[\.．。]\s*[（(]\s*\d+\s*分\s*[）)]"),        # 24. (11分)
    re.compile(r"^第?\s*(\d+)\s*题?$"),                                # 24 / 第24
)

_PAPER_ID_KEYS = ("markingPaperId", "paperId", "id")
_QUESTION_URL_KEYS = ("questionNo", "qno", "questionId")

_TITLE_SELECTORS = (
    ".question-title", ".topic-title", ".paper-title",
    "h1", "h2", "h3", ".title", '[class*="question"]',
)
_STUDENT_SELECTORS = (".student-info .name", ".stu-name", ".username", "#stuName", 'span[title*="姓名"]')

QUEUE_EMPTY_KEYWORDS = (
    "无待阅", "没有待阅", "暂无试卷", "暂无待阅",
    "批阅完成", "批改完成", "阅卷完成", "任务完成", "任务结束",
    "已全部批阅", "全部批完", "当前无试卷", "无试卷",
    "请选择试卷", "请先选择", "暂无数据", "无数据",
)
_EMPTY_TEXT_SELECTOR = (
    ".empty-text, .no-data, .empty-tip, .empty-content, "
    '[class*="empty"], [class*="no-paper"], [class*="finished"], '
    ".el-empty__description, .ant-empty-description, "
    ".message-tip, .tip-text, .notice-content"
)
_EMPTY_ICON_SELECTOR = '.el-empty, .ant-empty, [class*="empty-icon"], [class*="no-data"]'
_DIALOG_SELECTOR = '.el-dialog, .el-message-box, .ant-modal, .modal, [role="dialog"]'

# Answer-card status values.
CARD_READY = "ready"
CARD_LOADING = "loading"
CARD_NEED_REFRESH = "needRefresh"
CARD_NO_IMAGE = "noImage"
CARD_UNKNOWN = "unknown"

REFRESH_KEYWORDS = (
    "请刷新", "刷新页面", "刷新后重试", "重新加载",
    "点击刷新", "网络异常", "加载失败", "请稍后再试",
    "获取失败", "数据异常", "连接超时", "超时",
)
_LOADING_SELECTOR = (
    '.el-loading, .ant-spin, [class*="loading"], [class*="spinner"], '
    ".is-loading, .loading-mask, .loading-wrapper"
)
_ERROR_SELECTOR = (
    '.error-text, .error-message, .error-tip, [class*="error"], '
    '.warning-text, [class*="warning"], .el-message--error, .ant-message-error'
)
_CARD_IMAGE_SELECTORS = (
    ".answer-card img", ".paper-img img", '[class*="answer"] img',
    ".mark-area img", ".scoring-area img", ".paper-view img",
    'canvas[class*="paper"]', 'canvas[class*="answer"]',
    ".student-answer img", '[class*="student"] img',
)
_CARD_CONTAINER_SELECTOR = (
    '.answer-card, .paper-container, [class*="answer-card"], '
    '[class*="paper-view"], .mark-container, .scoring-container'
)


@dataclass
class PageMeta:
    platform: str
    marking_paper_id: Optional[str]
    question_no: Optional[str]

    @property
    def question_key(self) -> str:
        return question_key(self.platform, self.marking_paper_id, self.question_no)

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "markingPaperId": self.marking_paper_id,
            "questionNo": self.question_no,
            "questionKey": self.question_key,
        }


@dataclass
class CardStatus:
    status: str
    message: str


def question_key(platform: str, paper_id: Optional[str], question_no: Optional[str]) -> str:
    return ":".join([platform, paper_id or UNKNOWN, question_no or UNKNOWN])


def question_no_from_text(text: Optional[str]) -> Optional[str]:
    """Question number from labels like ``第24题``, ``24. (11分)`` or a bare ``24``."""
    if not text:
        return None
    text = str(text).strip()
    for pattern in _QUESTION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _first_param(params: dict, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        values = params.get(key)
        if values and values[0]:
            return values[0]
    return None


def marking_paper_id(url: str) -> Optional[str]:
    """Paper id from the query string, or from the query embedded in a hash route (``#/x/?paperId=..``)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    direct = _first_param(parse_qs(parsed.query), _PAPER_ID_KEYS)
    if direct:
        return direct
    _, sep, hash_query = parsed.fragment.partition("?")
    if sep:
        return _first_param(parse_qs(hash_query), _PAPER_ID_KEYS)
    return None


def question_no(surface: PageSurface) -> Optional[str]:
    """Best guess of the question being marked.

    Sources, highest priority first: the selected option of a dropdown, the
    dropdown's display text, question title elements, the first short generic
    text node, then ``questionNo``/``qno``/``questionId`` URL parameters.
    """
    found: List[tuple] = []

    for dropdown in surface.find_elements('select, .dropdown, [class*="select"]'):
        try:
            if surface.tag_name(dropdown) == "select":
                options = surface.find_within(dropdown, "option:checked") or surface.find_within(dropdown, "option")[:1]
                for option in options:
                    number = question_no_from_text(surface.text(option) or surface.attribute(option, "value"))
                    if number:
                        found.append((1, number))
            number = question_no_from_text(surface.text(dropdown))
            if number:
                found.append((2, number))
        except PageSurfaceError as e:
            logger.debug(f"Dropdown probe failed: {e}")

    for selector in _TITLE_SELECTORS:
        for text in surface.texts(selector):
            number = question_no_from_text(text[:50])
            if number:
                found.append((3, number))

    for text in surface.texts("a, span, div, button"):
        if not text or len(text) > 30:
            continue
        number = question_no_from_text(text)
        if number:
            found.append((4, number))
            break

    params = parse_qs(urlparse(surface.url()).query)
    from_url = _first_param(params, _QUESTION_URL_KEYS)
    if from_url and from_url.isdigit():
        found.append((5, from_url))

    if not found:
        return None
    found.sort(key=lambda item: item[0])
    logger.debug(f"Question number candidates: {found[:5]}")
    return found[0][1]


def page_meta(surface: PageSurface, profile: PlatformProfile, pinned_question: Optional[str] = None) -> PageMeta:
    """Platform, paper and question identifiers; a pinned question number replaces the detected one."""
    url = surface.url()
    try:
        detected = question_no(surface)
    except PageSurfaceError as e:
        logger.warning(f"Question number detection failed: {e}")
        detected = None
    return PageMeta(
        platform=profile.id,
        marking_paper_id=marking_paper_id(url),
        question_no=pinned_question or detected,
    )


def student_name(surface: PageSurface, selectors: Iterable[str] = _STUDENT_SELECTORS) -> str:
    for selector in selectors:
        for text in surface.texts(selector)[:1]:
            if text:
                return text
    return DEFAULT_STUDENT


def _has_keyword(text: str, keywords: Iterable[str]) -> bool:
    return bool(text) and any(kw in text for kw in keywords)


def queue_empty_message(surface: PageSurface, profile: PlatformProfile) -> Optional[str]:
    """The platform's "nothing left to mark" notice, if one is showing.

    Only profiles flagged ``detects_queue_empty`` are probed; elsewhere this is always None.
    """
    if not profile.detects_queue_empty:
        return None

    for text in surface.texts(_EMPTY_TEXT_SELECTOR):
        if _has_keyword(text, QUEUE_EMPTY_KEYWORDS):
            return text

    for icon in surface.find_elements(_EMPTY_ICON_SELECTOR):
        try:
            container = surface.closest(icon, "div, section, article") or surface.parent(icon)
            text = surface.text(container) if container is not None else ""
        except PageSurfaceError:
            continue
        if _has_keyword(text, QUEUE_EMPTY_KEYWORDS):
            return text

    for text in surface.texts(_DIALOG_SELECTOR):
        if _has_keyword(text, QUEUE_EMPTY_KEYWORDS):
            return text
    return None


def _rendered(surface: PageSurface, element) -> bool:
    try:
        return surface.is_rendered(element)
    except PageSurfaceError:
        return False


def _is_card_image(surface: PageSurface, element) -> bool:
    tag = surface.tag_name(element)
    if tag == "img":
        src = surface.prop(element, "src") or surface.attribute(element, "src") or ""
        return bool(src) and "data:image/gif" not in src
    if tag == "canvas":
        try:
            width = float(surface.prop(element, "width") or 0)
            height = float(surface.prop(element, "height") or 0)
        except (TypeError, ValueError):
            return False
        return width > 100 and height > 100
    return False


def answer_card_status(surface: PageSurface, profile: PlatformProfile) -> CardStatus:
    """Classifies the answer-card area as ready, loading, needing a refresh, empty or unknown."""
    if not profile.monitors_answer_card:
        return CardStatus(CARD_UNKNOWN, "Answer-card monitoring not available on this platform")

    if any(_rendered(surface, el) for el in surface.find_elements(_LOADING_SELECTOR)):
        return CardStatus(CARD_LOADING, "Answer card is loading")

    for text in surface.texts(_ERROR_SELECTOR):
        if _has_keyword(text, REFRESH_KEYWORDS):
            return CardStatus(CARD_NEED_REFRESH, "Answer card needs a refresh (F5)")

    found_image = False
    for selector in _CARD_IMAGE_SELECTORS:
        for element in surface.find_elements(selector):
            try:
                if _rendered(surface, element) and _is_card_image(surface, element):
                    found_image = True
                    break
            except PageSurfaceError:
                continue
        if found_image:
            break

    empty_container = False
    for container in surface.find_elements(_CARD_CONTAINER_SELECTOR):
        if _rendered(surface, container) and not surface.find_within(container, "img, canvas"):
            empty_container = True

    if _has_keyword(surface.body_text(), REFRESH_KEYWORDS):
        for element in surface.find_elements('[class*="error"]:not([hidden])'):
            if _rendered(surface, element) and 0 < len(surface.text(element)) < 100:
                return CardStatus(CARD_NEED_REFRESH, "Page reported an error, refresh and retry")

    if found_image:
        return CardStatus(CARD_READY, "Answer card loaded")
    if empty_container:
        return CardStatus(CARD_NO_IMAGE, "No answer-card image found, check or refresh the page")
    return CardStatus(CARD_UNKNOWN, "Answer-card state could not be determined")
