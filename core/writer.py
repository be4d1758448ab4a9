"""Score writer: enters a score into the host page's own scoring control and submits it.

Two independent strategies run in priority order. The keypad strategy
presses a numeric button and polls for the page to accept it; the text
strategy writes an input through the native value setter and submits with
Enter and/or a submit control. Every failure is returned as a WriteOutcome,
never raised.
"""

import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

import config
from core import pacing
from core.profiles import PlatformProfile
from services.page_surface import ElementRef, PageSurface
from utils.error_handler import PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

STRATEGY_KEYPAD = "keypad"
STRATEGY_TEXT = "text"
NO_INPUT_ERROR = "No visible score input"

_KEYPAD_DIGIT = re.compile(r"^(\d|10)$")
_KEYPAD_PROBE_SELECTOR = 'a[name="ratingPlatBtn"], li, span, div, button'
_KEYPAD_BUTTON_SELECTORS = (
    "button.score-cell, .el-button.score-cell",
    'a[name="ratingPlatBtn"]',
    "div.el-col.el-col-5, .el-col-5",
)
_KEYPAD_GENERIC_SELECTOR = "li, span, div, button, a"
_KEYPAD_CLEAR_ID = "bnt_clear"

_ACCEPTED_INPUT_SELECTOR = 'input[type="text"], input[type="number"], input.el-input__inner'
_SELECTED_CELL_SELECTOR = ".score-cell.is-active, .score-cell.active, .score-cell.selected, button.is-active"
_SCORE_DISPLAY_SELECTOR = '.score-display, .current-score, [class*="score-value"]'

_KEYPAD_SUBMIT_SELECTORS = ("a.save-answer", "button.submit-button, .el-button.submit-button")
_KEYPAD_SUBMIT_FALLBACK = (
    'button.submit, .btn-submit, button[type="submit"], '
    ".el-button--primary, .el-button--success, "
    '[class*="submit"], [class*="confirm"]'
)
_KEYPAD_SUBMIT_WORDS = ("提交", "保存", "确认")

_NON_TEXT_INPUTS = ("checkbox", "radio", "hidden", "button", "submit")
_HEURISTIC_INPUT_SELECTOR = 'input[type="text"], input[type="number"], input[type="tel"], input:not([type])'
_CLICKABLE_SELECTOR = 'button, a, div[role="button"], span[role="button"], span.btn, span[class*="btn"]'
_SUBMIT_WORDS = ("提交", "保存", "确定", "下一", "同题", "完成", "跳过")
_CHECK_MARKS = ("✓", "✔")
_CHECK_MARKERS = ("check", "tick", "polyline")
_CHECK_NEARBY_SELECTOR = "svg, i, span, button, div"
_CHECK_GLOBAL_SELECTOR = (
    '[class*="check"], [class*="confirm"], [class*="ok"], '
    "button svg, div svg, span svg, "
    ".el-icon-check, .anticon-check, .icon-check, .icon-ok"
)

_AUTO_SWITCH_SELECTOR = '.el-switch, .switch-container, [role="switch"]'
_AUTO_LABEL_SELECTOR = "label.el-checkbox, label.ant-checkbox-wrapper, label"
_AUTO_TEXT_SELECTOR = '.auto-submit, [class*="auto-submit"]'
_AUTO_ICON_IN_PARENT = 'a.choice_select, a.choice_selected, .el-icon-check, a[class*="choice"]'
_AUTO_ICON_SELECTOR = '.el-icon-check, a[class*="icon-check"], a[class*="choice"]'
_AUTO_ICON_SELECTED = ("choice_selected", "selected", "checked")
_AUTO_CHECKBOX_WORDS = ("自动提交", "自动保存", "自动确认", "自动跳转", "下一题", "下一张")
_AUTO_SUBMIT = "自动提交"

_ENTER = {"key": "Enter", "code": "Enter", "keyCode": 13, "which": 13}


@dataclass
class WriteOptions:
    auto_submit: bool = True
    submit_mode: str = pacing.SUBMIT_ENTER


@dataclass
class WriteOutcome:
    success: bool
    strategy: Optional[str] = None
    # How acceptance was observed: "navigation", "input", "selected", "display" or None.
    confirmation: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def terminal(self) -> bool:
        return self.cancelled


def keypad_value(score: float) -> int:
    """Rounds half up, the way the page's own keypad labels are chosen."""
    return int(math.floor(float(score) + 0.5))


def format_score(score: float) -> str:
    score = float(score)
    return str(int(score)) if score.is_integer() else f"{score:g}"


class ScoreWriter:
    """Writes scores into one page. Stateless apart from the surface it drives."""

    def __init__(self, surface: PageSurface):
        self.surface = surface

    # --- small helpers ---

    def _rendered(self, element: ElementRef) -> bool:
        try:
            return self.surface.is_rendered(element)
        except PageSurfaceError:
            return False

    def _first_rendered(self, selector: str) -> Optional[ElementRef]:
        for element in self.surface.find_elements(selector):
            if self._rendered(element):
                return element
        return None

    def _text(self, element: Optional[ElementRef]) -> str:
        if element is None:
            return ""
        try:
            return self.surface.text(element)
        except PageSurfaceError:
            return ""

    def _has_class(self, element: ElementRef, names: Iterable[str]) -> bool:
        classes = set(self.surface.classes(element))
        return any(name in classes for name in names)

    def press(self, element: ElementRef) -> None:
        """Realistic press sequence: mousedown, click, mouseup, change."""
        self.surface.dispatch_event(element, "mousedown", "MouseEvent")
        self.surface.click(element)
        self.surface.dispatch_event(element, "mouseup", "MouseEvent")
        self.surface.dispatch_event(element, "change")

    # --- auto-submit toggle ---

    def ensure_auto_submit(self) -> bool:
        """Turns the page's "auto-submit" toggle on if one exists.

        Tried in order: a labelled switch, a labelled checkbox, an icon toggle
        next to "自动提交" text, then any visible checkbox whose surroundings
        mention auto-submission.

        Returns:
            True when a toggle was found (whether or not it needed enabling).
        """
        try:
            return (self._auto_switch() or self._auto_label() or self._auto_icon()
                    or self._auto_checkbox())
        except PageSurfaceError as e:
            logger.warning(f"Auto-submit toggle check failed: {e}", exc_info=config.DEBUG)
            return False

    def _auto_switch(self) -> bool:
        for switch in self.surface.find_elements(_AUTO_SWITCH_SELECTOR):
            if "自动" not in self._text(switch) and "自动" not in self._text(self.surface.parent(switch)):
                continue
            active = (self._has_class(switch, ("is-checked",))
                      or self.surface.attribute(switch, "aria-checked") == "true")
            if not active:
                logger.info("Auto-submit switch is off, switching it on.")
                self.surface.click(switch)
            return True
        return False

    def _auto_label(self) -> bool:
        for label in self.surface.find_elements(_AUTO_LABEL_SELECTOR):
            if _AUTO_SUBMIT not in self._text(label):
                continue
            checked = (self._has_class(label, ("is-checked",))
                       or self.surface.find_within(label, ".is-checked")
                       or self.surface.find_within(label, "input:checked"))
            if not checked:
                logger.info("Auto-submit checkbox is unticked, ticking it.")
                inputs = self.surface.find_within(label, "input")
                self.surface.click(inputs[0] if inputs else label)
            return True
        return False

    def _find_auto_icon(self) -> Optional[ElementRef]:
        for text_el in self.surface.find_elements(_AUTO_TEXT_SELECTOR):
            if _AUTO_SUBMIT not in self._text(text_el):
                continue
            parent = self.surface.parent(text_el)
            if parent is not None:
                icons = self.surface.find_within(parent, _AUTO_ICON_IN_PARENT)
                if icons:
                    return icons[0]

        for icon in self.surface.find_elements(_AUTO_ICON_SELECTOR):
            if not self._rendered(icon):
                continue
            if _AUTO_SUBMIT in self._text(self.surface.parent(icon)):
                return icon
            if _AUTO_SUBMIT in self._text(self.surface.next_sibling(icon)):
                return icon
        return None

    def _auto_icon(self) -> bool:
        icon = self._find_auto_icon()
        if icon is None:
            return False
        if not self._has_class(icon, _AUTO_ICON_SELECTED):
            logger.info("Auto-submit icon is unticked, clicking it.")
            self.surface.click(icon)
        return True

    def _checkbox_context(self, checkbox: ElementRef) -> str:
        parts = [self._text(checkbox)]
        node = checkbox
        # Two levels keep page-wide text out of the match.
        for _ in range(2):
            node = self.surface.parent(node)
            if node is None:
                break
            parts.append(self._text(node))
        parts.append(self._text(self.surface.previous_sibling(checkbox)))
        parts.append(self._text(self.surface.next_sibling(checkbox)))
        checkbox_id = self.surface.attribute(checkbox, "id")
        if checkbox_id:
            parts.extend(self.surface.texts(f'label[for="{checkbox_id}"]'))
        return " ".join(parts)

    def _auto_checkbox(self) -> bool:
        for checkbox in self.surface.find_elements('input[type="checkbox"]'):
            if not self._rendered(checkbox):
                continue
            if not any(word in self._checkbox_context(checkbox) for word in _AUTO_CHECKBOX_WORDS):
                continue
            if not self.surface.prop(checkbox, "checked"):
                logger.info("Auto-submit style checkbox is unticked, ticking it.")
                self.surface.click(checkbox)
                self.surface.dispatch_event(checkbox, "change")
                self.surface.dispatch_event(checkbox, "input")
            return True
        return False

    # --- keypad strategy ---

    def has_keypad(self) -> bool:
        """True when at least a few visible elements read as a bare digit 0-10."""
        digits = [t for t in self.surface.texts(_KEYPAD_PROBE_SELECTOR, rendered_only=True) if _KEYPAD_DIGIT.match(t)]
        return len(digits) >= config.KEYPAD_MIN_BUTTONS

    def find_keypad_button(self, value: int, profile: PlatformProfile) -> Optional[ElementRef]:
        wanted = str(value)
        selectors: List[str] = list(dict.fromkeys(profile.keypad_selectors + _KEYPAD_BUTTON_SELECTORS))
        for selector in selectors:
            for button in self.surface.find_elements(selector):
                if self.surface.attribute(button, "id") == _KEYPAD_CLEAR_ID:
                    continue
                if self._text(button) == wanted and self._rendered(button):
                    logger.debug(f"Keypad button [{wanted}] found via {selector!r}")
                    return button

        for element in self.surface.find_elements(_KEYPAD_GENERIC_SELECTOR):
            if self._text(element) != wanted or not self._rendered(element):
                continue
            size = self.surface.measure(element)
            if 20 <= size.width <= 100 and 20 <= size.height <= 100:
                logger.debug(f"Keypad button [{wanted}] found by text scan")
                return element
        return None

    def score_accepted(self, value: int, before_url: str) -> Optional[str]:
        """How the page shows it took the keypad press, or None if it has not yet."""
        if self.surface.url() != before_url:
            return "navigation"
        wanted = str(value)
        for field in self.surface.find_elements(_ACCEPTED_INPUT_SELECTOR):
            current = str(self.surface.prop(field, "value") or "").strip()
            if current and (current == wanted or wanted in current):
                return "input"
        if self.surface.find_elements(_SELECTED_CELL_SELECTOR):
            return "selected"
        for text in self.surface.texts(_SCORE_DISPLAY_SELECTOR):
            if wanted in text:
                return "display"
        return None

    def click_keypad_submit(self) -> bool:
        for selector in _KEYPAD_SUBMIT_SELECTORS:
            button = self._first_rendered(selector)
            if button is not None:
                logger.info(f"Clicking submit control {selector!r}")
                self.surface.click(button)
                return True
        for button in self.surface.find_elements(_KEYPAD_SUBMIT_FALLBACK):
            if self._rendered(button) and any(w in self._text(button) for w in _KEYPAD_SUBMIT_WORDS):
                logger.info(f"Clicking submit control labelled {self._text(button)!r}")
                self.surface.click(button)
                return True
        return False

    def keypad_strategy(self, score: float, profile: PlatformProfile, options: WriteOptions) -> WriteOutcome:
        value = keypad_value(score)
        button = self.find_keypad_button(value, profile)
        if button is None:
            return WriteOutcome(False, STRATEGY_KEYPAD, error=f"No keypad button for {value}")

        before_url = self.surface.url()
        self.press(button)
        logger.info(f"Pressed keypad button [{value}], waiting for the page to accept it")

        self.surface.sleep(config.KEYPAD_FIRST_POLL)
        confirmation = None
        for poll in range(1, config.KEYPAD_MAX_POLLS + 1):
            confirmation = self.score_accepted(value, before_url)
            if confirmation == "navigation":
                return WriteOutcome(True, STRATEGY_KEYPAD, confirmation)
            if confirmation:
                logger.debug(f"Score accepted ({confirmation}) after {poll} poll(s)")
                break
            if poll < config.KEYPAD_MAX_POLLS:
                self.surface.sleep(config.KEYPAD_POLL_INTERVAL)
        else:
            logger.warning("Keypad press not confirmed within the polling window, submitting anyway.")

        if not options.auto_submit:
            return WriteOutcome(True, STRATEGY_KEYPAD, confirmation)

        delay = config.PRE_SUBMIT_DELAY
        if options.submit_mode == pacing.SUBMIT_DELAYED_CLICK:
            delay += config.DELAYED_CLICK_EXTRA
        self.surface.sleep(delay)
        if self.surface.url() != before_url:
            return WriteOutcome(True, STRATEGY_KEYPAD, "navigation")

        if self.click_keypad_submit():
            # Some platforms untick auto-submit after a manual submit.
            self.surface.sleep(config.POST_SUBMIT_RECHECK)
            if profile.resets_auto_submit:
                self.ensure_auto_submit()
        return WriteOutcome(True, STRATEGY_KEYPAD, confirmation)

    # --- text-input strategy ---

    def find_score_input(self, profile: PlatformProfile) -> Optional[ElementRef]:
        """Profile selectors first, then the focused input, then a small visible input."""
        for selector in profile.score_input_selectors:
            for element in self.surface.find_elements(selector):
                if self.surface.attribute(element, "type") in _NON_TEXT_INPUTS or not self._rendered(element):
                    continue
                logger.debug(f"Score input found via {selector!r}")
                return element

        active = self.surface.active_element()
        if active is not None and self.surface.tag_name(active) == "input":
            logger.debug("Using the focused input as score input")
            return active

        plausible = []
        for field in self.surface.find_elements(_HEURISTIC_INPUT_SELECTOR):
            if not self._rendered(field):
                continue
            size = self.surface.measure(field)
            if 20 < size.width < 250 and 15 < size.height < 60:
                plausible.append(field)
        for field in plausible:
            if "分" in (self.surface.attribute(field, "placeholder") or ""):
                return field
        return plausible[0] if plausible else None

    def _looks_like_check(self, element: ElementRef) -> bool:
        text = self._text(element)
        if text in _CHECK_MARKS:
            return True
        class_name = " ".join(self.surface.classes(element)).lower()
        if any(marker in class_name for marker in ("check", "confirm", "ok")):
            return True
        html = self.surface.outer_html(element).lower()
        return any(marker in html for marker in _CHECK_MARKERS)

    def find_check_button(self, field: ElementRef) -> Optional[ElementRef]:
        """A tick/confirm control next to the score input, else anywhere on the page."""
        container = self.surface.closest(field, "div, td, span, form")
        if container is not None:
            for element in self.surface.find_within(container, _CHECK_NEARBY_SELECTOR):
                if self._looks_like_check(element) and self._rendered(element):
                    return element

        for element in self.surface.find_elements(_CHECK_GLOBAL_SELECTOR):
            # Skip auto-submit toggles.
            if any("choice" in c or "checkbox" in c for c in self.surface.classes(element)):
                continue
            if not self._rendered(element):
                continue
            html = self.surface.outer_html(element).lower()
            if any(marker in html for marker in _CHECK_MARKERS):
                return self.surface.closest(element, 'button, div[role="button"], span[role="button"], a') or element
        return None

    def click_submit_control(self, profile: PlatformProfile) -> bool:
        """Profile submit selectors first, then free-text matching on clickable elements."""
        for selector in profile.submit_selectors:
            button = self._first_rendered(selector)
            if button is not None:
                logger.info(f"Clicking submit control {selector!r}")
                self.surface.click(button)
                return True

        for element in self.surface.find_elements(_CLICKABLE_SELECTOR):
            if not self._rendered(element):
                continue
            text = self._text(element)
            if text in _CHECK_MARKS or any(word in text for word in _SUBMIT_WORDS):
                logger.info(f"Clicking submit control labelled {text!r}")
                self.surface.click(element)
                return True
        return False

    def _click_text_submit(self, profile: PlatformProfile) -> bool:
        for element in self.surface.find_elements('button, a, div[role="button"], span[role="button"]'):
            if self._rendered(element) and "提交" in self._text(element):
                logger.info(f"Clicking submit button {self._text(element)!r}")
                self.surface.click(element)
                return True
        return self.click_submit_control(profile)

    def press_enter(self, field: ElementRef) -> None:
        self.surface.focus(field)
        for event_type in ("keydown", "keypress", "keyup"):
            self.surface.dispatch_event(field, event_type, "KeyboardEvent", _ENTER)

    def _submit_by_click(self, field: ElementRef, profile: PlatformProfile) -> bool:
        if profile.prefers_text_submit and self._click_text_submit(profile):
            return True
        check = self.find_check_button(field)
        if check is not None:
            logger.info("Clicking the tick next to the score input")
            self.surface.click(check)
            return True
        self.surface.dispatch_event(field, "blur")
        return self.click_submit_control(profile)

    def text_strategy(self, score: float, profile: PlatformProfile, options: WriteOptions) -> WriteOutcome:
        field = self.find_score_input(profile)
        if field is None:
            return WriteOutcome(False, STRATEGY_TEXT, error=NO_INPUT_ERROR)

        text = format_score(score)
        self.surface.set_native_value(field, text)
        self.surface.focus(field)
        self.surface.dispatch_event(field, "input")
        self.surface.dispatch_event(field, "change")

        written = str(self.surface.prop(field, "value") or "").strip()
        confirmation = "input" if written == text else None
        if confirmation is None:
            logger.warning(f"Score input reads {written!r} after writing {text!r}; the page may have rejected it.")
        if not options.auto_submit:
            return WriteOutcome(True, STRATEGY_TEXT, confirmation)

        before_url = self.surface.url()
        mode = options.submit_mode
        if mode != pacing.SUBMIT_CLICK:
            self.press_enter(field)

        if mode in (pacing.SUBMIT_CLICK, pacing.SUBMIT_BOTH):
            delay = config.PRE_SUBMIT_DELAY
        elif mode == pacing.SUBMIT_DELAYED_CLICK:
            delay = config.TEXT_SUBMIT_DELAY + config.DELAYED_CLICK_EXTRA
        else:
            delay = config.TEXT_SUBMIT_DELAY
        self.surface.sleep(delay)

        if self.surface.url() != before_url:
            return WriteOutcome(True, STRATEGY_TEXT, "navigation")
        if not self._submit_by_click(field, profile):
            logger.warning("No submit control found after writing the score.")
        return WriteOutcome(True, STRATEGY_TEXT, confirmation)

    # --- entry points ---

    def write(self, score: float, profile: PlatformProfile, options: Optional[WriteOptions] = None) -> WriteOutcome:
        """Enters ``score`` with the keypad when one is showing, else via the score input."""
        options = options or WriteOptions()
        try:
            self.ensure_auto_submit()

            keypad_shown = self.has_keypad()
            if keypad_shown:
                outcome = self.keypad_strategy(score, profile, options)
                if outcome.success:
                    return outcome
                logger.info(f"Keypad strategy failed ({outcome.error}), falling back to the score input")

            outcome = self.text_strategy(score, profile, options)
            if outcome.error == NO_INPUT_ERROR and not keypad_shown and profile.keypad_last_resort:
                logger.info("No score input found, trying the keypad as a last resort")
                outcome = self.keypad_strategy(score, profile, options)
            if outcome.success:
                logger.info(f"Score {format_score(score)} written on {profile.id} via {outcome.strategy}")
            return outcome
        except PageSurfaceError as e:
            logger.warning(f"Writing score failed: {e}", exc_info=config.DEBUG)
            return WriteOutcome(False, error=f"Page interaction failed: {e}")

    def confirm(self, score: float, profile: PlatformProfile) -> WriteOutcome:
        """Assisted-mode confirmation: make sure auto-submit is on, then press the keypad."""
        try:
            self.ensure_auto_submit()
            return self.keypad_strategy(score, profile, WriteOptions())
        except PageSurfaceError as e:
            logger.warning(f"Confirming score failed: {e}", exc_info=config.DEBUG)
            return WriteOutcome(False, STRATEGY_KEYPAD, error=f"Page interaction failed: {e}")
