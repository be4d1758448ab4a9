import pytest

import config
from core import pacing
from core.profiles import GENERIC, HAOFENSHU, PROFILES, ZHIXUE
from core.writer import (
    STRATEGY_KEYPAD, STRATEGY_TEXT, ScoreWriter, WriteOptions, format_score, keypad_value,
)
from utils.error_handler import PageSurfaceError
from fake_page import HAOFENSHU_URL, ZHIXUE_URL, FakePage

KEYPAD = "".join(f'<li><a name="ratingPlatBtn" id="k{n}">{n}</a></li>' for n in range(11))

ZHIXUE_PANEL = f"""
<div class="score-panel">
  <label class="el-checkbox"><input type="checkbox" id="auto"> 自动提交</label>
  <ul class="keypad">{KEYPAD}<li><a name="ratingPlatBtn" id="bnt_clear">清空</a></li></ul>
  <input type="text" class="score-input" id="score" value="">
  <button class="el-button--success" id="submit">提交</button>
</div>
"""

TEXT_ONLY = """
<input type="number" id="score" data-w="60" data-h="30">
<button type="submit" id="go">确定</button>
"""


def echo_into_score_input(page, button):
    page.one("#score")["value"] = page.text(button)


def clicked_ids(page):
    return [el.get("id") for el in page.clicks]


@pytest.mark.parametrize("score,expected", [(7, 7), (6.5, 7), (6.49, 6), (0.5, 1), (0, 0), (10, 10)])
def test_keypad_value_rounds_half_up(score, expected):
    assert keypad_value(score) == expected


@pytest.mark.parametrize("score,expected", [(8, "8"), (8.0, "8"), (8.5, "8.5"), (0.25, "0.25")])
def test_format_score(score, expected):
    assert format_score(score) == expected


# --- keypad strategy ---

def test_keypad_press_is_confirmed_then_submitted():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)
    page.click_handlers["k7"] = echo_into_score_input

    outcome = ScoreWriter(page).write(7, PROFILES[ZHIXUE])

    assert (outcome.success, outcome.strategy, outcome.confirmation) == (True, STRATEGY_KEYPAD, "input")
    assert page.one("#score")["value"] == "7"
    assert page.events_of(page.one("#k7")) == ["mousedown", "mouseup", "change"]
    # auto-submit ticked first, then the key, then the submit control
    assert clicked_ids(page) == ["auto", "k7", "submit"]
    assert page.one("#auto").has_attr("checked")


def test_keypad_navigation_ends_the_write_immediately():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)
    page.click_handlers["k9"] = lambda p, _: p.navigate(ZHIXUE_URL + "&next=1")

    outcome = ScoreWriter(page).write(9, PROFILES[ZHIXUE])

    assert outcome.success and outcome.confirmation == "navigation"
    assert "submit" not in clicked_ids(page)
    assert page.sleeps == [config.KEYPAD_FIRST_POLL]


def test_keypad_submits_anyway_after_polling_window():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)
    page.one("#auto")["checked"] = ""
    writer = ScoreWriter(page)

    outcome = writer.keypad_strategy(3, PROFILES[ZHIXUE], WriteOptions())

    assert outcome.success and outcome.confirmation is None
    assert clicked_ids(page) == ["k3", "submit"]
    polls = [s for s in page.sleeps if s == config.KEYPAD_POLL_INTERVAL]
    assert len(polls) == config.KEYPAD_MAX_POLLS - 1


def test_keypad_delayed_click_waits_longer():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)
    page.click_handlers["k4"] = echo_into_score_input

    ScoreWriter(page).keypad_strategy(4, PROFILES[ZHIXUE], WriteOptions(submit_mode=pacing.SUBMIT_DELAYED_CLICK))

    assert config.PRE_SUBMIT_DELAY + config.DELAYED_CLICK_EXTRA in page.sleeps


def test_keypad_without_auto_submit_only_presses():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)
    page.click_handlers["k5"] = echo_into_score_input

    outcome = ScoreWriter(page).keypad_strategy(5, PROFILES[ZHIXUE], WriteOptions(auto_submit=False))

    assert outcome.success
    assert clicked_ids(page) == ["k5"]


def test_clear_button_is_never_pressed():
    page = FakePage('<a name="ratingPlatBtn" id="bnt_clear">3</a><a name="ratingPlatBtn" id="k3">3</a>',
                    url=ZHIXUE_URL)
    button = ScoreWriter(page).find_keypad_button(3, PROFILES[ZHIXUE])
    assert button.get("id") == "k3"


def test_generic_keypad_scan_requires_button_sized_elements():
    page = FakePage('<span id="tiny" data-w="10" data-h="10">5</span>'
                    '<span id="cell" data-w="40" data-h="40">5</span>')
    button = ScoreWriter(page).find_keypad_button(5, PROFILES[GENERIC])
    assert button.get("id") == "cell"


def test_haofenshu_score_cells_and_save_link():
    cells = "".join(f'<button class="score-cell" id="c{n}">{n}</button>' for n in range(11))
    page = FakePage(f'<div>{cells}</div><a class="save-answer" id="save">保存</a>', url=HAOFENSHU_URL)

    def select(p, button):
        button["class"] = ["score-cell", "is-active"]
    page.click_handlers["c6"] = select

    outcome = ScoreWriter(page).keypad_strategy(6, PROFILES[HAOFENSHU], WriteOptions())

    assert outcome.confirmation == "selected"
    assert clicked_ids(page) == ["c6", "save"]


def test_keypad_value_missing_falls_back_to_score_input():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)

    outcome = ScoreWriter(page).write(12, PROFILES[ZHIXUE])

    assert outcome.success and outcome.strategy == STRATEGY_TEXT
    assert page.one("#score")["value"] == "12"
    assert clicked_ids(page) == ["auto", "submit"]


def test_has_keypad_needs_several_visible_digits():
    assert ScoreWriter(FakePage(ZHIXUE_PANEL)).has_keypad()
    assert not ScoreWriter(FakePage("<span>1</span><span>2</span>")).has_keypad()
    assert not ScoreWriter(FakePage(f'<ul hidden>{KEYPAD}</ul>')).has_keypad()


# --- text strategy ---

def test_text_input_is_written_and_submitted_with_enter():
    page = FakePage(TEXT_ONLY)

    outcome = ScoreWriter(page).write(8.5, PROFILES[GENERIC], WriteOptions(submit_mode=pacing.SUBMIT_ENTER))

    field = page.one("#score")
    assert (outcome.success, outcome.strategy, outcome.confirmation) == (True, STRATEGY_TEXT, "input")
    assert field["value"] == "8.5"
    assert page.events_of(field) == ["input", "change", "keydown", "keypress", "keyup", "blur"]
    keydown = next(init for el, event, kind, init in page.events if event == "keydown")
    assert keydown["keyCode"] == 13 and keydown["key"] == "Enter"
    assert clicked_ids(page) == ["go"]
    assert config.TEXT_SUBMIT_DELAY in page.sleeps


def test_click_mode_skips_enter():
    page = FakePage(TEXT_ONLY)

    ScoreWriter(page).write(4, PROFILES[GENERIC], WriteOptions(submit_mode=pacing.SUBMIT_CLICK))

    assert "keydown" not in page.events_of(page.one("#score"))
    assert clicked_ids(page) == ["go"]
    assert config.PRE_SUBMIT_DELAY in page.sleeps


def test_delayed_click_mode_presses_enter_and_waits_longer():
    page = FakePage(TEXT_ONLY)

    ScoreWriter(page).write(4, PROFILES[GENERIC], WriteOptions(submit_mode=pacing.SUBMIT_DELAYED_CLICK))

    assert "keydown" in page.events_of(page.one("#score"))
    assert config.TEXT_SUBMIT_DELAY + config.DELAYED_CLICK_EXTRA in page.sleeps


def test_enter_that_advances_the_page_needs_no_click():
    page = FakePage(TEXT_ONLY, url="https://school.example/mark/1")
    page.event_handlers[("score", "keydown")] = lambda p, _: p.navigate("https://school.example/mark/2")

    outcome = ScoreWriter(page).write(6, PROFILES[GENERIC])

    assert outcome.confirmation == "navigation"
    assert page.clicks == []


def test_tick_next_to_input_is_preferred():
    page = FakePage("""
        <div class="score-row">
          <input type="number" id="score" data-w="60" data-h="30">
          <span id="tick" class="icon-check">✓</span>
        </div>
        <button type="submit" id="go">确定</button>
    """)

    ScoreWriter(page).write(2, PROFILES[GENERIC], WriteOptions(submit_mode=pacing.SUBMIT_CLICK))

    assert clicked_ids(page) == ["tick"]


def test_focused_input_is_used_when_no_selector_matches():
    page = FakePage('<input class="x" id="focused"><button type="submit">确定</button>')
    page.focus(page.one("#focused"))
    assert ScoreWriter(page).find_score_input(PROFILES[GENERIC]).get("id") == "focused"


def test_heuristic_input_must_be_score_sized():
    page = FakePage("""
        <input type="text" id="search" data-w="600" data-h="30">
        <input type="text" id="points" data-w="60" data-h="30">
        <input type="checkbox" id="flag" data-w="60" data-h="30">
    """)
    assert ScoreWriter(page).find_score_input(PROFILES[GENERIC]).get("id") == "points"


def test_no_input_is_a_failure_not_an_exception():
    outcome = ScoreWriter(FakePage("<div>nothing here</div>")).write(5, PROFILES[GENERIC])
    assert not outcome.success
    assert outcome.error == "No visible score input"


# --- auto-submit toggle ---

def test_switch_is_turned_on():
    page = FakePage('<div class="el-switch" id="sw" aria-checked="false"><span>自动提交</span></div>')
    assert ScoreWriter(page).ensure_auto_submit()
    assert clicked_ids(page) == ["sw"]


def test_switch_already_on_is_left_alone():
    page = FakePage('<div class="el-switch is-checked" id="sw"><span>自动提交</span></div>')
    assert ScoreWriter(page).ensure_auto_submit()
    assert page.clicks == []


def test_icon_toggle_next_to_label_is_clicked():
    page = FakePage('<div><a class="choice_select" id="icon"></a><span class="auto-submit">自动提交</span></div>')
    assert ScoreWriter(page).ensure_auto_submit()
    assert clicked_ids(page) == ["icon"]


def test_selected_icon_toggle_is_left_alone():
    page = FakePage('<div><a class="choice_selected" id="icon"></a><span class="auto-submit">自动提交</span></div>')
    assert ScoreWriter(page).ensure_auto_submit()
    assert page.clicks == []


def test_checkbox_described_by_nearby_text_is_ticked():
    page = FakePage('<div><span>提交后自动跳转下一题</span><input type="checkbox" id="cb"></div>')

    assert ScoreWriter(page).ensure_auto_submit()

    checkbox = page.one("#cb")
    assert checkbox.has_attr("checked")
    assert page.events_of(checkbox) == ["change", "input"]


def test_checkbox_described_by_label_for():
    page = FakePage('<input type="checkbox" id="cb"><p><label for="cb">自动保存</label></p>')
    assert ScoreWriter(page).ensure_auto_submit()
    assert page.one("#cb").has_attr("checked")


def test_unrelated_checkbox_is_not_touched():
    page = FakePage('<div><input type="checkbox" id="x"> 显示批注</div>')
    assert not ScoreWriter(page).ensure_auto_submit()
    assert page.clicks == []


def test_confirm_presses_the_keypad():
    page = FakePage(ZHIXUE_PANEL, url=ZHIXUE_URL)
    page.one("#auto")["checked"] = ""
    page.click_handlers["k8"] = echo_into_score_input

    outcome = ScoreWriter(page).confirm(8, PROFILES[ZHIXUE])

    assert outcome.success and outcome.strategy == STRATEGY_KEYPAD
    assert clicked_ids(page) == ["k8", "submit"]


def test_generic_page_switch_is_enabled_before_the_keypad():
    page = FakePage('<div class="el-switch" id="sw" aria-checked="false"><span>自动提交</span></div>'
                    f"<ul>{KEYPAD}</ul>", url="https://school.example/mark")

    outcome = ScoreWriter(page).write(7, PROFILES[GENERIC])

    assert outcome.success and outcome.strategy == STRATEGY_KEYPAD
    assert clicked_ids(page)[:2] == ["sw", "k7"]


def test_lost_page_context_is_a_failed_write():
    class NavigatingPage(FakePage):
        def active_element(self):
            raise PageSurfaceError("Execution context was destroyed")

    outcome = ScoreWriter(NavigatingPage("<div>nothing here</div>")).write(5, PROFILES[GENERIC])

    assert not outcome.success
    assert "context was destroyed" in outcome.error


def test_rejected_text_value_is_logged(app_log):
    class ClampingPage(FakePage):
        def set_native_value(self, element, value):
            super().set_native_value(element, "10")

    page = ClampingPage(TEXT_ONLY)

    outcome = ScoreWriter(page).write(12, PROFILES[GENERIC], WriteOptions(submit_mode=pacing.SUBMIT_CLICK))

    assert outcome.success and outcome.confirmation is None
    assert any("reads '10' after writing '12'" in r.getMessage() for r in app_log.records
               if r.levelname == "WARNING")


def test_zhixue_keypad_is_pressed_when_no_input_exists():
    page = FakePage('<a name="ratingPlatBtn" id="k6">6</a><a name="ratingPlatBtn" id="k7">7</a>'
                    '<button class="el-button--success" id="submit">提交</button>', url=ZHIXUE_URL)
    writer = ScoreWriter(page)
    assert not writer.has_keypad()

    outcome = writer.write(7, PROFILES[ZHIXUE])

    assert outcome.success and outcome.strategy == STRATEGY_KEYPAD
    assert clicked_ids(page) == ["k7", "submit"]


def test_generic_profile_has_no_keypad_last_resort():
    page = FakePage('<a name="ratingPlatBtn" id="k7">7</a>')

    outcome = ScoreWriter(page).write(7, PROFILES[GENERIC])

    assert not outcome.success
    assert page.clicks == []
