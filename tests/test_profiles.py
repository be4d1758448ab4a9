import pytest

from core.profiles import GENERIC, HAOFENSHU, PROFILES, ZHIXUE, get_profile, resolve_profile
from fake_page import FakePage


@pytest.mark.parametrize("url,expected", [
    ("https://www.zhixue.com/webmarking/index.html", ZHIXUE),
    ("https://yj.haofenshu.com/mark/#/task", HAOFENSHU),
    ("https://mark.7net.cc/grading", HAOFENSHU),
    ("https://example.org/grading", GENERIC),
    ("not a url", GENERIC),
    ("", GENERIC),
])
def test_resolves_by_host(url, expected):
    assert resolve_profile(url).id == expected


def test_markup_signature_identifies_white_labelled_host():
    page = FakePage('<div><a name="ratingPlatBtn">1</a></div>', url="https://school.example/mark")
    assert resolve_profile(page.url(), page).id == ZHIXUE

    page = FakePage('<button class="score-cell">3</button>', url="https://school.example/mark")
    assert resolve_profile(page.url(), page).id == HAOFENSHU


def test_unknown_host_without_signatures_is_generic():
    page = FakePage("<div><img src='x.png'></div>", url="https://school.example/mark")
    assert resolve_profile(page.url(), page) is PROFILES[GENERIC]


def test_profiles_are_consistent():
    zhixue = PROFILES[ZHIXUE]
    assert zhixue.max_candidates == 1
    assert zhixue.detects_queue_empty and zhixue.monitors_answer_card
    assert zhixue.compress_threshold < PROFILES[GENERIC].compress_threshold
    assert PROFILES[HAOFENSHU].max_candidates > 1
    for profile in PROFILES.values():
        assert len(set(profile.image_selectors)) == len(profile.image_selectors)
        assert profile.image_selectors and profile.score_input_selectors and profile.submit_selectors


def test_get_profile_falls_back_to_generic():
    assert get_profile("NOPE").id == GENERIC
    assert get_profile(HAOFENSHU).id == HAOFENSHU
