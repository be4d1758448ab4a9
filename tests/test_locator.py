from core.locator import PRIORITY_CONTAINER, PRIORITY_MEDIA, PRIORITY_TRUSTED, CandidateLocator
from core.profiles import GENERIC, HAOFENSHU, PROFILES, ZHIXUE
from fake_page import HAOFENSHU_URL, ZHIXUE_URL, FakePage

GENERIC_URL = "https://school.example/mark"


def ids(candidates):
    return [c.element.get("id") for c in candidates]


def test_small_elements_are_excluded_regardless_of_kind():
    page = FakePage("""
        <img id="logo" src="/logo.png" data-w="50" data-h="50">
        <img id="strip" src="/strip.png" data-w="600" data-h="30">
        <canvas id="tiny" data-w="90" data-h="90"></canvas>
        <svg data-w="40" data-h="40"><image id="icon" href="/i.png" data-w="40" data-h="40"></image></svg>
        <div id="bg" style="background-image: url(/bg.png)" class="paper-image" data-w="80" data-h="80"></div>
    """, url=GENERIC_URL)
    assert CandidateLocator(page).locate(PROFILES[GENERIC]) == []


def test_ranking_trusted_then_media_then_position():
    page = FakePage("""
        <div class="mark-img-wrap"><img id="lower" src="https://cdn.example/a.png" data-w="600" data-h="400" data-top="300"></div>
        <img id="upper" src="https://cdn.example/b.png" data-w="500" data-h="300" data-top="100">
        <div id="bg" class="paper-img" style="background-image: url(https://cdn.example/c.png)"
             data-w="700" data-h="500" data-top="0"></div>
        <svg data-w="800" data-h="600">
          <image id="trusted" href="https://yj-oss.example/d.png" data-w="800" data-h="600" data-top="500"></image>
        </svg>
    """, url=HAOFENSHU_URL)
    candidates = CandidateLocator(page).locate(PROFILES[HAOFENSHU])

    assert ids(candidates) == ["trusted", "upper", "lower", "bg"]
    assert [c.priority for c in candidates] == [PRIORITY_TRUSTED, PRIORITY_MEDIA, PRIORITY_MEDIA, PRIORITY_CONTAINER]


def test_equal_top_prefers_larger_area():
    page = FakePage("""
        <img id="small" src="/a.png" data-w="300" data-h="300" data-top="50">
        <img id="large" src="/b.png" data-w="900" data-h="700" data-top="50">
    """, url=GENERIC_URL)
    assert ids(CandidateLocator(page).locate(PROFILES[GENERIC])) == ["large", "small"]


def test_vector_image_size_falls_back_to_attributes_then_container():
    page = FakePage("""
        <svg data-w="0" data-h="0"><image id="declared" href="/a.png" width="640" height="480"></image></svg>
        <svg data-w="0" data-h="0" width="900" height="1200"><image id="container" href="/b.png"></image></svg>
        <svg><image id="bbox" href="/c.png" data-bbox-w="500" data-bbox-h="700"></image></svg>
        <svg><image id="unknown" href="/d.png"></image></svg>
    """, url=GENERIC_URL)
    candidates = {c.element.get("id"): c for c in CandidateLocator(page).locate(PROFILES[GENERIC])}

    assert set(candidates) == {"declared", "container", "bbox"}
    assert (candidates["declared"].geometry.width, candidates["declared"].geometry.height) == (640, 480)
    assert (candidates["container"].geometry.width, candidates["container"].geometry.height) == (900, 1200)
    assert candidates["bbox"].geometry.height == 700


def test_hidden_elements_are_skipped():
    page = FakePage("""
        <img id="invisible" src="/a.png" style="visibility: hidden" data-w="600" data-h="400">
        <img id="transparent" src="/b.png" style="opacity: 0" data-w="600" data-h="400">
        <div data-hidden><img id="collapsed" src="/c.png" data-w="600" data-h="400"></div>
        <img id="shown" src="/d.png" data-w="600" data-h="400">
    """, url=GENERIC_URL)
    assert ids(CandidateLocator(page).locate(PROFILES[GENERIC])) == ["shown"]


def test_each_element_is_reported_once():
    page = FakePage("""
        <div name="topicImg"><img id="sheet" src="https://img.zhixue.com/paper.png" data-w="800" data-h="600"></div>
    """, url=ZHIXUE_URL)
    candidates = CandidateLocator(page).locate(PROFILES[ZHIXUE])
    assert ids(candidates) == ["sheet"]
    assert candidates[0].reason == "selector"
    assert candidates[0].selector == 'div[name="topicImg"] img'


def test_readable_frames_are_scanned():
    page = FakePage("<div>toolbar</div>", url=GENERIC_URL)
    page.add_frame('<img id="framed" src="/a.png" data-w="700" data-h="900">')
    candidates = CandidateLocator(page).locate(PROFILES[GENERIC])

    assert ids(candidates) == ["framed"]
    assert not candidates[0].context.is_main


def test_bare_canvas_is_found_without_platform_markup():
    page = FakePage('<section><canvas id="c" data-w="800" data-h="600"></canvas></section>', url=ZHIXUE_URL)
    profile = PROFILES[ZHIXUE]
    candidates = CandidateLocator(page).locate(profile)
    assert ids(candidates) == ["c"]


def test_select_caps_per_profile_and_applies_area_ratio():
    page = FakePage("""
        <img id="a" src="/a.png" data-w="1000" data-h="500" data-top="0">
        <img id="b" src="/b.png" data-w="1000" data-h="400" data-top="510">
        <img id="c" src="/c.png" data-w="300" data-h="300" data-top="920">
        <img id="d" src="/d.png" data-w="1000" data-h="300" data-top="1230">
        <img id="e" src="/e.png" data-w="1000" data-h="300" data-top="1540">
    """, url=GENERIC_URL)
    locator = CandidateLocator(page)
    candidates = locator.locate(PROFILES[GENERIC])

    assert ids(locator.select(candidates, PROFILES[ZHIXUE])) == ["a"]
    # c is below 35% of the top area; the cap of three keeps a, b, d
    assert ids(locator.select(candidates, PROFILES[HAOFENSHU])) == ["a", "b", "d"]
    assert locator.select([], PROFILES[HAOFENSHU]) == []
