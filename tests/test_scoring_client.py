import pytest
import requests

from core.extractor import Artifact
from services.scoring_client import (
    GRADE_PATH, HttpScoringClient, RubricStore, ScoringContext, extract_json_object, normalize_result,
)
from utils.error_handler import ConfigError, GradingError

BASE_URL = "http://grader.local:3000/"


class FakeResponse:
    def __init__(self, payload=None, status_code=200, reason="OK", body_is_json=True):
        self.payload = payload
        self.status_code = status_code
        self.reason = reason
        self.body_is_json = body_is_json

    def json(self):
        if not self.body_is_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def ok(data):
    return FakeResponse({"success": True, "data": data})


@pytest.fixture
def artifact():
    return Artifact(data=b"\xff\xd8" + b"\x00" * 2000, width=400, height=300)


@pytest.fixture
def context():
    return ScoringContext(platform="ZHIXUE", question_key="ZHIXUE:p1:24", question_no="24",
                          marking_paper_id="p1", student_name="李雷")


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr("utils.retry.time.sleep", lambda seconds: None)


def test_request_shape(artifact, context):
    session = FakeSession(ok({"score": 8, "maxScore": 10, "comment": "good"}))
    client = HttpScoringClient(BASE_URL, device_id="dev-1", activation_code="CODE", timeout=12, session=session)

    result = client.grade(artifact, context, "reasoning")

    post = session.posts[0]
    assert post["url"] == "http://grader.local:3000" + GRADE_PATH
    assert post["headers"]["x-device-id"] == "dev-1"
    assert post["headers"]["x-activation-code"] == "CODE"
    assert post["timeout"] == 12
    body = post["json"]
    assert body["imageBase64"] == artifact.b64
    assert (body["questionKey"], body["questionNo"], body["studentName"]) == ("ZHIXUE:p1:24", "24", "李雷")
    assert body["strategy"] == "reasoning"
    assert (result.score, result.max_score, result.comment) == (8, 10, "good")


def test_activation_code_is_optional(artifact, context):
    session = FakeSession(ok({"score": 1}))
    HttpScoringClient(BASE_URL, activation_code=None, session=session).grade(artifact, context)
    assert "x-activation-code" not in session.posts[0]["headers"]


def test_unknown_strategy_falls_back(artifact, context):
    session = FakeSession(ok({"score": 1}))
    HttpScoringClient(BASE_URL, session=session).grade(artifact, context, "ultra")
    assert session.posts[0]["json"]["strategy"] == "flash"


def test_rejected_request_raises_grading_error(artifact, context):
    session = FakeSession(FakeResponse({"success": False, "message": "activation code expired"}))
    with pytest.raises(GradingError, match="activation code expired"):
        HttpScoringClient(BASE_URL, session=session).grade(artifact, context)


def test_server_error_raises_grading_error(artifact, context):
    session = FakeSession(FakeResponse({"error": "upstream timeout"}, status_code=502, reason="Bad Gateway"))
    with pytest.raises(GradingError, match="502"):
        HttpScoringClient(BASE_URL, session=session).grade(artifact, context)


def test_malformed_json_raises_grading_error(artifact, context):
    session = FakeSession(FakeResponse(body_is_json=False, status_code=200))
    with pytest.raises(GradingError, match="Malformed JSON"):
        HttpScoringClient(BASE_URL, session=session).grade(artifact, context)


def test_connection_error_is_retried_once(artifact, context):
    session = FakeSession(requests.ConnectionError("refused"), ok({"score": 4}))
    result = HttpScoringClient(BASE_URL, session=session).grade(artifact, context)
    assert result.score == 4
    assert len(session.posts) == 2


def test_unreachable_service_raises_grading_error(artifact, context):
    session = FakeSession(requests.ConnectionError("refused"), requests.ConnectionError("refused"))
    with pytest.raises(GradingError, match="unreachable"):
        HttpScoringClient(BASE_URL, session=session).grade(artifact, context)


def test_missing_base_url_is_a_config_error():
    with pytest.raises(ConfigError):
        HttpScoringClient("")


def test_rubric_is_sent_from_store(tmp_path, artifact, context):
    (tmp_path / "ZHIXUE_p1_24.txt").write_text("  满分10分，按步骤给分  ", encoding="utf-8")
    session = FakeSession(ok({"score": 9}))

    HttpScoringClient(BASE_URL, session=session, rubrics=RubricStore(str(tmp_path))).grade(artifact, context)

    assert session.posts[0]["json"]["rubric"] == "满分10分，按步骤给分"


# --- normalisation ---

@pytest.mark.parametrize("data,score,max_score,comment", [
    ({"score": 7, "maxScore": 10, "comment": "ok"}, 7, 10, "ok"),
    ({"score": "6.5", "max_score": "8"}, 6.5, 8, ""),
    ({"totalScore": 12}, 0, 12, ""),
    ({"得分": 5, "满分": 6, "评语": "步骤完整"}, 5, 6, "步骤完整"),
    ({"studentScore": 3, "reason": "missing units"}, 3, None, "missing units"),
    ({"finalScore": 9, "note": "x"}, 9, None, ""),
])
def test_normalize_common_shapes(data, score, max_score, comment):
    result = normalize_result(data)
    assert (result.score, result.max_score, result.comment) == (score, max_score, comment)


def test_normalize_point_details():
    result = normalize_result({
        "total_score": 2,
        "details": [
            {"sub_question": "(1)", "score": 1, "reason": "correct"},
            {"sub_question": "(2)", "score": 1, "reason": "correct"},
            {"score": 0, "reason": "no conclusion"},
        ],
    })
    assert (result.score, result.max_score) == (2, 3)
    assert [d["label"] for d in result.breakdown] == ["(1)", "(2)", "point 3"]


def test_normalize_keeps_breakdown():
    breakdown = [{"label": "a", "score": 2, "max": 2, "comment": ""}]
    assert normalize_result({"score": 2, "breakdown": breakdown}).breakdown == breakdown


@pytest.mark.parametrize("data", [None, [], "7", {"comment": "no number here"}])
def test_normalize_rejects_scoreless_responses(data):
    with pytest.raises(GradingError):
        normalize_result(data)


def test_extract_json_from_fenced_reply():
    reply = '好的，评分如下：\n```json\n{"score": 4, "maxScore": 5, "comment": "略"}\n```'
    assert extract_json_object(reply) == {"score": 4, "maxScore": 5, "comment": "略"}


@pytest.mark.parametrize("reply", ["", "score: 4", "{score: 4}"])
def test_extract_json_rejects_non_json(reply):
    with pytest.raises(GradingError):
        extract_json_object(reply)


# --- rubric store ---

def test_rubric_lookup_order(tmp_path):
    (tmp_path / "24.md").write_text("generic rubric", encoding="utf-8")
    store = RubricStore(str(tmp_path))

    exact = ScoringContext(platform="ZHIXUE", question_key="ZHIXUE:p1:24", question_no="24")
    assert store.lookup(exact) == "generic rubric"

    (tmp_path / "ZHIXUE_p1_24.json").write_text('{"points": 3}', encoding="utf-8")
    assert store.lookup(exact) == '{"points": 3}'

    other = ScoringContext(platform="ZHIXUE", question_key="ZHIXUE:p1:25", question_no="25")
    assert store.lookup(other) == ""


def test_rubric_store_without_directory():
    context = ScoringContext(platform="GENERIC", question_key="GENERIC:unknown:unknown")
    assert RubricStore(None).lookup(context) == ""


def test_total_score_alone_is_flagged(app_log):
    result = normalize_result({"totalScore": 12, "comment": "see rubric"})

    assert (result.score, result.max_score) == (0, 12)
    assert any("only totalScore" in r.getMessage() and r.levelname == "WARNING" for r in app_log.records)
