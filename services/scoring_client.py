"""Scoring service boundary: request shaping, response normalisation and rubric lookup.

The scoring algorithm itself is external. Clients in this module make exactly
one logical request per call and raise GradingError on any failure; retry
policy for failed gradings belongs to the loop controller.
"""

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import requests

import config
from core.extractor import Artifact
from utils.error_handler import ConfigError, GradingError, ScoringServiceError
from utils.logger import get_logger
from utils.retry import retry_on_exception

logger = get_logger()

GRADE_PATH = "/api/ai/grade"
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class ScoringContext:
    """Identifiers of one grading attempt; created per cycle and passed through opaquely."""
    platform: str
    question_key: str
    question_no: Optional[str] = None
    marking_paper_id: Optional[str] = None
    student_name: str = ""
    exam_no: Optional[str] = None
    rubric: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "questionKey": self.question_key,
            "questionNo": self.question_no,
            "markingPaperId": self.marking_paper_id,
            "studentName": self.student_name,
            "examNo": self.exam_no,
        }


@dataclass
class ScoringResult:
    score: float
    max_score: Optional[float] = None
    comment: str = ""
    breakdown: List[Dict[str, Any]] = field(default_factory=list)


class ScoringClient(Protocol):
    def grade(self, artifact: Artifact, context: ScoringContext, strategy: str) -> ScoringResult:
        """Scores one artifact. Raises GradingError."""
        ...


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first(obj: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if obj.get(key) is not None:
            return obj[key]
    return None


def normalize_result(obj: Any) -> ScoringResult:
    """Maps the response shapes scoring models actually return onto ScoringResult.

    Accepted: ``{score, maxScore, comment, breakdown}``, ``{total_score, details}``,
    ``{totalScore, ...}``, Chinese keys (``得分``/``满分``/``评语``), and as a last
    resort any object with a numeric field whose name mentions a score.

    Raises:
        GradingError: If no score can be found.
    """
    if not isinstance(obj, dict):
        raise GradingError(f"Scoring response is not an object: {str(obj)[:200]}")

    breakdown = obj.get("breakdown") if isinstance(obj.get("breakdown"), list) else []

    if "total_score" in obj and isinstance(obj.get("details"), list):
        details = [
            {
                "label": d.get("sub_question") or d.get("label") or f"point {i + 1}",
                "score": _number(d.get("score")) or 0.0,
                "max": 1,
                "comment": d.get("reason") or d.get("comment") or "",
            }
            for i, d in enumerate(obj["details"]) if isinstance(d, dict)
        ]
        score = _number(obj["total_score"])
        if score is None:
            score = sum(d["score"] for d in details)
        return ScoringResult(score, float(len(details)) if details else _number(obj.get("maxScore")),
                             obj.get("comment") or "", details)

    score = _number(_first(obj, "score", "得分", "分数", "studentScore"))
    max_score = _number(_first(obj, "maxScore", "max_score", "totalScore", "total_score", "满分", "总分"))
    comment = _first(obj, "comment", "评语", "reason", "feedback", "评价", "点评") or ""

    if score is None and "totalScore" in obj:
        logger.warning(f"Scoring response has no score, only totalScore={obj['totalScore']!r} (read as the maximum); "
                       "recording 0.")
    elif score is None:
        numeric = [k for k, v in obj.items() if _number(v) is not None]
        score_key = next((k for k in numeric if re.search(r"score|分数|得分", k, re.IGNORECASE)), None)
        if score_key is None:
            raise GradingError(f"Scoring response carries no score: {json.dumps(obj, ensure_ascii=False)[:200]}")
        score = _number(obj[score_key])

    return ScoringResult(score or 0.0, max_score, str(comment), breakdown)


def extract_json_object(text: str) -> Any:
    """Outermost ``{...}`` block of a model reply, parsed. Raises GradingError."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise GradingError(f"Model reply contains no JSON object: {(text or '')[:200]}")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise GradingError(f"Model reply is not valid JSON: {e}") from e


class HttpScoringClient:
    """Client for the grading backend's ``POST /api/ai/grade`` endpoint."""

    def __init__(
        self,
        base_url: str = config.SCORING_URL,
        device_id: str = config.DEVICE_ID,
        activation_code: Optional[str] = config.ACTIVATION_CODE,
        timeout: float = config.SCORING_TIMEOUT,
        session: Optional[requests.Session] = None,
        rubrics: Optional["RubricStore"] = None,
    ):
        if not base_url:
            raise ConfigError("GRADER_SCORING_URL is not set.")
        self.endpoint = base_url.rstrip("/") + GRADE_PATH
        self.device_id = device_id
        self.activation_code = activation_code
        self.timeout = timeout
        self.session = session or requests.Session()
        self.rubrics = rubrics
        logger.debug(f"HttpScoringClient targeting {self.endpoint}")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "x-device-id": self.device_id}
        if self.activation_code:
            headers["x-activation-code"] = self.activation_code
        return headers

    @retry_on_exception(exceptions=(requests.ConnectionError, requests.Timeout), max_attempts=2, initial_delay=1.0)
    def _post(self, body: Dict[str, Any]) -> requests.Response:
        return self.session.post(self.endpoint, json=body, headers=self._headers(), timeout=self.timeout)

    def grade(self, artifact: Artifact, context: ScoringContext, strategy: str = config.DEFAULT_STRATEGY) -> ScoringResult:
        """Posts the artifact and returns the normalised result.

        Raises:
            GradingError: On transport failure, non-2xx status, ``success: false``,
                malformed JSON or a response without a score.
        """
        if strategy not in config.STRATEGIES:
            logger.warning(f"Unknown grading strategy {strategy!r}, using {config.DEFAULT_STRATEGY!r}")
            strategy = config.DEFAULT_STRATEGY

        rubric = context.rubric or (self.rubrics.lookup(context) if self.rubrics else "")
        body = {
            "imageBase64": artifact.b64,
            "rubric": rubric,
            "studentName": context.student_name,
            "questionNo": context.question_no,
            "questionKey": context.question_key,
            "strategy": strategy,
            "examNo": context.exam_no,
            "platform": context.platform,
        }
        logger.info(f"Requesting grade for {context.question_key} ({strategy}, {len(artifact.b64)} base64 chars)")

        try:
            response = self._post(body)
        except requests.RequestException as e:
            logger.error(f"Scoring request failed: {e}", exc_info=config.DEBUG)
            raise GradingError(f"Scoring service unreachable: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            error = ScoringServiceError("Malformed JSON from scoring service", response.status_code, "grading-backend")
            logger.error(str(error))
            raise GradingError(str(error)) from e

        if not isinstance(payload, dict):
            payload = {"message": f"unexpected response body {str(payload)[:100]}"}
        if not 200 <= response.status_code < 300 or not payload.get("success", False):
            message = payload.get("message") or payload.get("error") or response.reason or "request rejected"
            error = ScoringServiceError(str(message), response.status_code, "grading-backend")
            logger.error(f"Scoring service rejected the request: {error}")
            raise GradingError(str(error))

        result = normalize_result(payload.get("data"))
        logger.info(f"Graded {context.question_key}: {result.score:g}"
                    f"{f'/{result.max_score:g}' if result.max_score is not None else ''}")
        return result


class RubricStore:
    """Rubric text files in a directory, named by question key or question number.

    ``ZHIXUE:123:24.txt`` matches one question exactly (``:`` may be written as
    ``_``); ``24.txt`` serves question 24 of any paper. A missing rubric is an
    empty string.
    """

    def __init__(self, directory: Optional[str] = config.RUBRIC_DIR):
        self.directory = directory

    def _read(self, name: str) -> Optional[str]:
        for candidate in (name, name.replace(":", "_")):
            for suffix in (".txt", ".md", ".json"):
                path = os.path.join(self.directory, candidate + suffix)
                if os.path.isfile(path):
                    with open(path, encoding="utf-8") as handle:
                        logger.debug(f"Using rubric {path}")
                        return handle.read().strip()
        return None

    def lookup(self, context: ScoringContext) -> str:
        if not self.directory:
            return ""
        try:
            rubric = self._read(context.question_key)
            if rubric is None and context.question_no:
                rubric = self._read(context.question_no)
        except OSError as e:
            logger.warning(f"Could not read rubric for {context.question_key}: {e}")
            return ""
        if rubric is None:
            logger.info(f"No rubric found for {context.question_key} in {self.directory}")
        return rubric or ""


if __name__ == "__main__":
    print(f"Endpoint: {config.SCORING_URL.rstrip('/')}{GRADE_PATH}")
    print(f"Device: {config.DEVICE_ID}, activation code {'set' if config.ACTIVATION_CODE else 'not set'}")
    sample = {"success": True, "data": {"score": 7, "maxScore": 10, "comment": "ok", "breakdown": []}}
    print(normalize_result(sample["data"]))
