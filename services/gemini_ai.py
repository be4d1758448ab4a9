"""Scoring client that grades answer-sheet images directly with Google Gemini."""

from typing import Dict, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_api_exceptions

import config
from core.extractor import Artifact
from services.scoring_client import (
    RubricStore, ScoringContext, ScoringResult, extract_json_object, normalize_result,
)
from utils.error_handler import ConfigError, GradingError
from utils.logger import get_logger

logger = get_logger()

STRATEGY_MODELS: Dict[str, str] = {
    "flash": config.GEMINI_FLASH_MODEL,
    "pro": config.GEMINI_PRO_MODEL,
    "reasoning": config.GEMINI_PRO_MODEL,
}

PROMPT_TEMPLATE = """你是一位阅卷老师。请严格按照评分标准对图片中的学生答案进行评分，并以 JSON 输出。

【评分标准】
{rubric}

{student_line}

【输出要求】
1. 只输出 JSON，不要添加代码块标记或解释
2. 字段名使用英文，数值使用数字类型

【JSON 结构】
{{"score": number, "maxScore": number, "comment": string,
  "breakdown": [{{"label": string, "score": number, "max": number, "comment": string}}]}}
"""

SAFETY_SETTINGS = {
    genai.types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: genai.types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    genai.types.HarmCategory.HARM_CATEGORY_HATE_SPEECH: genai.types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    genai.types.HarmCategory.HARM_CATEGORY_HARASSMENT: genai.types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    genai.types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: genai.types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


def build_prompt(rubric: str, student_name: str = "") -> str:
    student_line = f"【学生姓名】：{student_name}" if student_name else ""
    return PROMPT_TEMPLATE.format(rubric=rubric, student_line=student_line)


class GeminiScoringClient:
    """Grades an artifact with one Gemini call per attempt."""

    def __init__(self, api_key: Optional[str] = config.GEMINI_API_KEY, rubrics: Optional[RubricStore] = None):
        """Initializes the client.

        Args:
            api_key: The Gemini API key. Defaults to the value from config.
            rubrics: Rubric lookup used when the context carries no rubric text.

        Raises:
            ConfigError: If the API key is missing.
        """
        if not api_key:
            logger.critical("Gemini API Key is missing. Check config.py and environment variables.")
            raise ConfigError("GEMINI_API_KEY not found or provided.")
        genai.configure(api_key=api_key)
        self.rubrics = rubrics
        self._models: Dict[str, genai.GenerativeModel] = {}
        logger.info(f"GeminiScoringClient ready (models: {sorted(set(STRATEGY_MODELS.values()))})")

    def model_for(self, strategy: str) -> genai.GenerativeModel:
        name = STRATEGY_MODELS.get(strategy, STRATEGY_MODELS[config.DEFAULT_STRATEGY])
        if name not in self._models:
            self._models[name] = genai.GenerativeModel(name)
        return self._models[name]

    @staticmethod
    def _reply_text(response) -> str:
        """Text of the first candidate; raises GradingError for blocked or empty replies."""
        if not response.candidates:
            feedback = getattr(response, "prompt_feedback", None)
            logger.error(f"Gemini response missing candidates. Prompt feedback: {feedback}")
            raise GradingError("Gemini returned no candidates (blocked or empty response).")

        candidate = response.candidates[0]
        if getattr(candidate.finish_reason, "name", candidate.finish_reason) == "SAFETY":
            logger.error(f"Gemini stopped for safety reasons. Ratings: {candidate.safety_ratings}")
            raise GradingError("Gemini blocked the answer sheet due to safety settings.")

        parts = candidate.content.parts if candidate.content else []
        text = "\n".join(part.text for part in parts if getattr(part, "text", ""))
        if not text.strip():
            raise GradingError(f"Gemini returned empty text (finish reason: {candidate.finish_reason}).")
        return text

    def grade(self, artifact: Artifact, context: ScoringContext, strategy: str = config.DEFAULT_STRATEGY) -> ScoringResult:
        """Scores the artifact against the question's rubric.

        Raises:
            GradingError: If no rubric is available, the call fails, is blocked,
                or the reply cannot be parsed into a score.
        """
        rubric = context.rubric or (self.rubrics.lookup(context) if self.rubrics else "")
        if not rubric.strip():
            raise GradingError(f"No rubric configured for {context.question_key}.")

        model = self.model_for(strategy)
        logger.info(f"Grading {context.question_key} with {model.model_name}...")
        prompt = build_prompt(rubric, context.student_name)
        if config.DEBUG:
            logger.debug(f"Prompt (first 300 chars):\n{prompt[:300]}")

        try:
            response = model.generate_content(
                [prompt, {"mime_type": artifact.mime, "data": artifact.data}],
                safety_settings=SAFETY_SETTINGS,
                generation_config=genai.types.GenerationConfig(temperature=0.2, max_output_tokens=1024),
            )
        except google_api_exceptions.PermissionDenied as e:
            raise GradingError("Permission denied calling Gemini API (403). Check API key/permissions.") from e
        except google_api_exceptions.ResourceExhausted as e:
            raise GradingError("Gemini API rate limit exceeded (429).") from e
        except google_api_exceptions.InvalidArgument as e:
            logger.error(f"Invalid request sent to Gemini API (400): {e}", exc_info=config.DEBUG)
            raise GradingError(f"Invalid request sent to Gemini API (400): {e}") from e
        except google_api_exceptions.GoogleAPIError as e:
            logger.error(f"Gemini API error during grading: {e}", exc_info=config.DEBUG)
            raise GradingError(f"Gemini API error: {e}") from e

        text = self._reply_text(response)
        if config.DEBUG:
            logger.debug(f"Gemini reply (first 300 chars): {text[:300]}")
        result = normalize_result(extract_json_object(text))
        logger.info(f"Graded {context.question_key}: {result.score:g}")
        return result


if __name__ == "__main__":
    if not config.GEMINI_API_KEY:
        print("Error: GEMINI_API_KEY environment variable not set.")
    else:
        try:
            client = GeminiScoringClient()
            print(f"Flash model: {client.model_for('flash').model_name}")
            print(f"Pro model: {client.model_for('pro').model_name}")
        except ConfigError as e:
            print(f"Configuration Error: {e}")
