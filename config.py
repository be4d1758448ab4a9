"""Configuration settings for the answer-sheet auto grader."""

import os
import logging
from typing import Final

# Debug flag: 1 = debug mode (verbose logging), 0 = production mode
DEBUG: Final[int] = int(os.environ.get("GRADER_DEBUG", "0"))


def _float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        logging.warning(f"Ignoring non-numeric value for {name}; using {default}.")
        return default


def _int(name: str, default: int) -> int:
    return int(_float(name, default))


# --- Browser Settings ---

# The grader attaches to the operator's own Chrome, started with --remote-debugging-port.
CDP_URL: Final[str] = os.environ.get("GRADER_CDP_URL", "http://localhost:9222")
CDP_CONNECT_ATTEMPTS: Final[int] = _int("GRADER_CDP_CONNECT_ATTEMPTS", 3)

# --- Scoring Service Settings ---

# "http" posts to the grading backend, "gemini" calls Gemini directly.
SCORING_BACKEND: Final[str] = os.environ.get("GRADER_SCORING_BACKEND", "http").lower()
SCORING_URL: Final[str] = os.environ.get("GRADER_SCORING_URL", "http://localhost:3000")
SCORING_TIMEOUT: Final[float] = _float("GRADER_SCORING_TIMEOUT", 60.0)
DEVICE_ID: Final[str] = os.environ.get("GRADER_DEVICE_ID", "autograder-cli")
ACTIVATION_CODE: Final[str | None] = os.environ.get("GRADER_ACTIVATION_CODE")
GEMINI_API_KEY: Final[str | None] = os.environ.get("GEMINI_API_KEY")
RUBRIC_DIR: Final[str | None] = os.environ.get("GRADER_RUBRIC_DIR")
GEMINI_FLASH_MODEL: Final[str] = os.environ.get("GRADER_GEMINI_FLASH_MODEL", "gemini-2.5-flash")
GEMINI_PRO_MODEL: Final[str] = os.environ.get("GRADER_GEMINI_PRO_MODEL", "gemini-2.5-pro")

STRATEGIES: Final[tuple[str, ...]] = ("flash", "pro", "reasoning")
DEFAULT_STRATEGY: Final[str] = "flash"

if SCORING_BACKEND == "gemini" and not GEMINI_API_KEY:
    logging.warning("GRADER_SCORING_BACKEND=gemini but GEMINI_API_KEY is not set.")

# --- Candidate Discovery ---
# Empirically tuned per platform; all overridable from the environment.

MIN_IMAGE_SIZE: Final[float] = _float("GRADER_MIN_IMAGE_SIZE", 60)
MAX_ICON_SIZE: Final[float] = _float("GRADER_MAX_ICON_SIZE", 32)
MIN_ANSWER_SIZE: Final[float] = _float("GRADER_MIN_ANSWER_SIZE", 100)
AREA_RATIO: Final[float] = _float("GRADER_AREA_RATIO", 0.35)

# --- Artifacts ---

ARTIFACT_MIN_LENGTH: Final[int] = _int("GRADER_ARTIFACT_MIN_LENGTH", 1000)  # base64 chars
FINGERPRINT_MIN_LENGTH: Final[int] = 100
FINGERPRINT_PREFIX: Final[int] = 80
JPEG_QUALITY: Final[int] = 80
MERGE_QUALITY: Final[int] = 75
COMPRESS_THRESHOLD: Final[int] = _int("GRADER_COMPRESS_THRESHOLD", 220000)  # base64 chars
COMPRESS_MAX_WIDTH: Final[int] = _int("GRADER_COMPRESS_MAX_WIDTH", 1400)
COMPRESS_QUALITY: Final[int] = _int("GRADER_COMPRESS_QUALITY", 70)

# --- Score Writer ---

KEYPAD_MIN_BUTTONS: Final[int] = 3
KEYPAD_FIRST_POLL: Final[float] = 0.3
KEYPAD_POLL_INTERVAL: Final[float] = _float("GRADER_KEYPAD_POLL_INTERVAL", 0.2)
KEYPAD_MAX_POLLS: Final[int] = _int("GRADER_KEYPAD_MAX_POLLS", 15)
PRE_SUBMIT_DELAY: Final[float] = 0.5
TEXT_SUBMIT_DELAY: Final[float] = _float("GRADER_TEXT_SUBMIT_DELAY", 1.2)
DELAYED_CLICK_EXTRA: Final[float] = 0.6
POST_SUBMIT_RECHECK: Final[float] = 0.8

# --- Loop Pacing (seconds) ---

WAIT_REFRESH_THRESHOLD: Final[int] = _int("GRADER_WAIT_REFRESH_THRESHOLD", 5)
REFRESH_DELAY: Final[float] = _float("GRADER_REFRESH_DELAY", 3.0)
EXTRACT_RETRY_DELAY: Final[float] = 0.3
FILL_RETRY_DELAY: Final[float] = 0.2
SCAN_RETRIES: Final[int] = 5
SCAN_RETRY_DELAY: Final[float] = 1.5
FILL_RETRIES: Final[int] = 3
FILL_RETRY_DELAY_MANUAL: Final[float] = 0.5
PAUSE_PROBABILITY: Final[float] = _float("GRADER_PAUSE_PROBABILITY", 0.03)
PAUSE_MIN_INTERVAL: Final[float] = 30.0
PAUSE_RANGE: Final[tuple[float, float]] = (2.0, 5.0)

# --- File Paths ---
LOG_DIR: Final[str] = "logs"
LOG_FILE: Final[str] = os.path.join(LOG_DIR, "autograder.log")

# --- Logging Configuration ---
# LOG_LEVEL applies to both the console and the file handler
LOG_LEVEL = logging.DEBUG if DEBUG else logging.INFO
# Structured log format: timestamp, level, logger, module.function:line, message
LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(module)s.%(funcName)s:%(lineno)d | %(message)s'

# Basic check
if __name__ == "__main__":
    print(f"Debug Mode: {'On' if DEBUG else 'Off'}")
    print(f"Log Level: {logging.getLevelName(LOG_LEVEL)}")
    print(f"CDP URL: {CDP_URL}")
    print(f"Scoring Backend: {SCORING_BACKEND} ({SCORING_URL})")
    print(f"Gemini API Key Loaded: {'Yes' if GEMINI_API_KEY else 'No'}")
    print(f"Rubric Directory: {RUBRIC_DIR or '-'}")
    print(f"Log File: {LOG_FILE}")
