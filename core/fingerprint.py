"""Cheap artifact signatures used to tell a new answer sheet from the one already graded."""

from typing import Optional

import config


def fingerprint(b64: Optional[str],
                prefix: int = config.FINGERPRINT_PREFIX,
                min_length: int = config.FINGERPRINT_MIN_LENGTH) -> Optional[str]:
    """Signature of a base64-encoded artifact: its length plus a content prefix.

    Returns None for artifacts too short to be a loaded image.
    """
    if not b64 or len(b64) < min_length:
        return None
    return f"{len(b64)}:{b64[:prefix]}"


def equals(a: Optional[str], b: Optional[str]) -> bool:
    return a == b
