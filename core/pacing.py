"""Human-like timing: noisy delays, adaptive speed and varied submission styles."""

import random
from typing import Optional

import config

SUBMIT_ENTER = "enter"
SUBMIT_CLICK = "click"
SUBMIT_BOTH = "both"
SUBMIT_DELAYED_CLICK = "delayed_click"

# Cumulative weights.
_SUBMIT_MODES = (
    (0.4, SUBMIT_ENTER),
    (0.7, SUBMIT_CLICK),
    (0.9, SUBMIT_BOTH),
    (1.0, SUBMIT_DELAYED_CLICK),
)


class Pacer:
    """Draws every delay the loop waits for. One instance per loop; ``rng`` is injectable for tests."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def jitter(self, base: float, spread: float) -> float:
        """Mostly Gaussian around ``base`` (sd ``spread/2``), otherwise uniform within +-``spread``. Never negative."""
        if self.rng.random() < 0.8:
            return max(0.0, self.rng.gauss(base, spread / 2))
        return max(0.0, base + self.rng.uniform(-spread, spread))

    def speed_multiplier(self, consecutive_success: int) -> float:
        """Slightly slow while warming up, steady after a handful of successes, faster and noisier later."""
        if consecutive_success < 5:
            return 1.15
        if consecutive_success < 15:
            return 1.0
        if consecutive_success < 30:
            return 0.85
        return 0.7 + self.rng.random() * 0.25

    def submit_mode(self) -> str:
        r = self.rng.random()
        for threshold, mode in _SUBMIT_MODES:
            if r < threshold:
                return mode
        return SUBMIT_DELAYED_CLICK

    def maybe_pause(self, now: float, last_pause: float) -> float:
        """Length of an operator-inattention pause to insert now, or 0.0."""
        if now - last_pause <= config.PAUSE_MIN_INTERVAL:
            return 0.0
        if self.rng.random() >= config.PAUSE_PROBABILITY:
            return 0.0
        low, high = config.PAUSE_RANGE
        return self.rng.uniform(low, high)
