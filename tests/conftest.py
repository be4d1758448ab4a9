import logging
import random

import pytest

from core.pacing import Pacer
from utils.logger import LOGGER_NAME
from fake_page import ZHIXUE_URL, FakePage, FakeScoringClient, make_image_bytes


@pytest.fixture
def sheet_bytes():
    return make_image_bytes(400, 300, seed=1)


@pytest.fixture
def scoring_client():
    return FakeScoringClient()


@pytest.fixture
def pacer():
    return Pacer(random.Random(42))


@pytest.fixture
def blank_page():
    return FakePage("<html><body></body></html>", url=ZHIXUE_URL)


@pytest.fixture
def app_log(caplog):
    """caplog wired to the application logger, which does not propagate to root."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(caplog.handler)
    yield caplog
    logger.removeHandler(caplog.handler)
