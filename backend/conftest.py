"""Load .env.tests and send structlog events to stdlib so caplog can assert on them."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import event_processors

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

structlog.configure(
    processors=event_processors(timestamps=False),
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
)


@pytest.fixture(autouse=True)
def _reset_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
