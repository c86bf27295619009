import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RECIPIENT_EMAIL", "owner@example.com")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("CORS_ORIGIN", "http://localhost")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from portfolio_api.core.mailer import DispatchResult, MailDispatcher
from portfolio_api.core.rate_limit import MemoryCounterStore, RateLimiter
from portfolio_api.core.settings import settings as env_settings
from portfolio_api.lib.validation import Submission
from portfolio_api.main import create_app

VALID = {
    "name": "Ada Lovelace",
    "email": "ada@example.com",
    "message": "Hello there, I'd like to talk about a project.",
}


class FakeDispatcher(MailDispatcher):
    transport = "fake"

    def __init__(self, error=None):
        super().__init__(recipient="owner@example.com", sender="noreply@example.com")
        self.error = error
        self.sent = []

    async def send(self, submission):
        if self.error is not None:
            raise self.error
        self.sent.append(submission)
        return DispatchResult(message_id=f"fake-{len(self.sent)}", transport=self.transport)


@pytest.fixture
def submission():
    return Submission(
        name="Ada Lovelace",
        email="ada@example.com",
        message="Hello there, this is a test.",
        received_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def make_client():
    def _make(dispatcher=None, limiter=None, **overrides):
        settings = env_settings.model_copy(update=overrides)
        limiter = limiter or RateLimiter(MemoryCounterStore(), max_requests=5, window_seconds=900)
        app = create_app(settings, dispatcher=dispatcher or FakeDispatcher(), rate_limiter=limiter)
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client, dispatcher):
    return make_client(dispatcher=dispatcher)
