import asyncio
import logging

import pytest

from conftest import VALID, FakeDispatcher
from portfolio_api.core.errors import (
    TransportAuthError,
    TransportGenericError,
    TransportNetworkError,
)
from portfolio_api.core.rate_limit import MemoryCounterStore, RateLimiter


def test_valid_json_submission_is_sent(client, dispatcher):
    resp = client.post("/api/contact", json=VALID)

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["message"]
    assert data["timestamp"].endswith("Z")
    assert len(dispatcher.sent) == 1
    assert dispatcher.sent[0].email == "ada@example.com"
    assert resp.headers["RateLimit-Limit"] == "5"
    assert resp.headers["RateLimit-Remaining"] == "4"


def test_form_encoded_submission_is_sent(client, dispatcher):
    resp = client.post("/api/contact", data=VALID)
    assert resp.status_code == 200
    assert dispatcher.sent[0].name == "Ada Lovelace"


def test_invalid_submission_lists_every_error_and_is_not_sent(client, dispatcher):
    resp = client.post("/api/contact", json={"name": "", "email": "not-an-email", "message": "too short"})

    assert resp.status_code == 400
    data = resp.json()
    assert data["success"] is False
    assert data["message"] == "Please correct the following errors:"
    assert data["errors"] == [
        "Name is required",
        "Please provide a valid email address",
        "Message must be between 10 and 2000 characters",
    ]
    assert dispatcher.sent == []


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2, 3]"])
def test_unparsable_body_is_rejected(client, body):
    resp = client.post("/api/contact", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["errors"] == ["Request body must be valid JSON or form data"]


def test_sixth_submission_from_same_client_is_rate_limited(client, dispatcher):
    for _ in range(5):
        assert client.post("/api/contact", json=VALID).status_code == 200

    resp = client.post("/api/contact", json=VALID)

    assert resp.status_code == 429
    data = resp.json()
    assert data["success"] is False
    assert 0 < data["retryAfter"] <= 900
    assert resp.headers["Retry-After"] == str(data["retryAfter"])
    assert len(dispatcher.sent) == 5


def test_invalid_submissions_do_not_use_the_budget(client):
    for _ in range(10):
        assert client.post("/api/contact", json={"name": "x"}).status_code == 400
    for _ in range(5):
        assert client.post("/api/contact", json=VALID).status_code == 200


def test_forwarded_clients_are_limited_separately(client):
    for _ in range(5):
        client.post("/api/contact", json=VALID, headers={"X-Forwarded-For": "203.0.113.1"})
    blocked = client.post("/api/contact", json=VALID, headers={"X-Forwarded-For": "203.0.113.1"})
    other = client.post("/api/contact", json=VALID, headers={"X-Forwarded-For": "203.0.113.2"})
    assert blocked.status_code == 429
    assert other.status_code == 200


def test_disabled_rate_limit_admits_everything(make_client):
    limiter = RateLimiter(MemoryCounterStore(), max_requests=5, window_seconds=900, enabled=False)
    client = make_client(limiter=limiter)
    assert all(client.post("/api/contact", json=VALID).status_code == 200 for _ in range(8))


@pytest.mark.parametrize(
    "error",
    [
        TransportAuthError("535 bad credentials for secret-user", "smtp"),
        TransportNetworkError("getaddrinfo failed for smtp.internal", "smtp"),
        TransportGenericError("Resend returned 422: secret detail", "resend"),
    ],
)
def test_transport_failure_returns_generic_message(make_client, error):
    client = make_client(dispatcher=FakeDispatcher(error=error))
    resp = client.post("/api/contact", json=VALID)

    assert resp.status_code == 500
    data = resp.json()
    assert data["success"] is False
    assert data["message"].startswith("Sorry")
    for leaked in ("secret", "535", "422", "smtp", "Resend"):
        assert leaked not in data["message"]


def test_network_failure_advises_retry(make_client):
    client = make_client(dispatcher=FakeDispatcher(error=TransportNetworkError("timed out", "resend")))
    assert "try again in a few minutes" in client.post("/api/contact", json=VALID).json()["message"]


def test_failure_message_offers_fallback_address(make_client):
    client = make_client(
        dispatcher=FakeDispatcher(error=TransportGenericError("boom", "smtp")),
        contact_fallback_email="me@example.org",
    )
    message = client.post("/api/contact", json=VALID).json()["message"]
    assert message.endswith("or contact me directly at me@example.org.")


def test_contact_liveness_shape_is_stable(client):
    before = client.get("/api/contact")
    client.post("/api/contact", json=VALID)
    client.post("/api/contact", json={})
    after = client.get("/api/contact")

    assert before.status_code == after.status_code == 200
    assert set(before.json()) == set(after.json()) == {"success", "message", "timestamp"}
    assert before.json()["message"] == after.json()["message"] == "Contact endpoint is working"
    assert after.json()["success"] is True


def test_unhandled_error_is_generic_in_production(make_client):
    client = make_client(
        dispatcher=FakeDispatcher(error=RuntimeError("db password is hunter2")),
        environment="production",
    )
    resp = client.post("/api/contact", json=VALID)
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Something went wrong on our end"}


def test_unhandled_error_shows_detail_outside_production(make_client):
    client = make_client(
        dispatcher=FakeDispatcher(error=RuntimeError("template missing")),
        environment="development",
    )
    resp = client.post("/api/contact", json=VALID)
    assert resp.status_code == 500
    assert resp.json()["message"] == "template missing"


def test_production_errors_are_logged_without_traceback(make_client, caplog):
    client = make_client(dispatcher=FakeDispatcher(error=RuntimeError("db password is hunter2")), environment="production")
    with caplog.at_level(logging.INFO, logger="uvicorn.error"):
        resp = client.post("/api/contact", json=VALID)

    assert resp.status_code == 500
    errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert errors
    assert all(r.exc_info is None for r in errors)
    assert all("hunter2" not in r.getMessage() for r in errors)


@pytest.mark.parametrize("value", [{"x": "hello world there"}, ["hello", "world", "there"]])
def test_structured_values_are_rejected_not_stringified(client, dispatcher, value):
    resp = client.post("/api/contact", json={**VALID, "message": value})
    assert resp.status_code == 400
    assert resp.json()["errors"] == ["Message must be text"]
    assert dispatcher.sent == []


class LoopRecordingLimiter(RateLimiter):
    """Notes whether each check ran with an event loop on its thread."""

    def __init__(self):
        super().__init__(MemoryCounterStore(), max_requests=5, window_seconds=900)
        self.on_loop = []

    def check(self, identifier, now=None):
        try:
            asyncio.get_running_loop()
            self.on_loop.append(True)
        except RuntimeError:
            self.on_loop.append(False)
        return super().check(identifier, now=now)


def test_rate_limit_check_runs_off_the_event_loop(make_client):
    limiter = LoopRecordingLimiter()
    client = make_client(limiter=limiter)
    assert client.post("/api/contact", json=VALID).status_code == 200
    assert limiter.on_loop == [False]
