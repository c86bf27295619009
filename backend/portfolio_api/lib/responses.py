from datetime import datetime, timezone
from typing import List, Optional

from fastapi.responses import JSONResponse

from portfolio_api.core.errors import TransportError, TransportNetworkError
from portfolio_api.core.rate_limit import RateDecision

VALIDATION_MESSAGE = "Please correct the following errors:"
RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."
SUCCESS_MESSAGE = "Thank you! Your message has been sent successfully. I'll get back to you soon."
NETWORK_FAILURE_MESSAGE = "Sorry, we could not reach the email service. Please try again in a few minutes"
GENERIC_FAILURE_MESSAGE = "Sorry, something went wrong on our end. Please try again later"


def utc_timestamp(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return when.isoformat().replace("+00:00", "Z")


def envelope(success: bool, message: str, status_code: int = 200, **extra) -> JSONResponse:
    body = {"success": success, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body)


def rate_limit_headers(decision: RateDecision) -> dict:
    headers = {
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(decision.reset_after),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


def validation_failed(errors: List[str]) -> JSONResponse:
    return envelope(False, VALIDATION_MESSAGE, 400, errors=list(errors))


def rate_limited(decision: RateDecision) -> JSONResponse:
    resp = envelope(False, RATE_LIMIT_MESSAGE, 429, retryAfter=decision.retry_after)
    resp.headers.update(rate_limit_headers(decision))
    return resp


def failure_message(exc: TransportError, fallback_email: Optional[str] = None) -> str:
    """Client-facing text for a failed dispatch. Never includes provider detail."""
    base = NETWORK_FAILURE_MESSAGE if isinstance(exc, TransportNetworkError) else GENERIC_FAILURE_MESSAGE
    if fallback_email:
        return f"{base} or contact me directly at {fallback_email}."
    return f"{base}."


def dispatch_failed(exc: TransportError, fallback_email: Optional[str] = None) -> JSONResponse:
    return envelope(False, failure_message(exc, fallback_email), 500)


def sent(timestamp: Optional[str] = None) -> JSONResponse:
    return envelope(True, SUCCESS_MESSAGE, 200, timestamp=timestamp or utc_timestamp())
