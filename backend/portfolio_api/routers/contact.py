import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from portfolio_api.core.errors import RateLimited, SubmissionInvalid
from portfolio_api.core.mailer import MailDispatcher
from portfolio_api.core.rate_limit import RateLimiter
from portfolio_api.dependencies import get_client_id, get_dispatcher, get_rate_limiter
from portfolio_api.lib import responses
from portfolio_api.lib.validation import validate_submission

log = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api", tags=["contact"])

FORM_TYPES = {"application/x-www-form-urlencoded", "multipart/form-data"}
BODY_ERROR = "Request body must be valid JSON or form data"


async def _read_fields(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type in FORM_TYPES:
        form = await request.form()
        return {key: form.get(key) for key in form.keys()}

    raw = await request.body()
    if not raw.strip():
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object")
    return data


@router.post("/contact")
async def submit_contact(
    request: Request,
    dispatcher: MailDispatcher = Depends(get_dispatcher),
    limiter: RateLimiter = Depends(get_rate_limiter),
    client_id: str = Depends(get_client_id),
):
    try:
        fields = await _read_fields(request)
    except ValueError:
        raise SubmissionInvalid([BODY_ERROR]) from None

    try:
        submission = validate_submission(fields)
    except SubmissionInvalid as exc:
        log.info(f"[contact] invalid submission from {client_id}: {len(exc.errors)} error(s)")
        raise

    # the counter store may block on Redis
    decision = await asyncio.to_thread(limiter.check, client_id)
    if not decision.allowed:
        raise RateLimited(decision)

    # TransportError propagates to the handler registered in main
    result = await dispatcher.send(submission)
    log.info(f"[contact] delivered submission from {submission.email} via {result.transport} id={result.message_id}")

    resp = responses.sent(responses.utc_timestamp(submission.received_at))
    resp.headers.update(responses.rate_limit_headers(decision))
    return resp


@router.get("/contact")
async def contact_status():
    return {
        "success": True,
        "message": "Contact endpoint is working",
        "timestamp": responses.utc_timestamp(),
    }
