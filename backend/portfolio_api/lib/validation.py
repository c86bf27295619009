from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

import regex as re
from email_validator import EmailNotValidError, validate_email

from portfolio_api.core.errors import SubmissionInvalid

NAME_MIN, NAME_MAX = 2, 100
EMAIL_MAX = 254
MESSAGE_MIN, MESSAGE_MAX = 10, 2000

# letters from any script, plus the punctuation people put in names
NAME_RE = re.compile(r"^[\p{L} \-'.]+$")
MESSAGE_RE = re.compile(r"^[\p{L}\p{N}\s.,!?\-@#$%^&*()_+=\[\]{}|\\:\";'<>/~`]+$")


@dataclass(frozen=True)
class Submission:
    name: str
    email: str
    message: str
    received_at: datetime


SCALARS = (str, int, float)


def _clean(value: Any) -> str:
    if value is None or not isinstance(value, SCALARS):
        return ""
    return str(value).strip()


def _not_text(raw: Mapping[str, Any], field: str) -> bool:
    value = raw.get(field)
    return value is not None and not isinstance(value, SCALARS)


def _normalize_email(email: str) -> Optional[str]:
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError:
        return None


def _check_name(name: str) -> List[str]:
    if not name:
        return ["Name is required"]
    errors = []
    if not NAME_MIN <= len(name) <= NAME_MAX:
        errors.append(f"Name must be between {NAME_MIN} and {NAME_MAX} characters")
    if not NAME_RE.match(name):
        errors.append("Name contains invalid characters")
    return errors


def _check_email(email: str) -> List[str]:
    if not email:
        return ["Email is required"]
    if len(email) > EMAIL_MAX:
        return ["Email address is too long"]
    if _normalize_email(email) is None:
        return ["Please provide a valid email address"]
    return []


def _check_message(message: str) -> List[str]:
    if not message:
        return ["Message is required"]
    errors = []
    if not MESSAGE_MIN <= len(message) <= MESSAGE_MAX:
        errors.append(f"Message must be between {MESSAGE_MIN} and {MESSAGE_MAX} characters")
    if not MESSAGE_RE.match(message):
        errors.append("Message contains invalid characters")
    return errors


def check_submission(raw: Mapping[str, Any]) -> List[str]:
    """Every rule the raw form values break, in field order. Empty when valid."""
    errors: List[str] = []
    for field, check in (("name", _check_name), ("email", _check_email), ("message", _check_message)):
        # objects and arrays are never coerced into text
        if _not_text(raw, field):
            errors.append(f"{field.capitalize()} must be text")
        else:
            errors.extend(check(_clean(raw.get(field))))
    return errors


def validate_submission(raw: Mapping[str, Any], now: Optional[datetime] = None) -> Submission:
    errors = check_submission(raw)
    if errors:
        raise SubmissionInvalid(errors)

    email = _clean(raw.get("email"))
    return Submission(
        name=_clean(raw.get("name")),
        email=_normalize_email(email) or email,
        message=_clean(raw.get("message")),
        received_at=now or datetime.now(timezone.utc),
    )
