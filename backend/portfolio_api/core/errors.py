from typing import List


class ContactError(Exception):
    """Base class for every outcome that stops a contact submission."""


class SubmissionInvalid(ContactError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class RateLimited(ContactError):
    def __init__(self, decision):
        super().__init__(f"rate limit exceeded, retry after {decision.retry_after}s")
        self.decision = decision

    @property
    def retry_after(self) -> int:
        return self.decision.retry_after


class TransportError(ContactError):
    """Mail delivery failed. The message is for server logs only."""

    kind = "generic"

    def __init__(self, message: str, transport: str):
        super().__init__(message)
        self.transport = transport


class TransportAuthError(TransportError):
    kind = "auth"


class TransportNetworkError(TransportError):
    kind = "network"


class TransportGenericError(TransportError):
    kind = "generic"
