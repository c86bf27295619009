# backend/portfolio_api/dependencies.py
from fastapi import Request

from portfolio_api.core.mailer import MailDispatcher
from portfolio_api.core.rate_limit import RateLimiter, client_identifier
from portfolio_api.core.settings import Settings


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> MailDispatcher:
    return request.app.state.dispatcher


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_client_id(request: Request) -> str:
    return client_identifier(request, trust_proxy=request.app.state.settings.trust_proxy)
