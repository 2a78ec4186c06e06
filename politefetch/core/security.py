import hmac
from collections.abc import Mapping

from politefetch.core.config import Settings
from politefetch.core.errors import AuthorizationError, OperationalDisabledError


def authorize_invocation(settings: Settings, headers: Mapping[str, str]) -> None:
    """Reject the trigger unless it carries the configured bearer token.

    In production the request must also come from the scheduler or carry the
    internal-run header; ad hoc calls are refused even with a valid token.
    """
    token = _bearer_token(headers.get("authorization"))
    expected = settings.scraper_bearer_token
    if not expected or not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError("unauthorized", status_code=401)

    if settings.is_production:
        scheduler_run = headers.get(settings.scheduler_header)
        internal_run = headers.get(settings.internal_run_header)
        if not scheduler_run and not internal_run:
            raise AuthorizationError("forbidden", status_code=403)


def check_kill_switch(settings: Settings) -> None:
    if settings.scraper_disabled:
        raise OperationalDisabledError("Service temporarily disabled")


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", maxsplit=1)[1].strip()
    return token or None
