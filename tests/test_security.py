from __future__ import annotations

import pytest

from politefetch.core.errors import AuthorizationError, OperationalDisabledError
from politefetch.core.security import authorize_invocation, check_kill_switch


def test_authorize_accepts_matching_bearer_token(make_settings) -> None:
    authorize_invocation(make_settings(), {"authorization": "Bearer test-token"})


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer wrong", "Basic test-token", "test-token"])
def test_authorize_rejects_bad_credentials(make_settings, header) -> None:
    headers = {} if header is None else {"authorization": header}
    with pytest.raises(AuthorizationError) as excinfo:
        authorize_invocation(make_settings(), headers)
    assert excinfo.value.status_code == 401


def test_production_requires_invocation_header(make_settings) -> None:
    settings = make_settings(environment="Production")
    with pytest.raises(AuthorizationError) as excinfo:
        authorize_invocation(settings, {"authorization": "Bearer test-token"})
    assert excinfo.value.status_code == 403

    authorize_invocation(settings, {"authorization": "Bearer test-token", "X-Internal-Run": "1"})


def test_kill_switch(make_settings) -> None:
    check_kill_switch(make_settings())
    with pytest.raises(OperationalDisabledError):
        check_kill_switch(make_settings(scraper_disabled=True))
