from __future__ import annotations

import pytest
import requests

from clubsync.importer.adapters.wildapricot.auth import AuthContext
from clubsync.importer.adapters.wildapricot.errors import (
    ApiErrorKind,
    AuthenticationError,
    NonTransientApiError,
    RateLimitedError,
    TransientApiError,
)
from clubsync.importer.adapters.wildapricot.transport import (
    HttpExecutor,
    Paginator,
    compute_backoff_delay_ms,
    extract_items,
    parse_retry_after,
)

AUTH_URL = "https://oauth.example.test/auth/token"
BASE_URL = "https://api.example.test/v2.2"


class FakeResponse:
    def __init__(self, *, status_code=200, json_data=None, text: str = "", headers=None):
        self.status_code = status_code
        self._json_data = json_data if json_data is not None else {}
        self.text = text
        self.headers = headers or {}
        self.content = b"{}"

    def json(self):
        return self._json_data


class FakeSession:
    """Serve queued API responses; token exchanges always succeed unless told otherwise."""

    def __init__(self, responses=None, *, token_responses=None):
        self.responses = list(responses or [])
        self.token_responses = list(token_responses or [])
        self.request_calls = []
        self.post_calls = []

    def post(self, url, auth=None, data=None, headers=None, timeout=None):
        self.post_calls.append((url, auth, data))
        if self.token_responses:
            return self.token_responses.pop(0)
        return FakeResponse(json_data={"access_token": f"token-{len(self.post_calls)}", "expires_in": 1800})

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.request_calls.append({"method": method, "url": url, "params": params, "headers": headers})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def build_executor(session, *, max_retries=3, clock=None, sleeps=None):
    sleeps = sleeps if sleeps is not None else []
    auth = AuthContext(api_key="secret", auth_url=AUTH_URL, session=session, clock=clock or FakeClock())
    executor = HttpExecutor(
        auth=auth,
        session=session,
        base_url=BASE_URL,
        max_retries=max_retries,
        retry_base_delay_ms=1000,
        retry_max_delay_ms=30000,
        sleep_fn=sleeps.append,
        random_fn=lambda: 0.5,
    )
    return executor, sleeps


def test_token_is_cached_until_expiry_buffer():
    clock = FakeClock()
    session = FakeSession()
    auth = AuthContext(api_key="secret", auth_url=AUTH_URL, session=session, expiry_buffer_ms=60000, clock=clock)

    first = auth.get_token()
    second = auth.get_token()
    assert first.ok and second.ok
    assert first.value == second.value
    assert auth.exchange_count == 1
    url, basic_auth, form = session.post_calls[0]
    assert url == AUTH_URL
    assert basic_auth == ("APIKEY", "secret")
    assert form == {"grant_type": "client_credentials", "scope": "auto"}

    # 1800s lifetime minus the 60s buffer
    clock.now += 1739
    assert auth.get_token().value == first.value
    clock.now += 2
    assert auth.get_token().value != first.value
    assert auth.exchange_count == 2


def test_token_response_without_access_token_is_auth_failure():
    session = FakeSession(token_responses=[FakeResponse(json_data={"expires_in": 1800})])
    auth = AuthContext(api_key="secret", auth_url=AUTH_URL, session=session)

    result = auth.get_token()

    assert not result.ok
    assert result.error.kind is ApiErrorKind.AUTH_FAILED
    with pytest.raises(AuthenticationError):
        result.unwrap()


def test_missing_api_key_fails_without_network():
    session = FakeSession()
    auth = AuthContext(api_key="", auth_url=AUTH_URL, session=session)

    result = auth.get_token()

    assert result.error.kind is ApiErrorKind.AUTH_FAILED
    assert session.post_calls == []


def test_request_sends_bearer_and_accept_headers():
    session = FakeSession([FakeResponse(json_data={"Id": 1})])
    executor, _ = build_executor(session)

    result = executor.request("GET", "/accounts/1/events/1")

    assert result.ok and result.value == {"Id": 1}
    call = session.request_calls[0]
    assert call["url"] == f"{BASE_URL}/accounts/1/events/1"
    assert call["headers"]["Authorization"] == "Bearer token-1"
    assert call["headers"]["Accept"] == "application/json"


def test_401_refreshes_token_once_then_succeeds():
    session = FakeSession([FakeResponse(status_code=401), FakeResponse(json_data={"ok": True})])
    executor, sleeps = build_executor(session)

    result = executor.request("GET", "/accounts/1/contacts")

    assert result.ok
    assert len(session.post_calls) == 2
    assert session.request_calls[1]["headers"]["Authorization"] == "Bearer token-2"
    assert sleeps == []


def test_second_401_is_auth_failure():
    session = FakeSession([FakeResponse(status_code=401), FakeResponse(status_code=401)])
    executor, _ = build_executor(session)

    result = executor.request("GET", "/accounts/1/contacts")

    assert result.error.kind is ApiErrorKind.AUTH_FAILED
    assert result.error.status_code == 401
    assert len(session.request_calls) == 2


def test_429_honours_retry_after_header():
    session = FakeSession(
        [
            FakeResponse(status_code=429, headers={"Retry-After": "7"}),
            FakeResponse(status_code=429),
            FakeResponse(json_data={"Events": []}),
        ]
    )
    executor, sleeps = build_executor(session)

    result = executor.request("GET", "/accounts/1/events")

    assert result.ok
    assert sleeps == [7, 60]


def test_429_past_retry_budget_is_rate_limited():
    session = FakeSession([FakeResponse(status_code=429, headers={"Retry-After": "1"}) for _ in range(4)])
    executor, sleeps = build_executor(session, max_retries=3)

    result = executor.request("GET", "/accounts/1/events")

    assert result.error.kind is ApiErrorKind.RATE_LIMITED
    assert len(session.request_calls) == 4
    assert len(sleeps) == 3
    with pytest.raises(RateLimitedError):
        result.unwrap()


def test_5xx_backoff_is_bounded_and_capped():
    session = FakeSession([FakeResponse(status_code=503, text="down") for _ in range(4)])
    executor, sleeps = build_executor(session, max_retries=3)

    result = executor.request("GET", "/accounts/1/events")

    assert result.error.kind is ApiErrorKind.API_ERROR
    assert result.error.status_code == 503
    assert result.error.is_transient
    # base * 2^attempt + 500ms jitter
    assert sleeps == [1.5, 2.5, 4.5]
    with pytest.raises(TransientApiError):
        result.unwrap()


def test_timeout_retries_then_reports_timeout():
    session = FakeSession([requests.Timeout("slow"), requests.Timeout("slow")])
    executor, sleeps = build_executor(session, max_retries=1)

    result = executor.request("GET", "/accounts/1/events")

    assert result.error.kind is ApiErrorKind.TIMEOUT
    assert len(sleeps) == 1


def test_other_4xx_fails_immediately():
    session = FakeSession([FakeResponse(status_code=404, text="missing")])
    executor, sleeps = build_executor(session)

    result = executor.request("GET", "/accounts/1/events/99")

    assert result.error.status_code == 404
    assert sleeps == []
    with pytest.raises(NonTransientApiError):
        result.unwrap()


def test_connection_error_is_reported():
    session = FakeSession([requests.ConnectionError("refused")])
    executor, _ = build_executor(session)

    result = executor.request("GET", "/accounts/1/events")

    assert result.error.kind is ApiErrorKind.CONNECTION_FAILED


def test_paginator_walks_until_short_page():
    session = FakeSession(
        [
            FakeResponse(json_data={"Events": [{"Id": 1}, {"Id": 2}]}),
            FakeResponse(json_data={"Events": [{"Id": 3}, {"Id": 4}]}),
            FakeResponse(json_data={"Events": [{"Id": 5}]}),
        ]
    )
    executor, _ = build_executor(session)
    paginator = Paginator(executor, page_size=2)

    result = paginator.fetch_all("/accounts/1/events", {"$filter": "StartDate ge 2024-01-01"}, items_key="Events")

    assert [item["Id"] for item in result.value] == [1, 2, 3, 4, 5]
    skips = [call["params"]["$skip"] for call in session.request_calls]
    assert skips == [0, 2, 4]
    assert all(call["params"]["$top"] == 2 for call in session.request_calls)
    assert session.request_calls[0]["params"]["$filter"] == "StartDate ge 2024-01-01"


def test_paginator_stops_on_empty_page():
    session = FakeSession([FakeResponse(json_data={"Items": [{"Id": 1}]}), FakeResponse(json_data={"Items": []})])
    executor, _ = build_executor(session)

    result = Paginator(executor, page_size=1).fetch_all("/accounts/1/membershiplevels")

    assert result.value == [{"Id": 1}]
    assert len(session.request_calls) == 2


def test_paginator_accepts_bare_list_once():
    session = FakeSession([FakeResponse(json_data=[{"Id": 1}, {"Id": 2}])])
    executor, _ = build_executor(session)

    result = Paginator(executor, page_size=2).fetch_all("/accounts/1/eventregistrations", {"eventId": 5})

    assert len(result.value) == 2
    assert len(session.request_calls) == 1


def test_paginator_propagates_errors():
    session = FakeSession([FakeResponse(json_data={"Items": [{"Id": 1}]}), FakeResponse(status_code=400)])
    executor, _ = build_executor(session)

    result = Paginator(executor, page_size=1).fetch_all("/accounts/1/membershiplevels")

    assert not result.ok
    assert result.error.status_code == 400


@pytest.mark.parametrize(
    "payload,key,expected",
    [
        ({"Contacts": [{"Id": 1}]}, None, [{"Id": 1}]),
        ({"Items": [], "Events": [{"Id": 2}]}, None, [{"Id": 2}]),
        ({"Custom": [{"Id": 3}]}, "Custom", [{"Id": 3}]),
        ([{"Id": 4}], None, [{"Id": 4}]),
        ({"Unrelated": 1}, None, []),
        (None, None, []),
    ],
)
def test_extract_items_locations(payload, key, expected):
    assert extract_items(payload, key) == expected


def test_retry_helpers():
    assert parse_retry_after(None) == 60
    assert parse_retry_after("abc") == 60
    assert parse_retry_after("12") == 12
    assert compute_backoff_delay_ms(10, base_delay_ms=1000, max_delay_ms=30000, random_fn=lambda: 0.0) == 30000
    assert compute_backoff_delay_ms(0, base_delay_ms=1000, max_delay_ms=30000, random_fn=lambda: 0.25) == 1250
