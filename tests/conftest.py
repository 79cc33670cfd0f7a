"""
Shared fixtures and fakes for the test-suite (no network, no real Redis, no browser)
"""
import json
import sys
from pathlib import Path

import pytest
import requests

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from crown.client import AccountClient
from crown.models import Account
from session.registry import SessionRegistry
from session.snapshot_store import SessionSnapshotStore
from storage.account_store import AccountStore

BASE_URL = "https://crown.test"
HOME_PAGE = "<html><script>top.ver = '2099-01-01-test';</script></html>"


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, cookies=None):
        self.text = text
        self.status_code = status_code
        self.cookies = cookies or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeHttpSession:
    """
    requests.Session stand-in routed by the form field "p"

    A route is a str/FakeResponse, a list of them (consumed in order, last
    one repeats), an exception to raise, or a callable taking the form data.
    """

    def __init__(self, routes=None, home_text: str = HOME_PAGE):
        self.routes = routes or {}
        self.home_text = home_text
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, timeout=None, proxies=None, params=None, data=None):
        data = dict(data or {})
        self.calls.append({"method": method, "url": url, "headers": dict(headers or {}),
                           "params": dict(params or {}), "data": data, "proxies": proxies})
        if method == "GET":
            return FakeResponse(self.home_text)
        route = self.routes.get(data.get("p"))
        if route is None:
            return FakeResponse("")
        if callable(route) and not isinstance(route, FakeResponse):
            result = route(data)
        elif isinstance(route, list):
            result = route.pop(0) if len(route) > 1 else route[0]
        else:
            result = route
        if isinstance(result, Exception):
            raise result
        return result if isinstance(result, FakeResponse) else FakeResponse(result)

    def posted(self, operation: str):
        return [call["data"] for call in self.calls if call["data"].get("p") == operation]

    def close(self):
        self.closed = True


class FakeRedis:
    """Minimal redis client: get/setex/ping, with optional failure injection"""

    def __init__(self, fail_with: Exception = None):
        self.store = {}
        self.ttls = {}
        self.fail_with = fail_with

    def ping(self):
        return True

    def get(self, key):
        if self.fail_with:
            raise self.fail_with
        return self.store.get(key)

    def setex(self, key, ttl, value):
        if self.fail_with:
            raise self.fail_with
        self.store[key] = value
        self.ttls[key] = ttl
        return True


class FakeClock:
    """Manual clock; sleep() advances it"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float):
        self.now += seconds


def xml(**fields) -> str:
    """<serverresponse> document with one leaf per field"""
    body = "".join(f"<{name}>{value}</{name}>" for name, value in fields.items())
    return f"<serverresponse>{body}</serverresponse>"


@pytest.fixture
def accounts_file(tmp_path):
    path = tmp_path / "accounts.json"
    path.write_text(json.dumps([
        {"account_id": "1", "username": "olduser", "password": "oldpass1", "passcode": None},
        {"account_id": "2", "username": "second", "password": "secret22", "enabled": False},
    ]), encoding="utf-8")
    return path


@pytest.fixture
def account_store(accounts_file):
    return AccountStore(str(accounts_file))


@pytest.fixture
def account(account_store):
    return account_store.get("1")


@pytest.fixture
def snapshot_store(tmp_path):
    return SessionSnapshotStore(str(tmp_path / "sessions.json"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def http():
    return FakeHttpSession()


@pytest.fixture
def make_registry(snapshot_store, clock):
    """Registry whose clients all talk to the given fake HTTP session"""
    def factory(http_session=None, client_factory=None):
        if client_factory is None:
            def client_factory(acc: Account):
                return AccountClient(acc, BASE_URL, http_session=http_session or FakeHttpSession())
        return SessionRegistry(client_factory, snapshot_store=snapshot_store, clock=clock)
    return factory
