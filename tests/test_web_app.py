"""
Status API routes
"""
from crown.models import MarketSnapshot
from services.fetch_loop import PublishedSnapshot
from web.app import create_app


class FakeCore:
    def online_accounts(self):
        return ["1"]

    def is_online(self, account_id):
        return account_id == "1"


class FakeFetchLoop:
    def __init__(self):
        matches = [MarketSnapshot("9001", "Premier League", "Arsenal", "Chelsea", running=True, showtype="live"),
                   MarketSnapshot("9002", "Serie A", "Roma", "Lazio", showtype="today")]
        self.snapshot = PublishedSnapshot(matches, 123.0, {"live": 1, "today": 1})

    def latest(self):
        return self.snapshot

    def stats(self):
        return {"ticks": 3}


def test_status():
    client = create_app(FakeCore(), FakeFetchLoop()).test_client()
    body = client.get("/api/status").get_json()
    assert body == {"online_accounts": ["1"], "fetch_loop": {"ticks": 3}}


def test_snapshot_filters():
    client = create_app(FakeCore(), FakeFetchLoop()).test_client()
    body = client.get("/api/snapshot?showtype=today").get_json()
    assert body["matchCount"] == 1
    assert body["matches"][0]["matchId"] == "9002"
    assert client.get("/api/snapshot?running=true&match_ids=9001,9002").get_json()["matchCount"] == 1
    assert client.get("/api/snapshot?league=Premier").get_json()["generatedAt"] == 123.0


def test_snapshot_without_fetch_loop():
    response = create_app(FakeCore()).test_client().get("/api/snapshot")
    assert response.status_code == 404


def test_account_online():
    client = create_app(FakeCore()).test_client()
    assert client.get("/api/accounts/1/online").get_json()["online"] is True
    assert client.get("/api/accounts/2/online").get_json()["online"] is False
