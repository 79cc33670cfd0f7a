"""
Session heartbeat: balance refresh and session loss
"""
import requests

from auth.keep_alive import SessionHeartbeat

from conftest import FakeHttpSession, xml


def _online(make_registry, account, routes):
    http = FakeHttpSession(routes)
    registry = make_registry(http_session=http)
    client = registry.client_for(account)
    client.restore_session("uid-1", "sid=1")
    registry.establish(account, client)
    return registry


def test_balance_is_refreshed(make_registry, account, account_store, clock):
    registry = _online(make_registry, account, {"get_member_data": xml(cash="880.5", maxcredit="1000")})
    heartbeat = SessionHeartbeat(registry, account_store, clock=clock)
    assert heartbeat.beat_all() == {"1": True}
    account_store.reload()
    assert (account_store.get("1").balance, account_store.get("1").credit) == (880.5, 1000.0)
    assert registry.get("1").last_heartbeat == clock.now
    assert heartbeat.last_run_time == clock.now


def test_double_login_takes_the_session_offline(make_registry, account, account_store, clock, snapshot_store):
    registry = _online(make_registry, account, {"get_member_data": "doubleLogin"})
    heartbeat = SessionHeartbeat(registry, account_store, clock=clock)
    assert heartbeat.beat("1") is False
    assert not registry.is_online("1")
    assert snapshot_store.get("1") is None


def test_network_failure_keeps_the_session(make_registry, account, account_store, clock):
    registry = _online(make_registry, account,
                       {"get_member_data": requests.exceptions.ConnectionError("reset")})
    heartbeat = SessionHeartbeat(registry, account_store, clock=clock)
    assert heartbeat.beat("1") is True
    assert registry.is_online("1")


def test_offline_accounts_are_skipped(make_registry, account_store, clock):
    heartbeat = SessionHeartbeat(make_registry(), account_store, clock=clock)
    assert heartbeat.beat_all() == {}
    assert heartbeat.beat("1") is False


def test_start_and_stop(make_registry, account_store, clock):
    heartbeat = SessionHeartbeat(make_registry(), account_store, interval=60, clock=clock)
    heartbeat.start()
    assert heartbeat.running
    heartbeat.stop()
    assert not heartbeat.running
    assert not heartbeat.thread.is_alive()
