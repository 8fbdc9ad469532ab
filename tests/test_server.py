import pytest

import server
from config_loader import WebserverConfig
from interfaces import State, ThermaboxState
from server import StatePublisher, ThermaboxServer
from thermabox import Thermabox
from tests.mocks.mock_hardware import FakeClock, MockElement
from tests.mocks.mock_sensors import MockProbe


def create_env(api_key="key", forward="", publish=""):
    actions = []
    probe = MockProbe("box", temperature=44.25)
    clock = FakeClock()
    tbox = Thermabox(MockElement("heating", actions), MockElement("cooling", actions),
                     probe=probe, temperature=45.0, threshold=0.5, clock=clock)
    config = WebserverConfig(api_key=api_key, forward=forward, publish=publish)
    srv = ThermaboxServer(tbox, config)
    return tbox, probe, clock, actions, srv


class Recorder:
    def __init__(self, status_code=200):
        self.status_code = status_code
        self.posts = []

    def __call__(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return self


def test_read_endpoints():
    tbox, probe, _, _, srv = create_env()
    tbox.add_extra_probe(MockProbe("ambient", temperature=21.0))
    client = srv.app.test_client()

    res = client.get("/get-temperature/")
    assert res.status_code == 200
    assert res.get_data(as_text=True) == "44.25"

    res = client.get("/get-all-temperatures/")
    assert res.get_json() == {"box": {"temp": 44.25}, "ambient": {"temp": 21.0}}

    res = client.get("/get-limits/")
    assert res.get_json() == {"temperature": 45.0, "threshold": 0.5}

    res = client.get("/get-state/")
    assert res.get_data(as_text=True) == "unknown"
    assert res.headers["Access-Control-Allow-Origin"] == "*"


def test_get_temperature_probe_failure():
    _, probe, _, _, srv = create_env()
    probe.error = "timeout"
    res = srv.app.test_client().get("/get-temperature/")
    assert res.status_code == 503
    assert "timeout" in res.get_data(as_text=True)


def test_set_limits_requires_key():
    tbox, _, _, _, srv = create_env()
    client = srv.app.test_client()
    payload = {"temperature": 50, "threshold": 1}

    res = client.post("/set-limits/", json=payload, headers={"X-API-Key": "bad"})
    assert res.status_code == 401
    assert tbox.get_limits() == (45.0, 0.5)

    res = client.post("/set-limits/", json=payload, headers={"X-API-Key": "key"})
    assert res.status_code == 200
    assert tbox.get_limits() == (50.0, 1.0)


def test_set_limits_accepts_form_data_without_key():
    tbox, _, _, _, srv = create_env(api_key=None)
    res = srv.app.test_client().post("/set-limits/", data={"temperature": "40.5", "threshold": "0.25"})
    assert res.status_code == 200
    assert tbox.get_limits() == (40.5, 0.25)


@pytest.mark.parametrize("payload", [
    {"temperature": 50},
    {"temperature": "hot", "threshold": 1},
    {"temperature": 50, "threshold": -1},
])
def test_set_limits_rejects_bad_values(payload):
    tbox, _, _, _, srv = create_env(api_key=None)
    res = srv.app.test_client().post("/set-limits/", json=payload)
    assert res.status_code == 400
    assert tbox.get_limits() == (45.0, 0.5)


def test_set_limits_forwards(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(server.requests, "post", recorder)
    _, _, _, _, srv = create_env(api_key=None, forward="http://peer.local/set-limits/")
    srv.app.test_client().post("/set-limits/", json={"temperature": 42, "threshold": 0.5})
    assert recorder.posts == [("http://peer.local/set-limits/", {"temperature": 42.0, "threshold": 0.5})]


def test_disable_and_enable():
    tbox, _, _, actions, srv = create_env()
    client = srv.app.test_client()
    headers = {"X-API-Key": "key"}

    assert client.post("/disable-thermabox/").status_code == 401
    res = client.post("/disable-thermabox/", headers=headers)
    assert res.get_json() == {"disabled": True}
    assert tbox.is_disabled()
    assert actions == ["off:heating", "off:cooling"]

    res = client.post("/enable-thermabox/", headers=headers)
    assert res.get_json() == {"disabled": False}
    assert not tbox.is_disabled()


def test_unknown_route_is_404():
    _, _, _, _, srv = create_env()
    client = srv.app.test_client()
    assert client.get("/nope").status_code == 404
    assert client.get("/set-limits/").status_code == 405


def test_state_endpoint_serves_latest_snapshot():
    tbox, _, _, _, srv = create_env()
    client = srv.app.test_client()
    assert client.get("/state").status_code == 404

    tbox.step()
    snapshot = srv.publisher.queue.get(timeout=2)
    srv.publisher.handle(snapshot)

    data = client.get("/state").get_json()
    assert data["temperature"] == 44.25
    assert data["state"] == "heating_up"
    assert data["extras"] == {"box": {"temp": 44.25}}


def test_healthz_reports_stale_readings():
    tbox, _, clock, _, srv = create_env()
    client = srv.app.test_client()
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"

    clock.advance(tbox.probe_grace_sec + 1)
    res = client.get("/healthz")
    assert res.status_code == 503
    assert res.get_json()["status"] == "error"


def test_publisher_posts_snapshots(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(server.requests, "post", recorder)
    publisher = StatePublisher("http://collector.local/state")
    snapshot = ThermaboxState(45.0, 1700000000000, State.STABLE, {"box": {"temp": 45.0}})
    publisher.handle(snapshot)
    assert publisher.latest is snapshot
    assert recorder.posts == [("http://collector.local/state", snapshot.to_dict())]


def test_publisher_survives_bad_status(monkeypatch):
    monkeypatch.setattr(server.requests, "post", Recorder(status_code=500))
    publisher = StatePublisher("http://collector.local/state")
    snapshot = ThermaboxState(45.0, 1, State.STABLE, {})
    publisher.handle(snapshot)
    assert publisher.latest is snapshot
