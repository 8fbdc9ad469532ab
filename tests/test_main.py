import io
import json

import pytest
import websocket

import main
import relay
import relay_control
from errors import ConfigError
from thermabox import Thermabox
from tests.mocks.mock_hardware import MockElement, MockGPIO
from tests.mocks.mock_sensors import MockProbe


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(main.signal, "signal", lambda sig, handler: None)


def write_config(tmp_path, **overrides):
    doc = {
        "temperature": 45.0,
        "threshold": 0.5,
        "cutoff_temperature": 60.0,
        "heating_element": {"relay": {"pins": [22]}},
        "cooling_element": {"relay": {"pins": [23]}},
        "probe": {"type": "http", "name": "box", "url": "http://probe.local/temp"},
    }
    doc.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(doc))
    return str(path)


def fake_builder(built, temperature=45.0, stop_first=False):
    def build(config, stop_event=None):
        actions = []
        tbox = Thermabox(MockElement("heating", actions), MockElement("cooling", actions),
                         probe=MockProbe("box", temperature=temperature),
                         temperature=config.temperature, threshold=config.threshold,
                         cutoff_temperature=config.cutoff_temperature,
                         loop_interval=0.01, stop_event=stop_event)
        if stop_first:
            stop_event.set()
        built.append((config, tbox, actions))
        return tbox
    return build


def test_sensor_config():
    assert main.sensor_config("http://p/temp") == {
        "type": "http", "name": "thermabox-probe", "url": "http://p/temp"}
    assert main.sensor_config("wss://p/ws")["type"] == "ws"
    assert main.sensor_config("DHT22:4") == {"type": "dht22", "name": "thermabox-probe", "pin": 4}
    with pytest.raises(ConfigError):
        main.sensor_config("dht22:x")
    with pytest.raises(ConfigError):
        main.sensor_config("serial:/dev/ttyUSB0")


def test_missing_config_file(tmp_path):
    assert main.main([str(tmp_path / "missing.json")]) == 1


def test_no_probe_configured(tmp_path, monkeypatch):
    built = []
    monkeypatch.setattr(main, "build_thermabox", fake_builder(built))
    path = write_config(tmp_path, probe=None)
    assert main.main([path]) == 1
    assert built == []


def test_sensor_flag_overrides_probe(tmp_path, monkeypatch):
    built = []
    monkeypatch.setattr(main, "build_thermabox", fake_builder(built, stop_first=True))
    assert main.main([write_config(tmp_path), "-S", "ws://probe.local/ws"]) == 0
    config = built[0][0]
    assert config.probes.primary["type"] == "ws"


def test_clean_stop_deenergizes_and_closes(tmp_path, monkeypatch):
    built = []
    monkeypatch.setattr(main, "build_thermabox", fake_builder(built, stop_first=True))
    assert main.main([write_config(tmp_path)]) == 0
    _, tbox, actions = built[0]
    assert actions == ["off:heating", "off:cooling"]
    assert tbox.heating_element.relay.cleaned


def test_fatal_condition_exits_nonzero(tmp_path, monkeypatch):
    built = []
    monkeypatch.setattr(main, "build_thermabox", fake_builder(built, temperature=80.0))
    assert main.main([write_config(tmp_path), "-t", "40", "-T", "2"]) == 1
    _, tbox, actions = built[0]
    assert tbox.get_limits() == (40.0, 2.0)
    assert actions == ["off:heating", "off:cooling"]
    assert tbox.cooling_element.relay.cleaned


def test_negative_threshold_override(tmp_path, monkeypatch):
    built = []
    monkeypatch.setattr(main, "build_thermabox", fake_builder(built))
    assert main.main([write_config(tmp_path), "-T", "-1"]) == 1


def test_relay_control_toggles_per_line(monkeypatch):
    gpio = MockGPIO()
    monkeypatch.setattr(relay, "GPIO", gpio)
    assert relay_control.main(["22", "--active-high"], stream=io.StringIO("\n\n\n")) == 0
    assert [c[2] for c in gpio.writes(22)] == [gpio.HIGH, gpio.LOW, gpio.HIGH]
    assert gpio.cleaned == [[22]]


def test_relay_control_without_gpio(monkeypatch):
    monkeypatch.setattr(relay, "GPIO", None)
    assert relay_control.main([], stream=io.StringIO("")) == 1


def test_sensor_connect_failure_at_startup_releases_gpio(tmp_path, monkeypatch):
    gpio = MockGPIO()
    monkeypatch.setattr(relay, "GPIO", gpio)

    def refuse(url, timeout=None):
        raise ConnectionRefusedError("refused")
    monkeypatch.setattr(websocket, "create_connection", refuse)
    path = write_config(tmp_path, probe={"type": "ws", "name": "box", "url": "ws://probe.local/ws"})
    assert main.main([path]) == 1
    assert gpio.cleaned == [[22], [23]]
