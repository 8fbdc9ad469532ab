import pytest

import relay
from element import Element
from errors import ToggleDelayError
from relay import Relay
from tests.mocks.mock_hardware import FakeClock, MockGPIO


@pytest.fixture
def gpio(monkeypatch):
    mock = MockGPIO()
    monkeypatch.setattr(relay, "GPIO", mock)
    return mock


def make_element(toggle_delay=0.0):
    clock = FakeClock()
    element = Element(Relay(True, [17], poll_interval=0), toggle_delay=toggle_delay,
                      name="heating", clock=clock)
    return element, clock


def test_first_on_is_allowed(gpio):
    element, _ = make_element(toggle_delay=30)
    element.on()
    assert element.is_on()


def test_on_within_delay_raises_without_touching_relay(gpio):
    element, clock = make_element(toggle_delay=30)
    element.on()
    element.off()
    writes = len(gpio.writes(17))
    clock.advance(10)
    with pytest.raises(ToggleDelayError):
        element.on()
    assert len(gpio.writes(17)) == writes
    assert not element.is_on()


def test_on_after_delay_reaches_relay(gpio):
    element, clock = make_element(toggle_delay=30)
    element.off()
    clock.advance(31)
    element.on()
    assert element.is_on()


def test_off_always_permitted_and_restarts_cooldown(gpio):
    element, clock = make_element(toggle_delay=30)
    element.off()
    clock.advance(25)
    element.off()
    clock.advance(10)
    with pytest.raises(ToggleDelayError):
        element.on()


def test_no_delay_configured(gpio):
    element, _ = make_element()
    element.off()
    element.on()
    assert element.is_on()


def test_toggle(gpio):
    element, _ = make_element()
    element.off()
    element.toggle()
    assert element.is_on()
    element.toggle()
    assert not element.is_on()
