"""
Test suite for HWAccessory.

Tests cover:
- Initialization and identity accessors
- set_on / set_brightness transitions and the outbound callback
- Non-dimmable outputs staying binary
- update_brightness reporting to the sinks without reaching the callback
- Validation of brightness and on values
- The on/brightness invariant with commands and reports on separate threads
"""

import threading
import pytest
from unittest.mock import Mock, call
from nodes.HWAccessory import (
    HWAccessory,
    AccessoryIdentity,
    DimmerState,
    InvalidBrightness,
    validate_brightness,
    ACCESSORY_INFO,
    OFF,
    FULL,
)


def make_accessory(dimmable=True, **kwargs):
    """Create an HWAccessory with a mocked logger."""
    kwargs.setdefault("log", Mock())
    return HWAccessory("Kitchen", "kitchen", "12", dimmable, **kwargs)


def assert_invariant(accessory):
    state = accessory.state
    assert state.on == (state.brightness > OFF)


class TestHWAccessoryInitialization:
    """Tests for construction and identity."""

    def test_initial_state_is_off(self):
        accessory = make_accessory()

        assert accessory.get_on() is False
        assert accessory.get_brightness() == OFF
        assert accessory.state == DimmerState(False, OFF)

    def test_identity_accessors(self):
        accessory = make_accessory(dimmable=False)

        assert accessory.get_name() == "Kitchen"
        assert accessory.get_uuid() == "kitchen"
        assert accessory.get_integration_id() == "12"
        assert accessory.get_is_dimmable() is False
        assert accessory.identity == AccessoryIdentity("Kitchen", "kitchen", "12", False)

    def test_integration_id_stored_as_string(self):
        accessory = HWAccessory("Hall", "hall", 7, True, log=Mock())

        assert accessory.get_integration_id() == "7"

    def test_identity_is_immutable(self):
        accessory = make_accessory()

        with pytest.raises(AttributeError):
            accessory.identity.name = "Other"

    def test_get_info(self):
        info = make_accessory().get_info()

        assert info["manufacturer"] == ACCESSORY_INFO["manufacturer"]
        assert info["model"] == "Homeworks Plugin"
        assert info["name"] == "Kitchen"

    def test_state_is_a_copy(self):
        accessory = make_accessory()

        snapshot = accessory.state
        snapshot.brightness = 50

        assert accessory.get_brightness() == OFF


class TestHWAccessorySetOn:
    """Tests for set_on."""

    def test_set_on_true_goes_full(self):
        callback = Mock()
        accessory = make_accessory(callback=callback)

        accessory.set_on(True)

        assert accessory.get_on() is True
        assert accessory.get_brightness() == FULL
        callback.assert_called_once_with(FULL, True, accessory)

    def test_set_on_false_goes_off(self):
        callback = Mock()
        accessory = make_accessory(callback=callback)
        accessory.set_brightness(40)
        callback.reset_mock()

        accessory.set_on(False)

        assert accessory.get_on() is False
        assert accessory.get_brightness() == OFF
        callback.assert_called_once_with(OFF, True, accessory)

    def test_set_on_from_partial_level_goes_full(self):
        accessory = make_accessory(callback=Mock())
        accessory.set_brightness(30)

        accessory.set_on(True)

        assert accessory.get_brightness() == FULL

    def test_set_on_rejects_non_bool(self):
        callback = Mock()
        accessory = make_accessory(callback=callback)

        with pytest.raises(TypeError):
            accessory.set_on(1)

        callback.assert_not_called()
        assert accessory.state == DimmerState(False, OFF)

    def test_set_on_without_callback_applies_and_warns(self):
        log = Mock()
        accessory = make_accessory(log=log)

        accessory.set_on(True)

        assert accessory.get_brightness() == FULL
        log.warning.assert_called_once()

    def test_set_on_does_not_touch_sinks(self):
        on_changed = Mock()
        brightness_changed = Mock()
        accessory = make_accessory(
            callback=Mock(), on_changed=on_changed, brightness_changed=brightness_changed
        )

        accessory.set_on(True)

        on_changed.assert_not_called()
        brightness_changed.assert_not_called()


class TestHWAccessorySetBrightnessDimmable:
    """Tests for set_brightness on a dimmable output."""

    @pytest.fixture
    def callback(self):
        return Mock()

    @pytest.fixture
    def accessory(self, callback):
        return make_accessory(callback=callback)

    def test_partial_level(self, accessory, callback):
        accessory.set_brightness(60)

        assert accessory.get_brightness() == 60
        assert accessory.get_on() is True
        callback.assert_called_once_with(60, True, accessory)

    def test_zero_turns_off(self, accessory, callback):
        accessory.set_brightness(60)
        accessory.set_brightness(0)

        assert accessory.get_brightness() == OFF
        assert accessory.get_on() is False
        assert callback.call_args_list[-1] == call(OFF, True, accessory)

    @pytest.mark.parametrize("level", [1, 45, 99, 100])
    def test_levels_pass_through(self, accessory, level):
        accessory.set_brightness(level)

        assert accessory.get_brightness() == level
        assert_invariant(accessory)

    @pytest.mark.parametrize("level", [-1, 101, 255])
    def test_out_of_range_rejected(self, accessory, callback, level):
        accessory.set_brightness(20)
        callback.reset_mock()

        with pytest.raises(InvalidBrightness):
            accessory.set_brightness(level)

        assert accessory.get_brightness() == 20
        callback.assert_not_called()

    @pytest.mark.parametrize("level", [50.5, "50", None, True])
    def test_non_int_rejected(self, accessory, level):
        with pytest.raises(InvalidBrightness):
            accessory.set_brightness(level)


class TestHWAccessorySetBrightnessNonDimmable:
    """Tests for set_brightness on a relay output."""

    @pytest.fixture
    def callback(self):
        return Mock()

    @pytest.fixture
    def relay(self, callback):
        return make_accessory(dimmable=False, callback=callback)

    def test_positive_while_off_goes_full(self, relay, callback):
        relay.set_brightness(45)

        assert relay.get_brightness() == FULL
        assert relay.get_on() is True
        callback.assert_called_once_with(FULL, False, relay)

    def test_zero_while_off_stays_off(self, relay, callback):
        relay.set_brightness(0)

        assert relay.get_brightness() == OFF
        assert relay.get_on() is False
        callback.assert_called_once_with(OFF, False, relay)

    def test_positive_while_on_stays_full(self, relay):
        relay.set_on(True)

        relay.set_brightness(10)

        assert relay.get_brightness() == FULL

    def test_zero_while_on_stays_full(self, relay):
        relay.set_on(True)

        relay.set_brightness(0)

        assert relay.get_brightness() == FULL
        assert relay.get_on() is True

    def test_scenario_on_then_off(self, relay, callback):
        relay.set_brightness(45)
        assert relay.state == DimmerState(True, FULL)

        relay.set_on(False)
        assert relay.state == DimmerState(False, OFF)

        assert callback.call_args_list == [
            call(FULL, False, relay),
            call(OFF, False, relay),
        ]


class TestHWAccessoryUpdateBrightness:
    """Tests for levels reported by the processor."""

    @pytest.fixture
    def sinks(self):
        return Mock(), Mock()

    @pytest.fixture
    def callback(self):
        return Mock()

    @pytest.fixture
    def accessory(self, callback, sinks):
        on_changed, brightness_changed = sinks
        return make_accessory(
            callback=callback, on_changed=on_changed, brightness_changed=brightness_changed
        )

    def test_report_notifies_sinks(self, accessory, sinks, callback):
        on_changed, brightness_changed = sinks

        accessory.update_brightness(30)

        assert accessory.state == DimmerState(True, 30)
        on_changed.assert_called_once_with(True)
        brightness_changed.assert_called_once_with(30)
        callback.assert_not_called()

    def test_report_zero_turns_off(self, accessory, sinks):
        on_changed, brightness_changed = sinks
        accessory.update_brightness(70)

        accessory.update_brightness(0)

        assert accessory.state == DimmerState(False, OFF)
        assert on_changed.call_args_list[-1] == call(False)
        assert brightness_changed.call_args_list[-1] == call(0)

    def test_report_is_idempotent(self, accessory, callback):
        accessory.update_brightness(55)
        first = accessory.state

        accessory.update_brightness(55)

        assert accessory.state == first
        callback.assert_not_called()

    def test_report_out_of_range_rejected(self, accessory, sinks):
        on_changed, brightness_changed = sinks

        with pytest.raises(InvalidBrightness):
            accessory.update_brightness(120)

        on_changed.assert_not_called()
        brightness_changed.assert_not_called()
        assert accessory.state == DimmerState(False, OFF)

    def test_report_on_relay_is_taken_as_is(self, sinks):
        relay = make_accessory(dimmable=False, on_changed=sinks[0], brightness_changed=sinks[1])

        relay.update_brightness(40)

        assert relay.get_brightness() == 40
        assert_invariant(relay)

    def test_report_without_sinks(self):
        accessory = make_accessory()

        accessory.update_brightness(20)

        assert accessory.get_brightness() == 20


class TestHWAccessoryRegistration:
    """Tests for setting the callback and sinks after construction."""

    def test_set_callback(self):
        accessory = make_accessory()
        callback = Mock()

        accessory.set_callback(callback)
        accessory.set_on(True)

        callback.assert_called_once_with(FULL, True, accessory)

    def test_clear_callback(self):
        callback = Mock()
        accessory = make_accessory(callback=callback)

        accessory.set_callback(None)
        accessory.set_on(True)

        callback.assert_not_called()

    def test_set_sinks(self):
        accessory = make_accessory()
        on_changed, brightness_changed = Mock(), Mock()

        accessory.set_sinks(on_changed, brightness_changed)
        accessory.update_brightness(80)

        on_changed.assert_called_once_with(True)
        brightness_changed.assert_called_once_with(80)

    def test_callback_sees_applied_state(self):
        seen = []
        accessory = make_accessory()
        accessory.set_callback(lambda b, d, acc: seen.append(acc.get_brightness()))

        accessory.set_brightness(35)

        assert seen == [35]


class TestHWAccessoryConcurrency:
    """Tests for commands and reports racing on separate threads."""

    @pytest.mark.parametrize("dimmable", [True, False])
    def test_invariant_holds_under_contention(self, dimmable):
        accessory = make_accessory(dimmable, callback=lambda *args: None)
        done = threading.Event()
        broken = []

        def command():
            for i in range(2000):
                accessory.set_brightness(i % (FULL + 1))
                accessory.set_on(i % 3 == 0)

        def report():
            for i in range(2000):
                accessory.update_brightness((i * 7) % (FULL + 1))

        def watch():
            while not done.is_set():
                state = accessory.state
                if state.on != (state.brightness > OFF):
                    broken.append(state)

        watcher = threading.Thread(target=watch)
        workers = [threading.Thread(target=command), threading.Thread(target=report)]
        watcher.start()
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        done.set()
        watcher.join()

        assert broken == []
        assert_invariant(accessory)


class TestValidateBrightness:
    """Tests for validate_brightness."""

    def test_bounds_accepted(self):
        assert validate_brightness(OFF) == OFF
        assert validate_brightness(FULL) == FULL

    def test_bool_rejected(self):
        with pytest.raises(InvalidBrightness):
            validate_brightness(False)

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            validate_brightness(-5)
