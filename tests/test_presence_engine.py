"""Tests for PresenceEngine."""

import shutil

import pytest

from action_runner import ActionResult, ActionRunner
from device_models import Device, DeviceConfig
from presence_engine import PresenceEngine


class RecordingRunner:
    """Records commands instead of running them."""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    def run_all(self, commands):
        results = []
        for command in commands:
            self.calls.append(command)
            if command in self.failing:
                results.append(ActionResult(command=command, launched=False))
            else:
                results.append(ActionResult(command=command, launched=True, returncode=0))
        return results


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def engine(runner):
    return PresenceEngine(runner)


def phone(start=("start-phone",), stop=("stop-phone",)):
    return DeviceConfig(
        address="AA:AA", name="Phone", start_actions=list(start), stop_actions=list(stop)
    )


class TestArrival:
    """Test arrival detection."""

    def test_arrival_runs_start_actions(self, engine, runner):
        """A configured device seen for the first time fires its start actions."""
        engine.transition([Device("AA:AA", "Pixel")], [phone()])

        assert runner.calls == ["start-phone"]
        assert engine.is_present("AA:AA")
        assert engine.present["AA:AA"].name == "Pixel"

    def test_start_actions_fire_once_while_in_range(self, engine, runner):
        """A device that stays in range is never re-triggered."""
        config = [phone()]
        for _ in range(5):
            engine.transition([Device("AA:AA", "Pixel")], config)

        assert runner.calls == ["start-phone"]
        assert len(engine) == 1

    def test_unconfigured_device_is_ignored(self, engine, runner):
        """A scanned device matching no configuration never becomes present."""
        engine.transition([Device("BB:BB", "Stranger")], [phone()])

        assert runner.calls == []
        assert len(engine) == 0
        assert not engine.is_present("BB:BB")

    def test_configured_device_not_in_scan_is_ignored(self, engine, runner):
        """A configured address without a match is not an event."""
        engine.transition([], [phone()])

        assert runner.calls == []
        assert len(engine) == 0

    def test_duplicate_scan_entries_trigger_once(self, engine, runner):
        """Only the first matching scanned device fires the arrival."""
        engine.transition([Device("AA:AA", "first"), Device("AA:AA", "second")], [phone()])

        assert runner.calls == ["start-phone"]
        assert engine.present["AA:AA"].name == "first"

    def test_address_match_is_case_sensitive(self, engine, runner):
        """Addresses are compared exactly, without normalization."""
        config = [DeviceConfig(address="aa:bb", name="Phone", start_actions=["go"])]
        engine.transition([Device("AA:BB", "Pixel")], config)

        assert runner.calls == []
        assert len(engine) == 0

    def test_start_actions_run_in_order(self, engine, runner):
        """Start actions run in list order."""
        engine.transition([Device("AA:AA")], [phone(start=["A", "B", "C"])])

        assert runner.calls == ["A", "B", "C"]

    def test_failing_action_does_not_stop_the_rest(self):
        """A failing first action still lets the following ones run."""
        runner = RecordingRunner(failing={"A"})
        engine = PresenceEngine(runner)

        engine.transition([Device("AA:AA")], [phone(start=["A", "B", "C"])])

        assert runner.calls == ["A", "B", "C"]
        assert engine.is_present("AA:AA")

    def test_arrivals_follow_config_order(self, engine, runner):
        """Several arrivals in one cycle run in configuration order."""
        config = [
            DeviceConfig(address="BB:BB", name="Watch", start_actions=["watch"]),
            DeviceConfig(address="AA:AA", name="Phone", start_actions=["phone"]),
        ]
        engine.transition([Device("AA:AA"), Device("BB:BB")], config)

        assert runner.calls == ["watch", "phone"]

    def test_device_without_actions_still_tracked(self, engine, runner):
        """Empty action lists are valid."""
        engine.transition([Device("AA:AA")], [phone(start=[], stop=[])])
        assert engine.is_present("AA:AA")

        engine.transition([], [phone(start=[], stop=[])])
        assert not engine.is_present("AA:AA")
        assert runner.calls == []


class TestDeparture:
    """Test departure detection."""

    def test_departure_runs_stop_actions(self, engine, runner):
        """A present device missing from the scan fires its stop actions."""
        config = [phone()]
        engine.transition([Device("AA:AA")], config)
        engine.transition([Device("CC:CC")], config)

        assert runner.calls == ["start-phone", "stop-phone"]
        assert not engine.is_present("AA:AA")

    def test_departure_happens_once(self, engine, runner):
        """A departed device cannot depart again until it arrives again."""
        config = [phone()]
        engine.transition([Device("AA:AA")], config)
        engine.transition([], config)
        engine.transition([], config)
        engine.transition([], config)

        assert runner.calls == ["start-phone", "stop-phone"]

    def test_rearrival_after_departure(self, engine, runner):
        """Leaving and coming back fires start actions again."""
        config = [phone()]
        engine.transition([Device("AA:AA")], config)
        engine.transition([], config)
        engine.transition([Device("AA:AA")], config)

        assert runner.calls == ["start-phone", "stop-phone", "start-phone"]
        assert engine.is_present("AA:AA")

    def test_empty_scan_clears_everything(self, engine, runner):
        """An empty scan makes every present device depart."""
        config = [
            DeviceConfig(address="AA:AA", name="Phone", stop_actions=["stop-a"]),
            DeviceConfig(address="BB:BB", name="Watch", stop_actions=["stop-b"]),
            DeviceConfig(address="CC:CC", name="Tablet", stop_actions=["stop-c"]),
        ]
        engine.transition([Device("AA:AA"), Device("BB:BB"), Device("CC:CC")], config)
        engine.transition([], config)

        assert len(engine) == 0
        assert sorted(runner.calls) == ["stop-a", "stop-b", "stop-c"]

    def test_removed_config_departs_silently(self, engine, runner):
        """A device dropped from the configuration leaves without stop actions."""
        engine.transition([Device("AA:AA")], [phone()])
        engine.transition([], [])

        assert runner.calls == ["start-phone"]
        assert len(engine) == 0

    def test_removed_config_while_in_range_stays_present(self, engine, runner):
        """Dropping a configuration entry is not itself a departure."""
        engine.transition([Device("AA:AA")], [phone()])
        engine.transition([Device("AA:AA")], [])

        assert engine.is_present("AA:AA")
        assert runner.calls == ["start-phone"]

    def test_arrival_and_departure_in_same_cycle(self, engine, runner):
        """Arrivals are processed before departures within one cycle."""
        config = [
            DeviceConfig(address="AA:AA", name="Phone", start_actions=["a-in"], stop_actions=["a-out"]),
            DeviceConfig(address="BB:BB", name="Watch", start_actions=["b-in"], stop_actions=["b-out"]),
        ]
        engine.transition([Device("AA:AA")], config)
        engine.transition([Device("BB:BB")], config)

        assert runner.calls == ["a-in", "b-in", "a-out"]
        assert engine.present.keys() == {"BB:BB"}

    def test_present_is_a_copy(self, engine):
        """Mutating the returned mapping does not touch the engine."""
        engine.transition([Device("AA:AA")], [phone()])
        snapshot = engine.present
        snapshot.clear()

        assert engine.is_present("AA:AA")


class ResultRecorder(ActionRunner):
    """A real runner that keeps every result it produced."""

    def __init__(self):
        super().__init__(shell="sh")
        self.results = []

    def run_all(self, commands):
        results = super().run_all(commands)
        self.results.extend(results)
        return results


@pytest.mark.skipif(not (shutil.which("true") and shutil.which("false")), reason="true/false not installed")
class TestScenario:
    """Three-cycle walkthrough with real commands."""

    def test_true_then_false(self):
        true, false = shutil.which("true"), shutil.which("false")
        runner = ResultRecorder()
        engine = PresenceEngine(runner)
        config = [DeviceConfig(address="AA:AA", name="Phone", start_actions=[true], stop_actions=[false])]

        engine.transition([Device("AA:AA")], config)
        assert engine.present.keys() == {"AA:AA"}
        assert [(r.command, r.launched, r.returncode) for r in runner.results] == [(true, True, 0)]

        engine.transition([], config)
        assert engine.present == {}
        assert [(r.command, r.launched, r.returncode) for r in runner.results[1:]] == [(false, True, 1)]

        engine.transition([], config)
        assert len(runner.results) == 2
        assert engine.present == {}
