import pytest

from portkeeper.config import Settings
from portkeeper.firewall import FirewallInactive, FirewallRuleFailure, OpenStatus
from portkeeper.session import SessionController


class FakeDetector:
    """Returns scripted interface names; the last one repeats"""

    def __init__(self, *results):
        self.results = list(results) or [None]
        self.calls = 0

    def detect(self):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeGateway:
    """Returns scripted PortAssignments or raises scripted errors

    Pass the same `log` list to a FakeFirewall to record call order across both.
    """

    def __init__(self, *outcomes, log=None):
        self.outcomes = list(outcomes)
        self.log = [] if log is None else log
        self.map_calls = 0
        self.release_calls = 0
        self.release_error = None

    def map_ports(self):
        self.map_calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def release(self):
        self.release_calls += 1
        self.log.append(("release",))
        if self.release_error:
            raise self.release_error


class FakeFirewall:
    """In-memory firewalld zone that records every rule change"""

    def __init__(self, open_ports=(), active=True, failing_legs=(), log=None):
        self.open_ports = set(open_ports)
        self.active = active
        self.failing_legs = set(failing_legs)
        self.calls = []
        self.log = [] if log is None else log
        self.list_calls = 0

    def _record(self, *call):
        self.calls.append(call)
        self.log.append(call)

    def is_firewall_active(self):
        return self.active

    def open_port(self, port):
        if not self.active:
            raise FirewallInactive("firewalld is not running")
        ok = {}
        for proto in ("tcp", "udp"):
            self._record("add", port, proto)
            ok[proto] = proto not in self.failing_legs
        self.open_ports.add(port)
        return OpenStatus(port=port, tcp=ok["tcp"], udp=ok["udp"])

    def close_port(self, port):
        if not self.active:
            raise FirewallInactive("firewalld is not running")
        failed = []
        for proto in ("tcp", "udp"):
            self._record("remove", port, proto)
            if proto in self.failing_legs:
                failed.append(proto)
        self.open_ports.discard(port)
        if failed:
            raise FirewallRuleFailure("remove", port, failed)

    def list_managed_ports(self):
        if not self.active:
            raise FirewallInactive("firewalld is not running")
        self.list_calls += 1
        return set(self.open_ports)


class RecordingEvent:
    """Stand-in for threading.Event that records sleeps instead of blocking"""

    def __init__(self, stop_after=None):
        self.delays = []
        self.stop_after = stop_after
        self._set = False

    def set(self):
        self._set = True

    def is_set(self):
        return self._set

    def wait(self, timeout=None):
        self.delays.append(timeout)
        if self.stop_after is not None and len(self.delays) >= self.stop_after:
            self._set = True
        return self._set


@pytest.fixture
def config():
    return Settings(_env_file=None)


@pytest.fixture
def make_controller(config):
    def factory(detector=None, gateway=None, firewall=None, event=None, reporters=None):
        return SessionController(
            config=config,
            detector=detector or FakeDetector(None),
            gateway=gateway or FakeGateway(),
            firewall=firewall or FakeFirewall(),
            stop_event=event or RecordingEvent(),
            reporters=reporters,
        )
    return factory
