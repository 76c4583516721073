import logging
import threading
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeDetector, FakeFirewall, FakeGateway

from portkeeper import main
from portkeeper.config import Settings
from portkeeper.gateway import PortAssignment
from portkeeper.routers import status
from portkeeper.session import SessionController


@pytest.fixture
def api():
    app = FastAPI()
    app.include_router(status.router, prefix="/api")
    return app


def test_status_without_controller_is_unavailable(api):
    client = TestClient(api)

    response = client.get("/api/status")

    assert response.status_code == 503


def test_status_reports_active_session(api, make_controller):
    controller = make_controller(
        detector=FakeDetector("tun0"),
        gateway=FakeGateway(PortAssignment(tcp_port=51234, udp_port=51234)),
        firewall=FakeFirewall(),
    )
    controller.run_cycle()
    api.state.controller = controller

    response = TestClient(api).get("/api/status")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ACTIVE"
    assert data["interface"] == "tun0"
    assert data["current_port"] == 51234
    assert data["firewall_status"] == "open"
    assert data["gateway"] == "10.2.0.1"
    assert data["stopping"] is False


def test_root_liveness():
    response = TestClient(main.app).get("/")

    assert response.json() == {"status": "ok", "service": "portkeeper"}


def test_lifespan_runs_loop_and_cleans_up(make_controller, monkeypatch):
    gateway = FakeGateway(PortAssignment(tcp_port=51234, udp_port=51234))
    firewall = FakeFirewall()
    controller = make_controller(
        detector=FakeDetector("tun0"),
        gateway=gateway,
        firewall=firewall,
        event=threading.Event(),
    )
    monkeypatch.setattr(main.app.state, "controller", controller, raising=False)

    with TestClient(main.app) as client:
        for _ in range(500):
            if controller.session.current_port:
                break
            time.sleep(0.01)
        assert client.get("/api/status").status_code == 200

    assert controller.stopped
    assert gateway.release_calls == 1
    assert ("remove", 51234, "tcp") in firewall.calls


def test_lifespan_uses_controller_timeout_and_warns_when_worker_is_stuck(monkeypatch, caplog):
    unblock = threading.Event()
    entered = threading.Event()

    class StuckGateway(FakeGateway):
        def map_ports(self):
            entered.set()
            unblock.wait(10)
            return super().map_ports()

    gateway = StuckGateway(PortAssignment(tcp_port=51234, udp_port=51234))
    controller = SessionController(
        config=Settings(_env_file=None, command_timeout=1),
        detector=FakeDetector("tun0"),
        gateway=gateway,
        firewall=FakeFirewall(),
        stop_event=threading.Event(),
    )
    monkeypatch.setattr(main.app.state, "controller", controller, raising=False)
    caplog.set_level(logging.WARNING, logger="portkeeper.main")

    started = time.monotonic()
    try:
        with TestClient(main.app):
            assert entered.wait(5)
        elapsed = time.monotonic() - started
    finally:
        unblock.set()

    assert elapsed < 8
    assert "still running" in caplog.text
    assert controller._shutdown_done
