import io
from datetime import datetime

from portkeeper.session import FirewallStatus, Session
from portkeeper.status_display import TerminalStatusReporter


def render(session):
    return TerminalStatusReporter("10.2.0.1", clear=False).render(session)


def test_waiting_screen():
    output = render(Session(updated_at=datetime(2024, 5, 1, 12, 0, 0)))

    assert "WAITING FOR VPN" in output
    assert "2024-05-01 12:00:00" in output


def test_gateway_error_screen():
    output = render(Session(interface_name="tun0", failure_count=2))

    assert "GATEWAY NOT RESPONDING" in output
    assert "10.2.0.1" in output
    assert "tun0" in output


def test_active_screen():
    session = Session(
        interface_name="proton0",
        current_port=51234,
        previous_port=51234,
        firewall_status=FirewallStatus.DISABLED,
        updated_at=datetime(2024, 5, 1, 12, 0, 0),
        next_check_at=datetime(2024, 5, 1, 12, 0, 45),
    )

    output = render(session)

    assert "ACTIVE" in output
    assert "51234" in output
    assert "FIREWALLD NOT RUNNING" in output
    assert "Next renewal: 12:00:45" in output


def test_reporter_writes_to_stream():
    stream = io.StringIO()

    TerminalStatusReporter("10.2.0.1", stream=stream)(Session())

    assert stream.getvalue().startswith("\033[2J\033[H")
