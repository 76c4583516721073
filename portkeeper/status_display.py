"""Full-screen terminal status view"""
import sys
from typing import Optional, TextIO

from portkeeper.session import FirewallStatus, Session, SessionStatus

RULE = "━" * 45
CLEAR_SCREEN = "\033[2J\033[H"

FIREWALL_LABELS = {
    FirewallStatus.OPEN: "✅ OPEN",
    FirewallStatus.DISABLED: "⚠️  FIREWALLD NOT RUNNING",
    FirewallStatus.UNKNOWN: "❌ CHECK MANUALLY",
}


class TerminalStatusReporter:
    """Redraws the status screen after every polling cycle"""

    def __init__(self, gateway: str, stream: Optional[TextIO] = None, clear: bool = True):
        self.gateway = gateway
        self.stream = stream or sys.stdout
        self.clear = clear

    def __call__(self, session: Session):
        self.stream.write(self.render(session))
        self.stream.flush()

    def render(self, session: Session) -> str:
        timestamp = session.updated_at.strftime("%Y-%m-%d %H:%M:%S") if session.updated_at else "-"
        lines = [RULE, "  ProtonVPN Port Forwarding Manager", RULE, ""]

        status = session.status
        if status == SessionStatus.WAITING:
            lines += [
                "Status: 🔍 WAITING FOR VPN",
                f"Time:   {timestamp}",
                "",
                "No active POINTOPOINT VPN tunnel detected.",
                "Check your VPN connection.",
            ]
        elif status == SessionStatus.GATEWAY_ERROR:
            lines += [
                "Status: ❌ GATEWAY NOT RESPONDING",
                f"Time:   {timestamp}",
                f"Interface: {session.interface_name}",
                f"Failures:  {session.failure_count}",
                "",
                f"VPN is connected but the gateway ({self.gateway}) rejected the request.",
                "Ensure '+pmp' is in your username or NAT-PMP is enabled.",
            ]
        else:
            lines += [
                "Status: ✅ ACTIVE",
                f"Time:   {timestamp}",
                f"Interface: {session.interface_name}",
                "",
                "┏" + "━" * 39 + "┓",
                f"┃  FORWARDED PORT (TCP+UDP): {session.current_port!s:<11}┃",
                f"┃  Firewall: {FIREWALL_LABELS[session.firewall_status]:<27}┃",
                "┗" + "━" * 39 + "┛",
            ]
            if session.port_mismatch:
                lines.append("⚠️  TCP and UDP ports differ, using the TCP port")
            if session.next_check_at:
                lines += ["", f"Next renewal: {session.next_check_at.strftime('%H:%M:%S')}"]

        lines += ["", RULE, ""]
        output = "\n".join(lines)
        return (CLEAR_SCREEN + output) if self.clear else output
