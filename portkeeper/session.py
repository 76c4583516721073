"""Port forwarding session state machine"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from portkeeper.activity_log import ActivityLog
from portkeeper.config import Settings, settings as default_settings
from portkeeper.firewall import FirewallAdapter, FirewallError, FirewallInactive
from portkeeper.gateway import GatewayClient, GatewayError, PortAssignment
from portkeeper.interfaces import InterfaceDetector
from portkeeper.reconciler import plan_transition

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    WAITING = "WAITING"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    ACTIVE = "ACTIVE"


class FirewallStatus(str, Enum):
    UNKNOWN = "unknown"
    OPEN = "open"
    DISABLED = "disabled"


@dataclass
class Session:
    """Mutable state owned by a single SessionController"""
    current_port: Optional[int] = None
    previous_port: Optional[int] = None
    interface_name: Optional[str] = None
    failure_count: int = 0
    firewall_status: FirewallStatus = FirewallStatus.UNKNOWN
    port_mismatch: bool = False
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None
    next_check_at: Optional[datetime] = None

    @property
    def status(self) -> SessionStatus:
        if self.interface_name is None:
            return SessionStatus.WAITING
        if self.current_port is None:
            return SessionStatus.GATEWAY_ERROR
        return SessionStatus.ACTIVE

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "interface": self.interface_name,
            "current_port": self.current_port,
            "previous_port": self.previous_port,
            "failure_count": self.failure_count,
            "firewall_status": self.firewall_status.value,
            "port_mismatch": self.port_mismatch,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "next_check_at": self.next_check_at.isoformat() if self.next_check_at else None,
        }


Reporter = Callable[[Session], None]


class SessionController:
    """
    Drives the polling loop: detect the tunnel, renew the mapping, keep the
    firewall in step with the assigned port and back off on gateway failures.

    All sleeps go through `stop_event.wait()` so `stop()` interrupts them and
    the loop proceeds straight to `shutdown()`.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        detector: Optional[InterfaceDetector] = None,
        gateway: Optional[GatewayClient] = None,
        firewall: Optional[FirewallAdapter] = None,
        activity_log: Optional[ActivityLog] = None,
        reporters: Optional[List[Reporter]] = None,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or default_settings
        self.detector = detector or InterfaceDetector()
        self.gateway = gateway or GatewayClient(self.config)
        self.firewall = firewall or FirewallAdapter(self.config)
        self.activity = activity_log or ActivityLog()
        self.reporters = list(reporters or [])
        self.session = Session()
        self._stop_event = stop_event or threading.Event()
        self._clock = clock
        self._shutdown_lock = threading.Lock()
        self._shutdown_done = False

    def stop(self):
        """Request cancellation; safe to call from signal handlers and other threads"""
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self):
        """Poll until stopped, then clean up exactly once"""
        logger.info(
            f"Starting port forwarding loop (gateway={self.config.gateway}, "
            f"lease={self.config.lease_time}s, renewal={self.config.renewal_interval}s)"
        )
        try:
            while not self._stop_event.is_set():
                try:
                    delay = self.run_cycle()
                except Exception as e:
                    logger.error(f"Unexpected error in polling cycle: {e}", exc_info=True)
                    self.session.current_port = None
                    self.session.last_error = str(e)
                    delay = self.config.retry_interval

                self._report(delay)
                if self._stop_event.wait(delay):
                    break

                if self.session.failure_count >= self.config.max_consecutive_failures:
                    self.session.failure_count = 0
        finally:
            self.shutdown()

    def run_cycle(self) -> int:
        """
        Execute one polling cycle

        Returns:
            Seconds to sleep before the next cycle
        """
        interface = self.detector.detect()
        if not interface:
            return self._handle_disconnect()

        self.session.interface_name = interface
        try:
            assignment = self.gateway.map_ports()
        except GatewayError as e:
            return self._handle_gateway_failure(interface, e)

        self._handle_mapping(interface, assignment)
        return self.config.renewal_interval

    def _handle_disconnect(self) -> int:
        s = self.session
        port = s.previous_port if s.previous_port is not None else s.current_port
        if port is not None:
            logger.info(f"VPN disconnected, closing port {port} in firewall...")
            self.activity.disconnected(port)
            self._close_rules(port)

        if s.interface_name is not None:
            logger.info(f"Tunnel {s.interface_name} is gone, waiting for VPN")
        s.interface_name = None
        s.current_port = None
        s.previous_port = None
        s.failure_count = 0
        s.firewall_status = FirewallStatus.UNKNOWN
        s.port_mismatch = False
        s.last_error = None
        return self.config.poll_interval

    def _handle_gateway_failure(self, interface: str, error: GatewayError) -> int:
        s = self.session
        s.current_port = None
        s.failure_count += 1
        s.last_error = str(error)
        logger.warning(
            f"Gateway {self.config.gateway} error on {interface} "
            f"({s.failure_count}/{self.config.max_consecutive_failures}): {error}"
        )
        self.activity.gateway_error(interface)

        if s.failure_count >= self.config.max_consecutive_failures:
            logger.warning(f"Multiple failures. Waiting {self.config.failure_cooldown}s...")
            return self.config.failure_cooldown
        return self.config.retry_interval

    def _handle_mapping(self, interface: str, assignment: PortAssignment):
        s = self.session
        port = assignment.port
        s.current_port = port
        s.failure_count = 0
        s.last_error = None
        s.port_mismatch = assignment.mismatched
        if assignment.mismatched:
            # TODO: open the UDP-reported port as well when it differs from the TCP one
            self.activity.port_mismatch(assignment.udp_port, assignment.tcp_port)

        if port != s.previous_port:
            logger.info(f"Port assignment: {port}")
            if s.previous_port is not None:
                logger.info(f"Port changed from {s.previous_port} to {port}")
            s.firewall_status = self._reconcile(s.previous_port, port)
            s.previous_port = port
        elif self.firewall.is_firewall_active():
            s.firewall_status = FirewallStatus.OPEN
        else:
            s.firewall_status = FirewallStatus.DISABLED

        self.activity.port_active(port, interface)

    def _reconcile(self, previous: Optional[int], current: int) -> FirewallStatus:
        try:
            open_ports = self.firewall.list_managed_ports()
        except FirewallInactive:
            logger.warning("firewalld is not running - skipping firewall configuration")
            return FirewallStatus.DISABLED
        except FirewallError as e:
            logger.warning(f"Could not list open firewall ports: {e}")
            open_ports = set()

        plan = plan_transition(previous, current, open_ports, self.config.safe_port_range)
        for stale in sorted(plan.to_close):
            logger.info(f"Closing old forwarded port: {stale}")
            self._close_rules(stale)

        if not plan.to_open:
            return FirewallStatus.OPEN

        try:
            status = self.firewall.open_port(current)
        except FirewallInactive:
            logger.warning("firewalld stopped while reconciling - port left unmanaged")
            return FirewallStatus.DISABLED
        except FirewallError as e:
            logger.warning(f"Failed to open port {current}: {e}")
            return FirewallStatus.DISABLED

        if not status.complete:
            logger.warning(f"Port {current} only partially opened, failed: {', '.join(status.failed)}")
            return FirewallStatus.DISABLED
        return FirewallStatus.OPEN

    def _close_rules(self, port: int) -> bool:
        try:
            self.firewall.close_port(port)
            return True
        except FirewallInactive:
            logger.info(f"firewalld is not running, port {port} left as is")
        except FirewallError as e:
            logger.warning(f"Failed to close port {port}: {e}")
        return False

    def _report(self, delay: int):
        s = self.session
        s.updated_at = self._clock()
        s.next_check_at = s.updated_at + timedelta(seconds=delay)
        for reporter in self.reporters:
            try:
                reporter(s)
            except Exception as e:
                logger.warning(f"Status reporter {reporter!r} failed: {e}")

    def shutdown(self):
        """Release the mapping and close its firewall rules; runs at most once"""
        with self._shutdown_lock:
            if self._shutdown_done:
                return
            self._shutdown_done = True

        s = self.session
        mapped = s.current_port
        rules_port = s.previous_port if s.previous_port is not None else s.current_port
        logger.info("Shutting down gracefully...")

        if mapped is not None:
            logger.info(f"Releasing port {mapped}...")
            try:
                self.gateway.release()
                self.activity.released(mapped)
            except Exception as e:
                logger.warning(f"Release of port {mapped} failed, lease will expire on its own: {e}")

        if rules_port is not None:
            logger.info(f"Closing firewall port {rules_port}...")
            if not self._close_rules(rules_port):
                logger.warning(f"Firewall rules for port {rules_port} may still be open")

        s.current_port = None
        s.previous_port = None
        self.activity.close()
