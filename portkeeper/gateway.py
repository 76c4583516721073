"""NAT-PMP gateway client backed by natpmpc"""
import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from portkeeper.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PROTOCOLS = ("udp", "tcp")
RELEASE_ORDER = ("tcp", "udp")
MAPPED_PORT_RE = re.compile(r"Mapped public port (\d+)")


class GatewayError(RuntimeError):
    """Raised when a mapping request does not yield a public port"""


class GatewayUnreachable(GatewayError):
    """The natpmpc process failed, timed out or is missing"""


class MappingRejected(GatewayError):
    """natpmpc exited cleanly but its output carried no usable port"""


@dataclass(frozen=True)
class PortAssignment:
    """Ports returned by one UDP+TCP mapping exchange"""
    tcp_port: int
    udp_port: int

    @property
    def port(self) -> int:
        # TCP wins when the gateway hands out different ports
        return self.tcp_port

    @property
    def mismatched(self) -> bool:
        return self.tcp_port != self.udp_port


def parse_mapped_port(output: str) -> int:
    """
    Extract the public port from natpmpc output

    Raises:
        MappingRejected: no "Mapped public port N" line, or N out of range
    """
    match = MAPPED_PORT_RE.search(output or "")
    if not match:
        raise MappingRejected("No mapped public port in natpmpc output")
    port = int(match.group(1))
    if not 0 < port <= 65535:
        raise MappingRejected(f"Gateway returned invalid port {port}")
    return port


class GatewayClient:
    """Requests and releases public port mappings against a fixed gateway"""

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.gateway = config.gateway
        self.lease_time = config.lease_time
        self.binary = config.natpmpc_binary
        self.timeout = config.command_timeout

    def _build_command(self, protocol: str, lease: int) -> List[str]:
        return [self.binary, "-a", "1", "0", protocol, str(lease), "-g", self.gateway]

    def _run_natpmpc(self, protocol: str, lease: int) -> str:
        cmd = self._build_command(protocol, lease)
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GatewayUnreachable(f"{self.binary} not found") from e
        except OSError as e:
            raise GatewayUnreachable(f"Unable to run {self.binary}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise GatewayUnreachable(
                f"natpmpc {protocol} request to {self.gateway} timed out after {self.timeout}s"
            ) from e

        if result.returncode != 0:
            output = (result.stdout or "").strip()
            raise GatewayUnreachable(
                f"natpmpc {protocol} request to {self.gateway} exited with {result.returncode}: {output}"
            )
        return result.stdout or ""

    def request_mapping(self, protocol: str, lease: Optional[int] = None) -> int:
        """Request one mapping and return the assigned public port"""
        if protocol not in PROTOCOLS:
            raise ValueError(f"Unsupported protocol: {protocol}")
        lease = self.lease_time if lease is None else lease

        output = self._run_natpmpc(protocol, lease)
        try:
            port = parse_mapped_port(output)
        except MappingRejected:
            logger.debug(f"natpmpc {protocol} output: {output}")
            raise
        logger.debug(f"Gateway {self.gateway} mapped {protocol} port {port} (lease={lease}s)")
        return port

    def map_ports(self) -> PortAssignment:
        """
        Run a full mapping cycle: UDP first, then TCP

        Either request failing fails the whole cycle; nothing is kept from a
        half-finished exchange.
        """
        udp_port = self.request_mapping("udp")
        tcp_port = self.request_mapping("tcp")
        assignment = PortAssignment(tcp_port=tcp_port, udp_port=udp_port)
        if assignment.mismatched:
            logger.warning(f"Port mismatch! UDP: {udp_port} vs TCP: {tcp_port}, using TCP port")
        return assignment

    def release(self) -> None:
        """Best-effort release of both mappings (lease 0)"""
        for protocol in RELEASE_ORDER:
            try:
                self._run_natpmpc(protocol, 0)
            except GatewayError as e:
                logger.info(f"Ignoring {protocol} release failure: {e}")
