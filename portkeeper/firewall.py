"""firewalld port management for the forwarded port"""
import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from portkeeper.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PROTOCOLS = ("tcp", "udp")
PORT_ENTRY_RE = re.compile(r"^(\d+)/(tcp|udp)$")
_ACTION_VERBS = {"add": "Opened", "remove": "Closed"}


class FirewallError(RuntimeError):
    """Raised when a firewall operation cannot be completed"""


class FirewallInactive(FirewallError):
    """firewalld is not running; the port is left unmanaged"""


class FirewallRuleFailure(FirewallError):
    """One or more add/remove rule calls failed"""

    def __init__(self, action: str, port: int, failed: Sequence[str]):
        self.action = action
        self.port = port
        self.failed = list(failed)
        legs = ", ".join(f"{port}/{proto}" for proto in self.failed)
        super().__init__(f"Failed to {action} {legs}")


@dataclass(frozen=True)
class OpenStatus:
    """Outcome of opening a port for both protocols"""
    port: int
    tcp: bool
    udp: bool

    @property
    def complete(self) -> bool:
        return self.tcp and self.udp

    @property
    def failed(self) -> List[str]:
        return [proto for proto, ok in (("tcp", self.tcp), ("udp", self.udp)) if not ok]


def parse_port_list(output: str) -> Set[int]:
    """
    Parse `firewall-cmd --list-ports` output

    "51234/tcp 51234/udp 8080/tcp" -> {51234, 8080}. A port counts once it is
    open for either protocol. Range entries are skipped, they are never ours.
    """
    ports = set()
    for entry in (output or "").split():
        match = PORT_ENTRY_RE.match(entry.strip())
        if match:
            ports.add(int(match.group(1)))
        else:
            logger.debug(f"Ignoring unrecognised firewall port entry: {entry}")
    return ports


class FirewallAdapter:
    """Adds and removes port rules in a firewalld zone"""

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.zone = config.firewall_zone
        self.binary = config.firewall_cmd_binary
        self.use_sudo = config.firewall_use_sudo
        self.timeout = config.command_timeout

    def _run_firewall_cmd(self, args: list) -> subprocess.CompletedProcess:
        """Run firewall-cmd against the configured zone"""
        cmd = (["sudo"] if self.use_sudo else []) + [self.binary, f"--zone={self.zone}"] + args
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise FirewallError(f"Required command '{cmd[0]}' is not available") from e
        except subprocess.TimeoutExpired as e:
            logger.error(f"firewall-cmd timed out: {' '.join(cmd)}")
            raise FirewallError(f"Command timed out: {' '.join(cmd)}") from e
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr.strip() if e.stderr else str(e)
            logger.warning(f"firewall-cmd failed: {' '.join(cmd)}: {error_msg}")
            raise FirewallError(error_msg) from e

    def is_firewall_active(self) -> bool:
        """Check whether firewalld is running"""
        try:
            result = subprocess.run(
                ["systemctl", "is-active", "--quiet", "firewalld"],
                capture_output=True,
                timeout=self.timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Unable to query firewalld state: {e}")
            return False
        return result.returncode == 0

    def _require_active(self):
        if not self.is_firewall_active():
            raise FirewallInactive("firewalld is not running")

    def _apply(self, action: str, port: int) -> List[str]:
        """Apply add/remove for both protocols, returning the protocols that failed"""
        failed = []
        for proto in PROTOCOLS:
            try:
                self._run_firewall_cmd([f"--{action}-port={port}/{proto}"])
                logger.info(f"{_ACTION_VERBS[action]} {port}/{proto} in zone {self.zone}")
            except FirewallError as e:
                logger.warning(f"Failed to {action} {port}/{proto}: {e}")
                failed.append(proto)
        return failed

    def open_port(self, port: int) -> OpenStatus:
        """
        Open the port for TCP and UDP

        A failed leg is reported in the returned status, not raised.

        Raises:
            FirewallInactive: firewalld is not running
        """
        self._require_active()
        failed = self._apply("add", port)
        return OpenStatus(port=port, tcp="tcp" not in failed, udp="udp" not in failed)

    def close_port(self, port: int) -> None:
        """
        Close the port for TCP and UDP, attempting both legs

        Raises:
            FirewallInactive: firewalld is not running
            FirewallRuleFailure: at least one leg could not be removed
        """
        self._require_active()
        failed = self._apply("remove", port)
        if failed:
            raise FirewallRuleFailure("remove", port, failed)

    def list_managed_ports(self) -> Set[int]:
        """
        Return ports currently open in the zone

        Raises:
            FirewallInactive: firewalld is not running
            FirewallError: the listing command failed
        """
        self._require_active()
        result = self._run_firewall_cmd(["--list-ports"])
        return parse_port_list(result.stdout)
