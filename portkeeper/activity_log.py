"""Append-only activity log of port events"""
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ACTIVITY_LOGGER_NAME = "portkeeper.activity"


class ActivityLog:
    """Writes timestamped event lines to a file; nothing reads them back"""

    def __init__(self, path: Optional[str] = None):
        self._logger = logging.getLogger(ACTIVITY_LOGGER_NAME)
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        self._handler = None
        if path:
            self._attach(Path(path))

    def _attach(self, path: Path):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Activity log {path} is not writable, events will not be persisted: {e}")
            return
        handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
        self._logger.addHandler(handler)
        self._handler = handler

    def write(self, message: str):
        self._logger.info(message)

    def port_active(self, port: int, interface: str):
        self.write(f"Port {port} active on {interface}")

    def gateway_error(self, interface: str):
        self.write(f"Gateway error on {interface}")

    def disconnected(self, port: int):
        self.write(f"VPN disconnected, closing port {port}")

    def port_mismatch(self, udp_port: int, tcp_port: int):
        self.write(f"Port mismatch: UDP {udp_port} vs TCP {tcp_port}")

    def released(self, port: int):
        self.write(f"Shutdown: released port {port}")

    def close(self):
        if self._handler:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
