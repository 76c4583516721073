"""VPN tunnel interface detection"""
import logging
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

POINT_TO_POINT_FLAG = "pointopoint"


def is_tunnel_up(stats) -> bool:
    """Return True for an administratively up point-to-point interface"""
    if not stats.isup:
        return False
    flags = getattr(stats, "flags", "") or ""
    return POINT_TO_POINT_FLAG in {flag.strip().lower() for flag in flags.split(",")}


class InterfaceDetector:
    """Finds the first active point-to-point tunnel on the host"""

    def detect(self) -> Optional[str]:
        """
        Enumerate host interfaces and return the first tunnel that is up

        Returns:
            Interface name, or None when no VPN tunnel is connected
        """
        try:
            interfaces = psutil.net_if_stats()
        except OSError as e:
            logger.warning(f"Failed to enumerate network interfaces: {e}")
            return None

        for name, stats in interfaces.items():
            if is_tunnel_up(stats):
                logger.debug(f"Detected tunnel interface {name} (flags={stats.flags})")
                return name
        return None
