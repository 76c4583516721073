"""Startup dependency checks"""
import logging
import shutil
from pathlib import Path
from typing import List, Optional

from portkeeper.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SEARCH_PATHS = [Path("/usr/bin"), Path("/usr/sbin"), Path("/usr/local/bin")]


class PreflightError(RuntimeError):
    """Raised when a required external tool is missing"""

    def __init__(self, missing: List[str]):
        self.missing = missing
        listing = "\n".join(f"  - {name}" for name in missing)
        super().__init__(
            f"Missing required dependencies:\n{listing}\n\n"
            "Install them with: sudo apt install natpmpc"
        )


def resolve_binary(name: str) -> Optional[str]:
    """Locate a binary on PATH, then in the usual system directories"""
    found = shutil.which(name)
    if found:
        return found
    for directory in SEARCH_PATHS:
        candidate = directory / name
        if candidate.exists():
            return str(candidate)
    return None


def check_dependencies(config: Optional[Settings] = None) -> None:
    """
    Fail fast when natpmpc is unavailable

    firewall-cmd is optional: without it the firewall is simply left unmanaged.
    """
    config = config or default_settings
    missing = []
    if not resolve_binary(config.natpmpc_binary):
        missing.append(config.natpmpc_binary)
    if missing:
        raise PreflightError(missing)

    if not resolve_binary(config.firewall_cmd_binary):
        logger.warning(
            f"{config.firewall_cmd_binary} not found - firewall ports will not be managed"
        )
