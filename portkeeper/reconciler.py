"""Firewall reconciliation for a rotating forwarded port"""
from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, Optional, Tuple

DEFAULT_SAFE_RANGE = (40000, 65535)


@dataclass(frozen=True)
class TransitionPlan:
    to_open: FrozenSet[int]
    to_close: FrozenSet[int]

    @property
    def empty(self) -> bool:
        return not self.to_open and not self.to_close


def in_safe_range(port: int, safe_range: Tuple[int, int] = DEFAULT_SAFE_RANGE) -> bool:
    low, high = safe_range
    return low <= port <= high


def plan_transition(
    previous: Optional[int],
    current: int,
    open_ports: AbstractSet[int],
    safe_range: Tuple[int, int] = DEFAULT_SAFE_RANGE,
) -> TransitionPlan:
    """
    Decide which ports to close and open when the forwarded port becomes `current`.

    Every open port other than `current` is stale and closed, but only inside
    `safe_range`; rules outside it belong to other services and are never touched.
    `previous` is closed even when the zone listing missed it.

    Args:
        previous: Port whose rules were opened last cycle, if any
        current: Newly assigned port
        open_ports: Ports currently open in the firewall zone
        safe_range: Inclusive (low, high) bounds for automatic removal

    Returns:
        TransitionPlan with the ports to close and to open
    """
    candidates = set(open_ports)
    if previous is not None:
        candidates.add(previous)

    to_close = frozenset(
        port for port in candidates
        if port != current and in_safe_range(port, safe_range)
    )
    to_open = frozenset() if current in open_ports else frozenset({current})
    return TransitionPlan(to_open=to_open, to_close=to_close)
