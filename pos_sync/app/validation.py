from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


OrderStatus = Annotated[
    Literal["pending", "preparing", "ready", "completed", "cancelled"],
    BeforeValidator(_to_lower_str),
]

FallbackPolicy = Annotated[Literal["keep_queued", "dequeue"], BeforeValidator(_to_lower_str)]

TERMINAL_STATUSES = frozenset({"completed", "cancelled"})

# Forward-only order lifecycle. cancelled is reachable from every non-terminal state.
ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"preparing", "cancelled"}),
    "preparing": frozenset({"ready", "cancelled"}),
    "ready": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())
