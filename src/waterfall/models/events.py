"""Stream event model.

Each ``data:`` line of the streaming response decodes to one JSON object
tagged by its ``phase`` field. ``StreamEvent`` turns that object into a
tagged variant over the known wire vocabulary; tags outside the vocabulary
are kept with ``kind=None`` so newer servers can add tags without breaking
older clients.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class WirePhase(StrEnum):
    """Recognized values of the wire ``phase`` field."""

    ARCHITECTING = "architecting"
    REASONING = "reasoning"
    EXECUTING = "executing"
    REVIEWING = "reviewing"
    GATED = "gated"
    FINAL = "final"
    ERROR = "error"
    RETRYING = "retrying"


CONTROL_SIGNALS = frozenset({WirePhase.GATED, WirePhase.FINAL, WirePhase.ERROR})


@dataclass(frozen=True)
class StreamEvent:
    """One decoded event frame.

    Attributes:
        wire_phase: Raw ``phase`` tag as sent by the server.
        kind: The recognized tag, or None for an unrecognized one.
        payload: The full decoded object, ``phase`` included.
        message: Human-readable progress or failure text, if any.
        estimate: Resource estimate attached to gate events, if any.
    """

    wire_phase: str
    kind: WirePhase | None
    payload: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    estimate: Any = None

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> StreamEvent:
        """Build an event from a decoded JSON object.

        Args:
            frame: Decoded frame object.

        Returns:
            The tagged event.

        Raises:
            ValueError: If the object has no string ``phase`` tag.
        """
        wire_phase = frame.get("phase")
        if not isinstance(wire_phase, str):
            raise ValueError("frame has no string 'phase' field")

        try:
            kind: WirePhase | None = WirePhase(wire_phase)
        except ValueError:
            kind = None

        message = frame.get("message")
        return cls(
            wire_phase=wire_phase,
            kind=kind,
            payload=frame,
            message=str(message) if message is not None else None,
            estimate=frame.get("estimate"),
        )

    @property
    def is_control(self) -> bool:
        """True for ``gated``, ``final`` and ``error`` frames."""
        return self.kind in CONTROL_SIGNALS
