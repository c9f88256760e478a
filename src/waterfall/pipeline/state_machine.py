"""Phase state machine for waterfall runs.

Pure functions only: each takes a ``PipelineState`` and returns the next
one without touching its input. The controller and the step runner are the
only callers that publish the results.

Forward order is architect -> reasoner -> executor -> reviewer, with one
backward edge reviewer -> executor for the review retry loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from waterfall.models.events import WirePhase
from waterfall.models.pipeline import PHASE_ORDER, Phase, PhaseState, PhaseStatus
from waterfall.observability.logging import get_logger

if TYPE_CHECKING:
    from waterfall.models.events import StreamEvent
    from waterfall.models.pipeline import PipelineState

log = get_logger(__name__)

VALID_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.ARCHITECT: frozenset({Phase.REASONER}),
    Phase.REASONER: frozenset({Phase.EXECUTOR}),
    Phase.EXECUTOR: frozenset({Phase.REVIEWER}),
    Phase.REVIEWER: frozenset({Phase.EXECUTOR}),  # retry loop
}

WIRE_TO_PHASE: dict[str, Phase] = {
    WirePhase.ARCHITECTING.value: Phase.ARCHITECT,
    WirePhase.REASONING.value: Phase.REASONER,
    WirePhase.EXECUTING.value: Phase.EXECUTOR,
    WirePhase.REVIEWING.value: Phase.REVIEWER,
}

_PHASE_VALUES = frozenset(phase.value for phase in PHASE_ORDER)

REFINING_MESSAGE = "Refining code based on feedback..."
DEFAULT_GATE_MESSAGE = "Confirmation required to continue."
CANCELLED_MESSAGE = "Cancelled by user."


def can_transition(current: Phase | None, next_phase: Phase) -> bool:
    """Check whether the run may move from ``current`` to ``next_phase``.

    Args:
        current: Phase the run is on, or None before the first run.
        next_phase: Phase an event asks to move to.

    Returns:
        True for the initial start (None -> architect), re-entrant updates
        of the same phase, adjacent forward steps and reviewer -> executor.
    """
    if current is None:
        return next_phase == Phase.ARCHITECT
    if current == next_phase:
        return True
    return next_phase in VALID_TRANSITIONS[current]


def map_phase_to_step(wire_phase: str) -> Phase | None:
    """Map a wire tag to its phase, or None for control signals and unknown tags."""
    return WIRE_TO_PHASE.get(wire_phase)


def previous_phase(phase: Phase) -> Phase | None:
    """Return the phase before ``phase`` in forward order."""
    index = PHASE_ORDER.index(phase)
    return PHASE_ORDER[index - 1] if index > 0 else None


def transition(state: PipelineState, wire_phase: str, payload: Any) -> PipelineState:
    """Compute the state after one phase event.

    ``retrying`` re-arms the executor unconditionally. Phase tags advance the
    run when ``can_transition`` allows it, force-completing the predecessor.
    Everything else (control signals, unknown tags, illegal jumps) returns
    ``state`` unchanged.

    Args:
        state: Current pipeline state.
        wire_phase: Raw ``phase`` tag of the event.
        payload: Event payload; stored as the phase's data.

    Returns:
        The next pipeline state.
    """
    if wire_phase == WirePhase.RETRYING:
        return _retry_executor(state, payload)

    next_phase = map_phase_to_step(wire_phase)
    if next_phase is None:
        return state

    current = state.current_phase
    if not can_transition(current, next_phase):
        log.warning(
            "transition_rejected",
            from_phase=str(current) if current else None,
            to_phase=str(next_phase),
        )
        return state

    updates = {next_phase: PhaseState(status=PhaseStatus.PROCESSING, data=payload)}
    prev = previous_phase(next_phase)
    if prev is not None and state.phase(prev).status != PhaseStatus.COMPLETED:
        updates[prev] = state.phase(prev).model_copy(
            update={"status": PhaseStatus.COMPLETED, "error": None}
        )

    return state.with_phases(updates, current_phase=next_phase)


def _retry_executor(state: PipelineState, payload: Any) -> PipelineState:
    """Mark the review as failed and send the executor round again."""
    if state.current_phase != Phase.REVIEWER:
        log.warning(
            "retry_from_unexpected_phase",
            current_phase=str(state.current_phase) if state.current_phase else None,
        )

    feedback = payload.get("message") if isinstance(payload, dict) else None
    reviewer = state.phase(Phase.REVIEWER).model_copy(
        update={"status": PhaseStatus.ERROR, "error": feedback}
    )
    executor = PhaseState(
        status=PhaseStatus.PROCESSING,
        data={"message": REFINING_MESSAGE},
    )
    return state.with_phases(
        {Phase.REVIEWER: reviewer, Phase.EXECUTOR: executor},
        current_phase=Phase.EXECUTOR,
    )


def gated_phase(state: PipelineState, event: StreamEvent) -> Phase:
    """Resolve which phase asked for the gate.

    The event's ``step`` field wins when it names a phase, then the run's
    current phase, then architect (where the server estimates cost).
    """
    step = event.payload.get("step")
    if isinstance(step, str) and step in _PHASE_VALUES:
        return Phase(step)
    return state.current_phase or Phase.ARCHITECT


def pause_for_gate(state: PipelineState, event: StreamEvent) -> PipelineState:
    """Pause the gated phase, keeping any partial data and the estimate.

    ``current_phase`` is left alone unless no phase was active yet.
    """
    phase = gated_phase(state, event)
    slot = state.phase(phase)

    if isinstance(slot.data, dict):
        data: dict[str, Any] = dict(slot.data)
    elif slot.data is None:
        data = {}
    else:
        data = {"preview": slot.data}
    if event.estimate is not None:
        data["estimate"] = event.estimate

    paused = PhaseState(
        status=PhaseStatus.PAUSED,
        data=data,
        error=event.message or DEFAULT_GATE_MESSAGE,
    )
    return state.with_phases({phase: paused}, current_phase=state.current_phase or phase)


def complete_from_final(state: PipelineState, payload: dict[str, Any]) -> PipelineState:
    """Mark all four phases completed with the final payloads in one update."""
    updates = {
        phase: PhaseState(status=PhaseStatus.COMPLETED, data=payload.get(phase.value))
        for phase in PHASE_ORDER
    }
    return state.with_phases(updates, current_phase=Phase.REVIEWER)


def fail_phase(state: PipelineState, message: str) -> PipelineState:
    """Replace the active phase with an error slot; other phases keep their state.

    The failed slot carries only the message. Partial data the phase had
    streamed is dropped.
    """
    phase = state.current_phase or Phase.ARCHITECT
    return state.with_phases({phase: PhaseState(status=PhaseStatus.ERROR, error=message)})
