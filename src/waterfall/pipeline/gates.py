"""Gate hooks for resuming paused waterfall runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

from waterfall.models.pipeline import RunPaused
from waterfall.observability.logging import get_logger

if TYPE_CHECKING:
    from waterfall.models.pipeline import RunOutcome
    from waterfall.pipeline.controller import WaterfallController

log = get_logger(__name__)

GateDecision = Literal["proceed", "hold"]


class GateHook(Protocol):
    """Protocol for hooks that decide whether a gated run may continue."""

    async def on_gated(self, paused: RunPaused) -> GateDecision:
        """Called when the server pauses a run at a gate.

        Args:
            paused: The pause outcome, with the gate reason and estimate.

        Returns:
            "proceed" to resume the run or "hold" to leave it paused.
        """
        ...


class HoldGate:
    """Gate that never resumes; the run stays paused until resumed explicitly."""

    async def on_gated(self, _paused: RunPaused) -> GateDecision:
        """Always hold.

        Args:
            _paused: The pause outcome (unused).

        Returns:
            Always returns "hold".
        """
        return "hold"


class AutoProceedGate:
    """Gate that confirms every pause.

    Suitable for unattended runs where the resource estimate has been
    accepted up front.
    """

    async def on_gated(self, _paused: RunPaused) -> GateDecision:
        """Always proceed.

        Args:
            _paused: The pause outcome (unused).

        Returns:
            Always returns "proceed".
        """
        return "proceed"


async def drive_waterfall(
    controller: WaterfallController,
    prompt: str,
    gate: GateHook | None = None,
    *,
    max_resumes: int = 1,
) -> RunOutcome:
    """Run the waterfall, consulting ``gate`` whenever the run pauses.

    Args:
        controller: Controller owning the run.
        prompt: The user request.
        gate: Gate hook deciding on pauses. Defaults to HoldGate.
        max_resumes: Upper bound on resumes for this call.

    Returns:
        The outcome of the last run attempt.
    """
    gate = gate or HoldGate()
    outcome = await controller.run_full_waterfall(prompt)
    resumes = 0

    while isinstance(outcome, RunPaused) and resumes < max_resumes:
        decision = await gate.on_gated(outcome)
        log.info("gate_decision", phase=str(outcome.phase), decision=decision)
        if decision != "proceed":
            break
        resumes += 1
        outcome = await controller.proceed_with_waterfall()

    return outcome
