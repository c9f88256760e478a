"""Manual single-phase execution.

The step runner is the granular path: one request, one response, one
phase. It shares the run context with the streaming controller, but the
transition check is advisory only so an operator can jump between phases.

When the step runs under a cancellation handle, the result is written only
while that handle is still the context's current one. A step that was
cancelled or superseded while its request was in flight returns a
``cancelled`` outcome and leaves the state to the new owner.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from waterfall.models.pipeline import Phase, PhaseState, PhaseStatus, StepOutcome
from waterfall.models.requests import StepRequest
from waterfall.observability.logging import get_logger
from waterfall.pipeline.errors import WaterfallError
from waterfall.pipeline.state_machine import CANCELLED_MESSAGE, can_transition

if TYPE_CHECKING:
    from waterfall.pipeline.context import CancellationHandle, RunContext
    from waterfall.pipeline.transport import WaterfallClient

log = get_logger(__name__)


class StepRunner:
    """Run one phase at a time through ``POST /waterfall/step``."""

    def __init__(self, client: WaterfallClient, context: RunContext) -> None:
        self._client = client
        self._context = context

    def _step_context(self, step: Phase) -> dict[str, Any] | None:
        # The manual reviewer audits the reasoner's plan
        if step == Phase.REVIEWER:
            return {"plan": self._context.state.phase(Phase.REASONER).data}
        return None

    def _owns(self, handle: CancellationHandle | None) -> bool:
        return handle is None or self._context.handle is handle

    async def run(
        self,
        step: Phase | str,
        input: Any,  # noqa: A002
        *,
        provider: str = "auto",
        handle: CancellationHandle | None = None,
    ) -> StepOutcome:
        """Execute a single phase.

        Args:
            step: Phase to run.
            input: Phase input forwarded verbatim.
            provider: Provider preference forwarded to the server.
            handle: Handle the step runs under. Without one the step always
                writes its result.

        Returns:
            StepOutcome with the response payload, the failure message, or
            ``cancelled`` when the step lost ownership of the state.

        Raises:
            ValueError: If ``step`` does not name a phase.
        """
        step = Phase(step)
        state = self._context.state

        if not can_transition(state.current_phase, step):
            log.warning(
                "manual_step_out_of_order",
                from_phase=str(state.current_phase) if state.current_phase else None,
                to_phase=str(step),
            )

        processing = state.phase(step).model_copy(
            update={"status": PhaseStatus.PROCESSING, "error": None}
        )
        self._context.replace(state.with_phases({step: processing}, current_phase=step))

        request = StepRequest(
            step=step,
            input=input,
            context=self._step_context(step),
            provider=provider,
        )
        log.info("step_start", step=str(step))

        try:
            data = await self._client.run_step(request)
        except asyncio.CancelledError:
            if handle is None or not handle.cancelled:
                raise
            handle.acknowledge()
            log.info("step_cancelled", step=str(step))
            return StepOutcome(step=step, status="cancelled", error=CANCELLED_MESSAGE)
        except WaterfallError as e:
            message = str(e)
            if not self._owns(handle):
                log.info("step_superseded", step=str(step), error=message)
                return StepOutcome(step=step, status="cancelled", error=CANCELLED_MESSAGE)
            current = self._context.state
            failed = current.phase(step).model_copy(
                update={"status": PhaseStatus.ERROR, "error": message}
            )
            self._context.replace(current.with_phases({step: failed}))
            log.error("step_failed", step=str(step), error=message)
            return StepOutcome(step=step, status="error", data=failed.data, error=message)

        if not self._owns(handle):
            log.info("step_superseded", step=str(step))
            return StepOutcome(step=step, status="cancelled", error=CANCELLED_MESSAGE)

        current = self._context.state
        self._context.replace(
            current.with_phases({step: PhaseState(status=PhaseStatus.COMPLETED, data=data)})
        )
        log.info("step_complete", step=str(step))
        return StepOutcome(step=step, status="completed", data=data)
