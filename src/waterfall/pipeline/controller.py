"""Pipeline controller for streaming waterfall runs.

The controller owns the one active run of a session. It opens the
streaming request, feeds body chunks through the frame decoder and applies
every decoded event to the state machine strictly in arrival order.

Single-flight: starting a run cancels the previous run's handle first,
and only the run whose handle is current may write state. A superseded or
cancelled run therefore never touches the pipeline state again, even if
events were already in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from waterfall.models.events import WirePhase
from waterfall.models.pipeline import (
    Phase,
    PhaseState,
    PhaseStatus,
    PipelineState,
    RunCancelled,
    RunCompleted,
    RunFailed,
    RunPaused,
)
from waterfall.models.requests import WaterfallRequest
from waterfall.observability.logging import get_logger
from waterfall.observability.tracing import generate_run_id, run_scope
from waterfall.pipeline.context import CancellationHandle, RunContext
from waterfall.pipeline.errors import ServerSignalledError
from waterfall.pipeline.frames import EventFrameDecoder
from waterfall.pipeline.state_machine import (
    CANCELLED_MESSAGE,
    complete_from_final,
    fail_phase,
    gated_phase,
    pause_for_gate,
    transition,
)
from waterfall.pipeline.step_runner import StepRunner

if TYPE_CHECKING:
    from collections.abc import Iterable

    from waterfall.models.events import StreamEvent
    from waterfall.models.pipeline import RunOutcome, StepOutcome
    from waterfall.models.requests import FileRef
    from waterfall.pipeline.transport import WaterfallClient

log = get_logger(__name__)

SEED_MESSAGE = "Analyzing requirements..."
UNKNOWN_ERROR_MESSAGE = "Unknown waterfall error"
NO_PROMPT_MESSAGE = "No prompt to resume."

# Status of the summary frame the server sends after a gate
PAUSED_FINAL_STATUS = "paused"


class WaterfallController:
    """Drive streaming waterfall runs and keep the pipeline state current.

    Attributes:
        context: The session's run context (state, handle, subscribers).
        provider: Provider preference sent with every request.
        notepad_content: Optional notes sent as mission context.
        open_files: Editor files sent as context.
    """

    def __init__(
        self,
        client: WaterfallClient,
        context: RunContext | None = None,
        *,
        provider: str | None = None,
        notepad_content: str | None = None,
        open_files: Iterable[FileRef] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            client: Transport for the waterfall endpoints.
            context: Run context to drive. A fresh one is created if omitted.
            provider: Provider preference. Defaults to the client config's.
            notepad_content: Optional notes sent with each run.
            open_files: Optional editor files sent with each run.
        """
        self._client = client
        self.context = context or RunContext()
        self.provider = provider or client.config.provider
        self.notepad_content = notepad_content
        self.open_files: list[FileRef] = list(open_files or [])
        self._step_runner = StepRunner(client, self.context)

    @property
    def state(self) -> PipelineState:
        """The live pipeline state."""
        return self.context.state

    @property
    def is_running(self) -> bool:
        """True while a streaming run is in flight."""
        return self.context.is_running

    def set_prompt(self, prompt: str) -> None:
        """Update the stored prompt without starting a run."""
        self.context.replace(self.state.model_copy(update={"prompt": prompt}))

    # -- Streaming runs --------------------------------------------------------

    async def run_full_waterfall(self, prompt: str, force_proceed: bool = False) -> RunOutcome:
        """Run the full pipeline for ``prompt``.

        Args:
            prompt: The user request.
            force_proceed: Resume a gated run. Phase data is kept instead of
                being reset, and the server is asked to skip the gate.

        Returns:
            RunCompleted, RunPaused, RunFailed or RunCancelled.

        Raises:
            ValueError: If ``prompt`` is empty.
        """
        request = WaterfallRequest(
            prompt=prompt,
            provider=self.provider,
            notepad_content=self.notepad_content,
            open_files=self.open_files or None,
            force_proceed=force_proceed,
        )

        self._release_handle(reason="superseded")

        run_id = generate_run_id()
        handle = CancellationHandle(run_id)
        self.context.handle = handle

        with run_scope(run_id):
            if not force_proceed:
                self.context.replace(self._fresh_state(prompt))
            log.info("run_start", force_proceed=force_proceed, provider=self.provider)

            try:
                return await self._consume(request, handle)
            except asyncio.CancelledError:
                if not handle.cancelled:
                    raise
                handle.acknowledge()
                log.info("run_cancelled")
                return RunCancelled(self.state.current_phase)
            except Exception as e:
                return self._record_failure(handle, e)
            finally:
                if self.context.handle is handle:
                    self.context.handle = None

    async def proceed_with_waterfall(self) -> RunOutcome:
        """Resume a gated run in place with the stored prompt.

        Without a stored prompt (before any run, or after a reset) nothing
        is sent: the active phase is failed and RunFailed is returned.
        """
        if not self.state.prompt:
            self._release_handle(reason="superseded")
            phase = self.state.current_phase or Phase.ARCHITECT
            self.context.replace(fail_phase(self.state, NO_PROMPT_MESSAGE))
            log.error("run_failed", phase=str(phase), error=NO_PROMPT_MESSAGE)
            return RunFailed(phase=phase, reason=NO_PROMPT_MESSAGE)
        return await self.run_full_waterfall(self.state.prompt, force_proceed=True)

    def cancel_waterfall(self) -> None:
        """Cancel the in-flight run and mark its phase as cancelled.

        Does nothing when no run is active.
        """
        handle = self.context.take_handle()
        if handle is None:
            return
        handle.cancel()
        log.info("run_cancel_requested", run_id=handle.run_id)
        self.context.replace(fail_phase(self.state, CANCELLED_MESSAGE))

    def reset_waterfall(self) -> None:
        """Drop any in-flight run and return to the empty state."""
        self._release_handle(reason="reset")
        self.context.replace(PipelineState.empty())

    # -- Manual steps ----------------------------------------------------------

    async def run_waterfall_step(self, step: Phase | str, input: Any) -> StepOutcome:  # noqa: A002
        """Run one phase manually, taking over from any in-flight run.

        The step holds the run handle while its request is in flight, so a
        new run, a reset or ``cancel_waterfall`` cancels it like a stream.

        Raises:
            ValueError: If ``step`` does not name a phase.
        """
        step = Phase(step)
        self._release_handle(reason="manual_step")

        run_id = generate_run_id()
        handle = CancellationHandle(run_id)
        self.context.handle = handle

        with run_scope(run_id):
            try:
                return await self._step_runner.run(
                    step, input, provider=self.provider, handle=handle
                )
            finally:
                if self.context.handle is handle:
                    self.context.handle = None

    # -- Internals -------------------------------------------------------------

    def _release_handle(self, reason: str) -> None:
        previous = self.context.take_handle()
        if previous is not None:
            log.info("run_released", run_id=previous.run_id, reason=reason)
            previous.cancel()

    @staticmethod
    def _fresh_state(prompt: str) -> PipelineState:
        seeded = PhaseState(status=PhaseStatus.PROCESSING, data={"message": SEED_MESSAGE})
        return PipelineState(
            prompt=prompt,
            current_phase=Phase.ARCHITECT,
            phases={Phase.ARCHITECT: seeded},
        )

    async def _consume(self, request: WaterfallRequest, handle: CancellationHandle) -> RunOutcome:
        decoder = EventFrameDecoder()
        outcome: RunOutcome | None = None

        async with contextlib.aclosing(self._client.stream(request)) as chunks:
            async for chunk in chunks:
                for event in decoder.feed(chunk):
                    outcome = self._apply(event, handle) or outcome
        for event in decoder.flush():
            outcome = self._apply(event, handle) or outcome

        # A gate the server moved past no longer pauses the run
        if isinstance(outcome, RunPaused) and self.state.phase(outcome.phase).status != (
            PhaseStatus.PAUSED
        ):
            outcome = None

        if decoder.skipped:
            log.warning("run_frames_skipped", count=decoder.skipped)

        if isinstance(outcome, RunPaused):
            log.info("run_paused", phase=str(outcome.phase), reason=outcome.reason)
            return outcome
        if outcome is None:
            log.warning("stream_ended_without_final")
            return RunCompleted()
        log.info("run_complete")
        return outcome

    def _apply(self, event: StreamEvent, handle: CancellationHandle) -> RunOutcome | None:
        """Apply one event and return the outcome it implies, if any."""
        if self.context.handle is not handle:
            return None

        state = self.state
        log.debug("event_received", wire_phase=event.wire_phase)

        if not event.is_control:
            self.context.replace(transition(state, event.wire_phase, event.payload))
            return None

        if event.kind == WirePhase.ERROR:
            raise ServerSignalledError(event.message or UNKNOWN_ERROR_MESSAGE)

        if event.kind == WirePhase.GATED:
            return self._pause(state, event)

        if event.payload.get("status") == PAUSED_FINAL_STATUS:
            return self._end_of_gate(state, event)

        self.context.replace(complete_from_final(state, event.payload))
        return RunCompleted(final=event.payload)

    def _end_of_gate(self, state: PipelineState, event: StreamEvent) -> RunOutcome | None:
        """Handle the paused summary that closes a gated stream.

        The gate itself already paused the run, so the summary is not a
        completion. A summary arriving without a prior gate pauses the run.
        """
        if any(slot.status == PhaseStatus.PAUSED for slot in state.phases.values()):
            log.debug("gate_summary_received")
            return None
        return self._pause(state, event)

    def _pause(self, state: PipelineState, event: StreamEvent) -> RunPaused:
        phase = gated_phase(state, event)
        paused_state = pause_for_gate(state, event)
        self.context.replace(paused_state)
        slot = paused_state.phase(phase)
        return RunPaused(phase=phase, reason=slot.error or "", estimate=event.estimate)

    def _record_failure(self, handle: CancellationHandle, error: Exception) -> RunOutcome:
        if handle.cancelled or self.context.handle is not handle:
            log.info("run_cancelled", error=str(error))
            return RunCancelled(self.state.current_phase)

        message = str(error) or type(error).__name__
        phase = self.state.current_phase or Phase.ARCHITECT
        self.context.replace(fail_phase(self.state, message))
        log.error(
            "run_failed",
            phase=str(phase),
            error=message,
            error_type=type(error).__name__,
        )
        return RunFailed(phase=phase, reason=message)
