"""Run context: the one live pipeline state of a session.

The context is the only mutable container in the client. The controller
and the step runner compute new states with the pure state machine and
swap them in with ``replace``; subscribers (a UI, the CLI renderer) are
notified after every swap.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from waterfall.models.pipeline import PipelineState
from waterfall.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    StateListener = Callable[[PipelineState], None]

log = get_logger(__name__)


class CancellationHandle:
    """Single-use cancellation handle for one run.

    Wraps the asyncio task driving the run. ``cancel()`` cancels that task
    so its pending read raises ``CancelledError``; the run then checks
    ``cancelled`` to tell its own cancellation apart from an outside one.
    A handle is never reused: every run creates a fresh one.

    Attributes:
        run_id: Correlation id of the run owning this handle.
    """

    def __init__(self, run_id: str, task: asyncio.Task[object] | None = None) -> None:
        self.run_id = run_id
        self._task = task if task is not None else asyncio.current_task()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        """True once ``cancel()`` has been called."""
        return self._cancelled

    def cancel(self) -> None:
        """Cancel the run. Calling it again has no effect."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def acknowledge(self) -> None:
        """Clear the cancellation request ``cancel()`` put on the run's task.

        Called from inside the run once it has turned its own cancellation
        into an outcome, so the task can go on awaiting normally.
        """
        if self._task is not None:
            self._task.uncancel()


class RunContext:
    """Holds the live pipeline state and the current run's handle.

    Attributes:
        handle: Handle of the run currently allowed to write state, if any.
    """

    def __init__(self, state: PipelineState | None = None) -> None:
        self._state = state or PipelineState.empty()
        self._listeners: list[StateListener] = []
        self.handle: CancellationHandle | None = None

    @property
    def state(self) -> PipelineState:
        """The live pipeline state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """True while a streaming run or manual step holds the handle."""
        return self.handle is not None

    def replace(self, state: PipelineState) -> None:
        """Swap in a new state and publish it.

        Publishing is skipped when the state did not change.
        """
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                log.warning("state_listener_failed", error=str(e))

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with every published state.

        Returns:
            Callable that removes the listener again.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def take_handle(self) -> CancellationHandle | None:
        """Detach and return the current handle."""
        handle, self.handle = self.handle, None
        return handle
